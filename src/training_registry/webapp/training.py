from __future__ import annotations

import io
from datetime import date
from typing import Any

import pandas as pd
from flask import Blueprint, jsonify, request, send_file

from .. import training
from ..compliance import expiring_training
from ..db import frame_records
from ..io_excel import write_workbook
from .common import as_of_arg, compliance_config, engine, flag_arg, payload

training_bp = Blueprint("training", __name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
EXPIRING_COLUMNS = {
    "badge_id": "Badge",
    "employee_name": "Employee",
    "course_id": "Course ID",
    "course_name": "Course",
    "completion_date": "Completed",
    "expiration_date": "Expires",
    "days_to_expiry": "Days Left",
    "status": "Status",
}


def _expiring_workbook(df: pd.DataFrame, period: str) -> io.BytesIO:
    cols = [c for c in EXPIRING_COLUMNS if c in df.columns]
    sheet = df[cols].rename(columns=EXPIRING_COLUMNS) if not df.empty else pd.DataFrame(columns=list(EXPIRING_COLUMNS.values()))
    buf = io.BytesIO()
    write_workbook(
        {f"Expiring {period}": sheet},
        buf,
        highlight={"Status": {"expired": "red", "expiring_soon": "orange", "valid": "green"}},
    )
    buf.seek(0)
    return buf


@training_bp.route("/training/expiring", methods=["GET"])
def expiring() -> Any:
    period = request.args.get("period") or "30days"
    count_only = flag_arg("count_only")
    download = flag_arg("download")
    cfg = compliance_config()
    limit = None if (count_only or download) else cfg.expiring_limit
    with engine().connect() as conn:
        df = expiring_training(conn, period, as_of=as_of_arg(), cfg=cfg, limit=limit)
    if count_only:
        return jsonify({"period": period, "count": int(len(df))})
    if download:
        stamp = date.today().strftime("%Y%m%d")
        return send_file(
            _expiring_workbook(df, period),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=f"expiring_training_{period}_{stamp}.xlsx",
        )
    return jsonify(frame_records(df))


@training_bp.route("/training/<int:training_id>/extend", methods=["POST"])
def extend(training_id: int) -> Any:
    data = payload()
    with engine().begin() as conn:
        result = training.extend_training(
            conn, training_id, data.get("months_to_extend"), data.get("extension_notes")
        )
    return jsonify(result)


@training_bp.route("/training/<int:training_id>/notes", methods=["PUT"])
def notes(training_id: int) -> Any:
    data = payload()
    with engine().begin() as conn:
        return jsonify(training.update_training_notes(conn, training_id, data.get("notes")))
