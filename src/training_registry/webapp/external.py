from __future__ import annotations

import io
from datetime import date
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

from flask import Blueprint, current_app, jsonify, request, send_file
from werkzeug.utils import secure_filename

from .. import reconcile
from ..db import frame_records
from ..external import import_external_file
from .common import as_of_arg, engine, logger, payload

external_bp = Blueprint("external", __name__)

ALLOWED_SUFFIXES = {".csv", ".xls", ".xlsx"}
XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@external_bp.route("/external/import", methods=["POST"])
def external_import() -> Any:
    file_obj = request.files.get("file")
    if file_obj is None or not file_obj.filename:
        raise ValueError("Select a report file to upload")
    filename = secure_filename(file_obj.filename)
    suffix = Path(filename).suffix.lower()
    if suffix not in ALLOWED_SUFFIXES:
        raise ValueError("Only .csv, .xls or .xlsx reports can be imported")

    sheet_hint = (request.form.get("sheet") or "").strip()
    sheet_value: str | int | None = None
    if sheet_hint:
        try:
            sheet_value = int(sheet_hint)
        except ValueError:
            sheet_value = sheet_hint

    temp_path: Path | None = None
    try:
        with NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
            temp_path = Path(tmp.name)
        file_obj.save(str(temp_path))
        with engine().begin() as conn:
            rows = import_external_file(conn, temp_path, sheet=sheet_value, log=logger())
    finally:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)

    current_app.logger.info("external report %s imported (%d rows)", filename, rows)
    return jsonify({"status": "ok", "filename": filename, "imported_rows": rows}), 201


@external_bp.route("/external/compare", methods=["GET"])
def external_compare() -> Any:
    name = (request.args.get("name") or "").strip()
    if not name:
        raise ValueError("name is required")
    with engine().connect() as conn:
        return jsonify(reconcile.compare_employee(conn, name))


@external_bp.route("/external/summary", methods=["GET"])
def external_summary() -> Any:
    with engine().connect() as conn:
        classified = reconcile.classify_external(conn)
    return jsonify(reconcile.match_summary(classified))


@external_bp.route("/external/training-import", methods=["POST"])
def external_training_import() -> Any:
    data = payload()
    apply = data.get("apply", False)
    if not isinstance(apply, bool):
        raise ValueError("apply must be a boolean")
    with engine().begin() as conn:
        plan = reconcile.plan_training_import(conn)
        result = {"applied": apply, "counts": plan.counts}
        if apply:
            result["result"] = reconcile.apply_training_import(conn, plan, log=logger())
        else:
            result["preview"] = frame_records(plan.actions.head(200))
    return jsonify(result)


def _report_response(builder, stem: str) -> Any:
    buf = io.BytesIO()
    with engine().connect() as conn:
        builder(conn, buf)
    buf.seek(0)
    stamp = date.today().strftime("%Y%m%d")
    return send_file(buf, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=f"{stem}_{stamp}.xlsx")


@external_bp.route("/reports/external-gaps", methods=["GET"])
def report_gaps() -> Any:
    return _report_response(reconcile.gaps_report, "external_training_gaps")


@external_bp.route("/reports/course-compare", methods=["GET"])
def report_course_compare() -> Any:
    as_of = as_of_arg()
    return _report_response(
        lambda conn, out: reconcile.course_compare_report(conn, out, as_of=as_of), "course_comparison"
    )
