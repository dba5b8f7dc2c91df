from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Connection

from .dates import to_iso
from .db import read_frame
from .field_map import REQUIRED_EXTERNAL_COLUMNS
from .io_excel import read_table, to_canonical
from .normalize import extract_course_id, strip_whitespace

EXTERNAL_COLUMNS = ["associate_name", "requirement", "course_id", "status", "expire_date", "expiration_date"]


def prepare_external_frame(raw: pd.DataFrame) -> pd.DataFrame:
    """Canonicalize a raw report frame into external_training rows.

    The course id comes from a trailing "(12345)" in the requirement; the
    expiration is the parsed expire date (None for n/a or garbage).
    """
    df = to_canonical(raw)
    missing = [c for c in REQUIRED_EXTERNAL_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"External report is missing required column(s): {', '.join(missing)}")
    df = strip_whitespace(df)
    if "status" not in df.columns:
        df["status"] = None

    out = pd.DataFrame(
        {
            "associate_name": df["associate_name"],
            "requirement": df["requirement"],
            "status": df["status"],
            "expire_date": df["expire_date"].map(lambda v: None if pd.isna(v) else str(v)),
        }
    )
    out = out.loc[out["associate_name"].notna() & out["requirement"].notna()].copy()
    out["associate_name"] = out["associate_name"].astype(str)
    out["requirement"] = out["requirement"].astype(str)
    out["course_id"] = out["requirement"].map(extract_course_id)
    if "course_id" in df.columns:
        # An explicit id column fills gaps left by the requirement text
        explicit = df.loc[out.index, "course_id"].map(lambda v: None if pd.isna(v) else str(v).strip() or None)
        out["course_id"] = out["course_id"].where(out["course_id"].notna(), explicit)
    out["expiration_date"] = out["expire_date"].map(to_iso)
    for col in ("status", "expire_date", "course_id", "expiration_date"):
        # Missing cells are None, not NaN, whatever dtype pandas inferred
        out[col] = out[col].astype(object).where(out[col].notna(), None)
    return out[EXTERNAL_COLUMNS].reset_index(drop=True)


def read_external_report(
    path: Path, sheet: str | int | None = None, header_row: int | None = None
) -> pd.DataFrame:
    raw, _ = read_table(path, sheet_name=sheet, header_row_override=header_row)
    return prepare_external_frame(raw)


def load_external_training(
    conn: Connection,
    frame: pd.DataFrame,
    replace: bool = True,
    log: Optional[Callable[[str], None]] = None,
) -> int:
    """Store prepared rows; by default the table is replaced wholesale."""
    if replace:
        conn.execute(text("DELETE FROM external_training"))
    records = [
        {k: (None if (v is None or (not isinstance(v, str) and pd.isna(v))) else v) for k, v in rec.items()}
        for rec in frame[EXTERNAL_COLUMNS].to_dict(orient="records")
    ]
    if records:
        conn.execute(
            text(
                """
                INSERT INTO external_training
                    (associate_name, requirement, course_id, status, expire_date, expiration_date)
                VALUES (:associate_name, :requirement, :course_id, :status, :expire_date, :expiration_date)
                """
            ),
            records,
        )
    if log:
        with_id = sum(1 for r in records if r["course_id"])
        log(f"external_training: {len(records)} rows ({with_id} with course id)")
    return len(records)


def import_external_file(
    conn: Connection,
    path: Path,
    sheet: str | int | None = None,
    header_row: int | None = None,
    log: Optional[Callable[[str], None]] = None,
) -> int:
    frame = read_external_report(path, sheet=sheet, header_row=header_row)
    return load_external_training(conn, frame, replace=True, log=log)


def external_rows(conn: Connection, associate_like: str | None = None) -> pd.DataFrame:
    sql = """
        SELECT id, associate_name, requirement, course_id, status, expire_date, expiration_date
        FROM external_training
    """
    params = {}
    if associate_like:
        sql += " WHERE LOWER(associate_name) LIKE :pat"
        params["pat"] = f"%{associate_like.lower()}%"
    sql += " ORDER BY associate_name, requirement, id"
    return read_frame(conn, sql, params)


__all__ = [
    "EXTERNAL_COLUMNS",
    "prepare_external_frame",
    "read_external_report",
    "load_external_training",
    "import_external_file",
    "external_rows",
]
