from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Callable, Dict, Optional

from .compliance import ComplianceConfig, compliance_frame
from .db import init_db, read_frame, to_duckdb
from .reconcile import classify_external


def export_snapshot(
    db_path: Path,
    duckdb_path: Path,
    as_of: date | None = None,
    cfg: ComplianceConfig | None = None,
    log: Optional[Callable[[str], None]] = None,
) -> Dict[str, int]:
    """Copy analysis frames into a DuckDB file; returns rows written per table."""
    engine = init_db(db_path)
    with engine.connect() as conn:
        frames = {
            "employees": read_frame(conn, "SELECT * FROM employees ORDER BY employee_id"),
            "courses": read_frame(conn, "SELECT * FROM courses ORDER BY course_id"),
            "compliance": compliance_frame(conn, as_of=as_of or date.today(), cfg=cfg),
            "external_matches": classify_external(conn),
        }
    written: Dict[str, int] = {}
    for table, df in frames.items():
        if df.empty and len(df.columns) == 0:
            if log:
                log(f"{table}: empty, skipped")
            continue
        to_duckdb(df, Path(duckdb_path), table)
        written[table] = int(len(df))
        if log:
            log(f"{table}: {len(df)} rows")
    return written


__all__ = ["export_snapshot"]
