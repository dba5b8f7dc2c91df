from __future__ import annotations

from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine

SCHEMA: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS employees (
        employee_id INTEGER PRIMARY KEY AUTOINCREMENT,
        badge_id TEXT NOT NULL UNIQUE,
        employee_name TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        leader TEXT,
        role TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS positions (
        position_id TEXT PRIMARY KEY,
        position_name TEXT NOT NULL,
        description TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS courses (
        course_id TEXT PRIMARY KEY,
        course_name TEXT NOT NULL,
        duration_months INTEGER,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS position_courses (
        position_id TEXT NOT NULL REFERENCES positions(position_id) ON DELETE CASCADE,
        course_id TEXT NOT NULL REFERENCES courses(course_id) ON DELETE CASCADE,
        PRIMARY KEY (position_id, course_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS employee_positions (
        employee_id INTEGER NOT NULL REFERENCES employees(employee_id) ON DELETE CASCADE,
        position_id TEXT NOT NULL REFERENCES positions(position_id) ON DELETE CASCADE,
        job_code TEXT,
        PRIMARY KEY (employee_id, position_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS employee_training (
        training_id INTEGER PRIMARY KEY AUTOINCREMENT,
        employee_id INTEGER NOT NULL REFERENCES employees(employee_id) ON DELETE CASCADE,
        course_id TEXT NOT NULL REFERENCES courses(course_id) ON DELETE CASCADE,
        completion_date TEXT,
        expiration_date TEXT,
        notes TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (employee_id, course_id, completion_date)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_training_employee ON employee_training(employee_id)",
    "CREATE INDEX IF NOT EXISTS idx_training_course ON employee_training(course_id)",
    """
    CREATE TABLE IF NOT EXISTS course_groups (
        group_id INTEGER PRIMARY KEY AUTOINCREMENT,
        group_code TEXT NOT NULL UNIQUE,
        group_name TEXT NOT NULL,
        is_enabled INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS course_group_members (
        group_id INTEGER NOT NULL REFERENCES course_groups(group_id) ON DELETE CASCADE,
        course_id TEXT NOT NULL REFERENCES courses(course_id) ON DELETE CASCADE,
        PRIMARY KEY (group_id, course_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS external_training (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        associate_name TEXT,
        requirement TEXT,
        course_id TEXT,
        status TEXT,
        expire_date TEXT,
        expiration_date TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS anomalies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'open'
            CHECK (status IN ('open', 'in_progress', 'resolved')),
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS anomaly_comments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        anomaly_id INTEGER NOT NULL REFERENCES anomalies(id) ON DELETE CASCADE,
        comment TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS employee_q_courses (
        employee_id INTEGER NOT NULL REFERENCES employees(employee_id) ON DELETE CASCADE,
        course_id TEXT NOT NULL REFERENCES courses(course_id) ON DELETE CASCADE,
        is_needed INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (employee_id, course_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS course_cleanup (
        course_id TEXT PRIMARY KEY,
        action TEXT NOT NULL DEFAULT 'pending'
            CHECK (action IN ('pending', 'keep', 'merge', 'delete')),
        merge_into TEXT,
        rename_to TEXT,
        is_one_time INTEGER NOT NULL DEFAULT 0,
        recert_months INTEGER,
        notes TEXT,
        t_code TEXT,
        reviewed_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS merged_courses (
        old_course_id TEXT PRIMARY KEY,
        new_course_id TEXT NOT NULL,
        merged_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
)


def _enable_foreign_keys(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    try:
        cur.execute("PRAGMA foreign_keys=ON")
    finally:
        cur.close()


@lru_cache(maxsize=8)
def _engine_for(db_key: str) -> Engine:
    engine = create_engine(f"sqlite:///{db_key}")
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def get_engine(db_path: Path | str) -> Engine:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return _engine_for(str(path.resolve()))


def init_db(db_path: Path | str) -> Engine:
    """Create all tables (idempotent) and return the engine."""
    engine = get_engine(db_path)
    with engine.begin() as conn:
        for stmt in SCHEMA:
            conn.exec_driver_sql(stmt)
    return engine


def read_frame(conn: Connection, sql: str, params: Optional[Mapping[str, Any]] = None) -> pd.DataFrame:
    return pd.read_sql(text(sql), conn, params=dict(params or {}))


def fetch_one(conn: Connection, sql: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
    row = conn.execute(text(sql), dict(params or {})).mappings().first()
    return dict(row) if row is not None else None


def fetch_all(conn: Connection, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
    return [dict(r) for r in conn.execute(text(sql), dict(params or {})).mappings().all()]


def scalar(conn: Connection, sql: str, params: Optional[Mapping[str, Any]] = None) -> Any:
    return conn.execute(text(sql), dict(params or {})).scalar()


def as_bools(row: Dict[str, Any], *cols: str) -> Dict[str, Any]:
    # SQLite stores flags as 0/1
    for c in cols:
        if c in row and row[c] is not None:
            row[c] = bool(row[c])
    return row


def _py(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        return value.date().isoformat()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        try:
            return value.item()
        except (ValueError, TypeError):
            return value
    return value


def frame_records(df: Optional[pd.DataFrame], bool_cols: Iterable[str] = ()) -> List[Dict[str, Any]]:
    """Convert a frame to JSON-safe dicts (NaN -> None, numpy scalars -> Python)."""
    if df is None or df.empty:
        return []
    out = df.astype(object).where(pd.notna(df), None)
    flags = set(bool_cols)
    records: List[Dict[str, Any]] = []
    for rec in out.to_dict(orient="records"):
        clean = {str(k): _py(v) for k, v in rec.items()}
        for c in flags:
            if clean.get(c) is not None:
                clean[c] = bool(clean[c])
        records.append(clean)
    return records


def to_duckdb(df: pd.DataFrame, db_path: Path, table: str) -> None:
    import duckdb  # type: ignore

    db_path.parent.mkdir(parents=True, exist_ok=True)
    con = duckdb.connect(str(db_path))
    try:
        con.execute(f"DROP TABLE IF EXISTS {table}")
        con.register("df", df)
        con.execute(f"CREATE TABLE {table} AS SELECT * FROM df")
        con.unregister("df")
    finally:
        con.close()


__all__ = [
    "SCHEMA",
    "get_engine",
    "init_db",
    "read_frame",
    "fetch_one",
    "fetch_all",
    "scalar",
    "as_bools",
    "frame_records",
    "to_duckdb",
]
