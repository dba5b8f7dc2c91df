from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Connection

from .dates import add_months, format_us, parse_report_date
from .db import fetch_all, fetch_one, read_frame, scalar
from .errors import NotFound
from .roster import get_employee, require_bool

MAX_EXTENSION_MONTHS = 120


def _iso_or_error(value: Any, label: str, required: bool = False) -> Optional[str]:
    if value is None or str(value).strip() == "":
        if required:
            raise ValueError(f"{label} is required")
        return None
    d = parse_report_date(value)
    if d is None:
        raise ValueError(f"{label} is not a valid date")
    return d.isoformat()


def get_training(conn: Connection, training_id: int) -> Dict[str, Any]:
    row = fetch_one(conn, "SELECT * FROM employee_training WHERE training_id = :t", {"t": int(training_id)})
    if row is None:
        raise NotFound(f"Training record {training_id} not found")
    return row


def add_training(
    conn: Connection,
    employee_id: Any,
    course_id: Any,
    completion_date: Any,
    expiration_date: Any = None,
    notes: str | None = None,
) -> Dict[str, Any]:
    """Record a completion.

    Without an explicit expiration, a course with a recertification period
    expires that many months after completion. A repeat of the same
    (employee, course, completion date) is ignored.
    """
    if employee_id in (None, "") or course_id in (None, ""):
        raise ValueError("employee_id and course_id are required")
    completion = _iso_or_error(completion_date, "completion_date", required=True)
    expiration = _iso_or_error(expiration_date, "expiration_date")
    emp = get_employee(conn, int(employee_id))
    course = fetch_one(conn, "SELECT course_id, duration_months FROM courses WHERE course_id = :c", {"c": str(course_id)})
    if course is None:
        raise NotFound(f"Course {course_id} not found")
    if expiration is None and course["duration_months"]:
        expiration = add_months(date.fromisoformat(completion), int(course["duration_months"])).isoformat()

    res = conn.execute(
        text(
            """
            INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date, notes)
            VALUES (:e, :c, :done, :exp, :n)
            ON CONFLICT (employee_id, course_id, completion_date) DO NOTHING
            """
        ),
        {"e": emp["employee_id"], "c": course["course_id"], "done": completion, "exp": expiration, "n": notes or None},
    )
    created = bool(res.rowcount)
    record = fetch_one(
        conn,
        """
        SELECT * FROM employee_training
        WHERE employee_id = :e AND course_id = :c AND completion_date = :done
        """,
        {"e": emp["employee_id"], "c": course["course_id"], "done": completion},
    )
    return {"created": created, "training": record}


def extend_training(
    conn: Connection, training_id: Any, months_to_extend: Any, extension_notes: Any, today: date | None = None
) -> Dict[str, Any]:
    """Push an expiration out by whole months and log the reason in the notes."""
    if training_id in (None, "") or months_to_extend in (None, "") or not str(extension_notes or "").strip():
        raise ValueError("training_id, months_to_extend and extension_notes are required")
    try:
        months = int(months_to_extend)
    except (TypeError, ValueError):
        raise ValueError("months_to_extend must be an integer") from None
    if months < 1 or months > MAX_EXTENSION_MONTHS:
        raise ValueError(f"months_to_extend must be between 1 and {MAX_EXTENSION_MONTHS}")

    record = get_training(conn, int(training_id))
    old_exp = parse_report_date(record["expiration_date"])
    if old_exp is None:
        raise ValueError("Training record has no expiration date to extend")
    new_exp = add_months(old_exp, months)
    stamp = f"[EXTENDED {months} months on {format_us(today or date.today())}]\n{str(extension_notes).strip()}"
    notes = f"{record['notes'] or ''}\n\n{stamp}"
    conn.execute(
        text("UPDATE employee_training SET expiration_date = :exp, notes = :n WHERE training_id = :t"),
        {"exp": new_exp.isoformat(), "n": notes, "t": record["training_id"]},
    )
    return {
        "training_id": record["training_id"],
        "old_expiration": old_exp.isoformat(),
        "new_expiration": new_exp.isoformat(),
        "notes": notes,
    }


def update_training_notes(conn: Connection, training_id: int, notes: Any) -> Dict[str, Any]:
    record = get_training(conn, training_id)
    cleaned = str(notes).strip() if notes is not None else ""
    conn.execute(
        text("UPDATE employee_training SET notes = :n WHERE training_id = :t"),
        {"n": cleaned or None, "t": record["training_id"]},
    )
    return get_training(conn, training_id)


def employee_certificates(conn: Connection, badge_id: str, as_of: date | None = None) -> pd.DataFrame:
    """Every training record of one employee, newest completion first."""
    as_of = as_of or date.today()
    emp_id = scalar(conn, "SELECT employee_id FROM employees WHERE badge_id = :b", {"b": str(badge_id).strip()})
    if emp_id is None:
        raise NotFound(f"Employee with badge {badge_id} not found")
    df = read_frame(
        conn,
        """
        SELECT t.training_id, t.course_id, c.course_name, t.completion_date, t.expiration_date, t.notes
        FROM employee_training t
        JOIN courses c ON c.course_id = t.course_id
        WHERE t.employee_id = :e
        ORDER BY t.completion_date IS NULL, t.completion_date DESC, c.course_name
        """,
        {"e": int(emp_id)},
    )
    today = as_of.isoformat()

    def _status(exp) -> str:
        if exp is None or (not isinstance(exp, str) and pd.isna(exp)):
            return "No Expiration"
        return "Expired" if str(exp) < today else "Valid"

    df["status"] = df["expiration_date"].map(_status) if not df.empty else pd.Series(dtype=str)
    return df


def get_q_courses(conn: Connection, employee_id: int) -> Dict[str, bool]:
    get_employee(conn, employee_id)
    rows = fetch_all(
        conn, "SELECT course_id, is_needed FROM employee_q_courses WHERE employee_id = :e", {"e": int(employee_id)}
    )
    return {str(r["course_id"]): bool(r["is_needed"]) for r in rows}


def set_q_course(conn: Connection, employee_id: int, course_id: Any, is_needed: Any) -> Dict[str, Any]:
    if not str(course_id or "").strip():
        raise ValueError("course_id is required")
    flag = require_bool(is_needed, "is_needed")
    get_employee(conn, employee_id)
    cid = str(course_id).strip()
    if scalar(conn, "SELECT 1 FROM courses WHERE course_id = :c", {"c": cid}) is None:
        raise NotFound(f"Course {cid} not found")
    conn.execute(
        text(
            """
            INSERT INTO employee_q_courses (employee_id, course_id, is_needed, updated_at)
            VALUES (:e, :c, :n, CURRENT_TIMESTAMP)
            ON CONFLICT (employee_id, course_id) DO UPDATE SET
                is_needed = excluded.is_needed,
                updated_at = CURRENT_TIMESTAMP
            """
        ),
        {"e": int(employee_id), "c": cid, "n": int(flag)},
    )
    return {"employee_id": int(employee_id), "course_id": cid, "is_needed": flag}


__all__ = [
    "MAX_EXTENSION_MONTHS",
    "get_training",
    "add_training",
    "extend_training",
    "update_training_notes",
    "employee_certificates",
    "get_q_courses",
    "set_q_course",
]
