from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List

import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Connection

from .compliance import ComplianceConfig, requirements_status
from .db import as_bools, fetch_all, fetch_one, read_frame, scalar
from .errors import Conflict, NotFound

POSITION_ID_MIN = 555000
POSITION_ID_MAX = 555999

_POSITIONS_OF_EMPLOYEE = """
    (SELECT group_concat(position_name, ', ') FROM (
        SELECT p.position_name FROM employee_positions ep
        JOIN positions p ON p.position_id = ep.position_id
        WHERE ep.employee_id = e.employee_id
        ORDER BY p.position_name
    ))
"""


def _require_text(value: Any, label: str) -> str:
    t = str(value).strip() if value is not None else ""
    if not t:
        raise ValueError(f"{label} is required")
    return t


def require_bool(value: Any, label: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{label} must be a boolean")
    return value


# --- Employees -------------------------------------------------------------


def get_employee(conn: Connection, employee_id: int) -> Dict[str, Any]:
    row = fetch_one(conn, "SELECT * FROM employees WHERE employee_id = :id", {"id": int(employee_id)})
    if row is None:
        raise NotFound(f"Employee {employee_id} not found")
    return as_bools(row, "is_active")


def list_active_employees(conn: Connection) -> pd.DataFrame:
    q = f"""
        SELECT e.employee_id, e.badge_id, e.employee_name, e.leader, e.role,
               {_POSITIONS_OF_EMPLOYEE} AS positions
        FROM employees e
        WHERE e.is_active = 1
        ORDER BY e.employee_name
    """
    return read_frame(conn, q)


def search_employees(conn: Connection, q: str | None = None, limit: int = 100) -> pd.DataFrame:
    """Case-insensitive substring search on name or badge.

    Without ``q`` the first ``limit`` employees by name are returned.
    """
    limit = max(1, min(int(limit), 1000))
    base = f"""
        SELECT e.employee_id, e.badge_id, e.employee_name, e.is_active, e.leader, e.role,
               {_POSITIONS_OF_EMPLOYEE} AS positions
        FROM employees e
    """
    if q is None or q == "":
        return read_frame(conn, base + " ORDER BY e.employee_name LIMIT :limit", {"limit": limit})
    term = q.strip()
    if len(term) < 2:
        raise ValueError("Search query must be at least 2 characters")
    sql = base + """
        WHERE e.employee_name LIKE :pat OR e.badge_id LIKE :pat
        ORDER BY e.employee_name
        LIMIT :limit
    """
    return read_frame(conn, sql, {"pat": f"%{term}%", "limit": limit})


def employee_positions(conn: Connection, employee_id: int) -> List[Dict[str, Any]]:
    rows = fetch_all(
        conn,
        """
        SELECT p.position_id, p.position_name, p.is_active, ep.job_code
        FROM employee_positions ep
        JOIN positions p ON p.position_id = ep.position_id
        WHERE ep.employee_id = :id
        ORDER BY p.position_name
        """,
        {"id": int(employee_id)},
    )
    return [as_bools(r, "is_active") for r in rows]


def get_employee_by_badge(
    conn: Connection, badge_id: str, as_of: date | None = None, cfg: ComplianceConfig | None = None
) -> Dict[str, Any]:
    """Employee detail with positions and the status of every required course."""
    row = fetch_one(conn, "SELECT * FROM employees WHERE badge_id = :b", {"b": str(badge_id).strip()})
    if row is None:
        raise NotFound(f"Employee with badge {badge_id} not found")
    employee = as_bools(row, "is_active")
    requirements = requirements_status(conn, employee["employee_id"], as_of=as_of, cfg=cfg)
    return {
        "employee": employee,
        "positions": employee_positions(conn, employee["employee_id"]),
        "requirements": requirements,
    }


def _position_exists(conn: Connection, position_id: str) -> bool:
    return scalar(conn, "SELECT 1 FROM positions WHERE position_id = :p", {"p": position_id}) is not None


def create_employee(
    conn: Connection,
    badge_id: Any,
    employee_name: Any,
    position_ids: Iterable[Any] | None,
    *,
    leader: str | None = None,
    role: str | None = None,
) -> Dict[str, Any]:
    """Insert an employee with at least one position.

    Runs inside the caller's transaction, so an invalid position leaves
    nothing behind.
    """
    badge = _require_text(badge_id, "badge_id")
    name = _require_text(employee_name, "employee_name")
    positions = [str(p).strip() for p in (position_ids or []) if str(p or "").strip()]
    if not positions:
        raise ValueError("At least one position is required")
    if scalar(conn, "SELECT 1 FROM employees WHERE badge_id = :b", {"b": badge}) is not None:
        raise Conflict(f"Badge {badge} already exists")

    res = conn.execute(
        text(
            "INSERT INTO employees (badge_id, employee_name, is_active, leader, role) "
            "VALUES (:b, :n, 1, :l, :r)"
        ),
        {"b": badge, "n": name, "l": leader or None, "r": role or None},
    )
    employee_id = int(res.lastrowid)
    for pid in dict.fromkeys(positions):
        if not _position_exists(conn, pid):
            raise ValueError(f"Invalid position: {pid}")
        conn.execute(
            text("INSERT INTO employee_positions (employee_id, position_id) VALUES (:e, :p)"),
            {"e": employee_id, "p": pid},
        )
    return get_employee(conn, employee_id)


def add_employee_position(
    conn: Connection, employee_id: Any, position_id: Any, job_code: str | None = None
) -> Dict[str, Any]:
    if employee_id in (None, "") or position_id in (None, ""):
        raise ValueError("employee_id and position_id are required")
    emp = get_employee(conn, int(employee_id))
    pid = str(position_id).strip()
    if not _position_exists(conn, pid):
        raise NotFound(f"Position {pid} not found")
    exists = scalar(
        conn,
        "SELECT 1 FROM employee_positions WHERE employee_id = :e AND position_id = :p",
        {"e": emp["employee_id"], "p": pid},
    )
    if exists is not None:
        raise Conflict("Employee already has this position")
    conn.execute(
        text("INSERT INTO employee_positions (employee_id, position_id, job_code) VALUES (:e, :p, :j)"),
        {"e": emp["employee_id"], "p": pid, "j": job_code or None},
    )
    return {"employee_id": emp["employee_id"], "position_id": pid, "job_code": job_code or None}


def remove_employee_position(conn: Connection, employee_id: int, position_id: str) -> None:
    assigned = scalar(
        conn,
        "SELECT 1 FROM employee_positions WHERE employee_id = :e AND position_id = :p",
        {"e": int(employee_id), "p": position_id},
    )
    if assigned is None:
        raise NotFound("Position not assigned to this employee")
    count = scalar(
        conn, "SELECT COUNT(*) FROM employee_positions WHERE employee_id = :e", {"e": int(employee_id)}
    )
    if int(count) <= 1:
        raise ValueError("Cannot remove the employee's last position")
    conn.execute(
        text("DELETE FROM employee_positions WHERE employee_id = :e AND position_id = :p"),
        {"e": int(employee_id), "p": position_id},
    )


def set_employee_active(conn: Connection, employee_id: int, is_active: Any) -> Dict[str, Any]:
    flag = require_bool(is_active, "is_active")
    get_employee(conn, employee_id)
    conn.execute(
        text("UPDATE employees SET is_active = :a WHERE employee_id = :e"),
        {"a": int(flag), "e": int(employee_id)},
    )
    return get_employee(conn, employee_id)


def employees_without_positions(conn: Connection) -> pd.DataFrame:
    return read_frame(
        conn,
        """
        SELECT e.employee_id, e.badge_id, e.employee_name, e.leader
        FROM employees e
        WHERE e.is_active = 1
          AND NOT EXISTS (SELECT 1 FROM employee_positions ep WHERE ep.employee_id = e.employee_id)
        ORDER BY e.employee_name
        """,
    )


# --- Positions -------------------------------------------------------------


def list_positions(conn: Connection, q: str | None = None) -> pd.DataFrame:
    sql = """
        SELECT p.position_id, p.position_name, p.description, p.is_active,
               (SELECT COUNT(*) FROM position_courses pc WHERE pc.position_id = p.position_id) AS course_count,
               (SELECT COUNT(*) FROM employee_positions ep
                  JOIN employees e ON e.employee_id = ep.employee_id
                 WHERE ep.position_id = p.position_id AND e.is_active = 1) AS employee_count
        FROM positions p
    """
    params: Dict[str, Any] = {}
    if q:
        term = q.strip()
        if len(term) < 2:
            raise ValueError("Search query must be at least 2 characters")
        sql += " WHERE p.position_name LIKE :pat OR p.position_id LIKE :pat"
        params["pat"] = f"%{term}%"
    sql += " ORDER BY p.position_name"
    return read_frame(conn, sql, params)


def next_position_id(conn: Connection, low: int = POSITION_ID_MIN, high: int = POSITION_ID_MAX) -> str:
    """Next free numeric id after the current maximum within [low, high]."""
    ids = conn.execute(text("SELECT position_id FROM positions")).scalars().all()
    in_range = [int(p) for p in ids if str(p).isdigit() and low <= int(p) <= high]
    candidate = max(in_range) + 1 if in_range else low
    if candidate > high:
        raise RuntimeError(f"Position id range {low}-{high} is exhausted")
    return str(candidate)


def create_position(conn: Connection, position_name: Any, description: str | None = None) -> Dict[str, Any]:
    name = _require_text(position_name, "position_name")
    pid = next_position_id(conn)
    conn.execute(
        text(
            "INSERT INTO positions (position_id, position_name, description, is_active) "
            "VALUES (:p, :n, :d, 1)"
        ),
        {"p": pid, "n": name, "d": (description or "").strip() or None},
    )
    return get_position_row(conn, pid)


def get_position_row(conn: Connection, position_id: str) -> Dict[str, Any]:
    row = fetch_one(conn, "SELECT * FROM positions WHERE position_id = :p", {"p": str(position_id)})
    if row is None:
        raise NotFound(f"Position {position_id} not found")
    return as_bools(row, "is_active")


def get_position(conn: Connection, position_id: str) -> Dict[str, Any]:
    position = get_position_row(conn, position_id)
    courses = fetch_all(
        conn,
        """
        SELECT c.course_id, c.course_name, c.duration_months, c.is_active
        FROM position_courses pc
        JOIN courses c ON c.course_id = pc.course_id
        WHERE pc.position_id = :p
        ORDER BY c.course_name
        """,
        {"p": position["position_id"]},
    )
    employees = fetch_all(
        conn,
        """
        SELECT e.employee_id, e.badge_id, e.employee_name, e.is_active, ep.job_code
        FROM employee_positions ep
        JOIN employees e ON e.employee_id = ep.employee_id
        WHERE ep.position_id = :p
        ORDER BY e.employee_name
        """,
        {"p": position["position_id"]},
    )
    return {
        "position": position,
        "courses": [as_bools(c, "is_active") for c in courses],
        "employees": [as_bools(e, "is_active") for e in employees],
    }


def add_position_course(conn: Connection, position_id: Any, course_id: Any) -> None:
    pid = _require_text(position_id, "position_id")
    cid = _require_text(course_id, "course_id")
    get_position_row(conn, pid)
    if scalar(conn, "SELECT 1 FROM courses WHERE course_id = :c", {"c": cid}) is None:
        raise NotFound(f"Course {cid} not found")
    linked = scalar(
        conn, "SELECT 1 FROM position_courses WHERE position_id = :p AND course_id = :c", {"p": pid, "c": cid}
    )
    if linked is not None:
        raise Conflict("Course is already required for this position")
    conn.execute(
        text("INSERT INTO position_courses (position_id, course_id) VALUES (:p, :c)"), {"p": pid, "c": cid}
    )


def remove_position_course(conn: Connection, position_id: str, course_id: str) -> None:
    res = conn.execute(
        text("DELETE FROM position_courses WHERE position_id = :p AND course_id = :c"),
        {"p": position_id, "c": course_id},
    )
    if res.rowcount == 0:
        raise NotFound("Course is not assigned to this position")


def set_position_active(conn: Connection, position_id: str, is_active: Any) -> Dict[str, Any]:
    flag = require_bool(is_active, "is_active")
    get_position_row(conn, position_id)
    conn.execute(
        text("UPDATE positions SET is_active = :a WHERE position_id = :p"), {"a": int(flag), "p": position_id}
    )
    return get_position_row(conn, position_id)


def leaders(conn: Connection) -> List[str]:
    rows = conn.execute(
        text("SELECT DISTINCT leader FROM employees WHERE leader IS NOT NULL AND leader <> '' ORDER BY leader")
    ).scalars()
    return [str(r) for r in rows]


def team(conn: Connection, leader: str, include_inactive: bool = False) -> pd.DataFrame:
    """Employees reporting to ``leader`` with their positions."""
    sql = f"""
        SELECT e.employee_id, e.badge_id, e.employee_name, e.role, e.is_active,
               {_POSITIONS_OF_EMPLOYEE} AS positions
        FROM employees e
        WHERE e.leader = :leader
    """
    if not include_inactive:
        sql += " AND e.is_active = 1"
    sql += " ORDER BY e.employee_name"
    return read_frame(conn, sql, {"leader": leader})


__all__ = [
    "POSITION_ID_MIN",
    "POSITION_ID_MAX",
    "require_bool",
    "get_employee",
    "list_active_employees",
    "search_employees",
    "employee_positions",
    "get_employee_by_badge",
    "create_employee",
    "add_employee_position",
    "remove_employee_position",
    "set_employee_active",
    "employees_without_positions",
    "list_positions",
    "next_position_id",
    "create_position",
    "get_position_row",
    "get_position",
    "add_position_course",
    "remove_position_course",
    "set_position_active",
    "leaders",
    "team",
]
