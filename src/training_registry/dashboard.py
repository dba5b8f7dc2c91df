from __future__ import annotations

from datetime import date
from typing import Any, Dict

import pandas as pd
from sqlalchemy.engine import Connection

from .compliance import EXPIRED, NEVER_COMPLETED, ComplianceConfig, compliance_frame
from .db import frame_records, read_frame, scalar
from .roster import employees_without_positions, team

PROBLEM_COURSE_MIN_EXPIRED = 5
TOP_EMPLOYEES = 50


def metrics(conn: Connection) -> Dict[str, int]:
    return {
        "active_positions": int(scalar(conn, "SELECT COUNT(*) FROM positions WHERE is_active = 1") or 0),
        "active_courses": int(scalar(conn, "SELECT COUNT(*) FROM courses WHERE is_active = 1") or 0),
        "active_employees": int(scalar(conn, "SELECT COUNT(*) FROM employees WHERE is_active = 1") or 0),
        "employees_without_positions": int(
            scalar(
                conn,
                """
                SELECT COUNT(*) FROM employees e
                WHERE e.is_active = 1
                  AND NOT EXISTS (SELECT 1 FROM employee_positions ep WHERE ep.employee_id = e.employee_id)
                """,
            )
            or 0
        ),
    }


def _position_requirements(conn: Connection, frame: pd.DataFrame) -> pd.DataFrame:
    links = read_frame(
        conn,
        "SELECT ep.employee_id, p.position_id, p.position_name FROM employee_positions ep "
        "JOIN positions p ON p.position_id = ep.position_id WHERE p.is_active = 1",
    )
    pc = read_frame(conn, "SELECT position_id, course_id FROM position_courses")
    links["employee_id"] = links["employee_id"].astype("int64")
    pc["course_id"] = pc["course_id"].astype(str)
    rows = links.merge(pc, on="position_id").merge(
        frame[["employee_id", "course_id", "status"]], on=["employee_id", "course_id"]
    )
    return rows


def problems(conn: Connection, as_of: date | None = None, cfg: ComplianceConfig | None = None) -> Dict[str, Any]:
    """Where compliance is worst: people, positions and courses."""
    frame = compliance_frame(conn, as_of=as_of, cfg=cfg)
    expired = frame.loc[frame["status"] == EXPIRED] if not frame.empty else frame

    if expired.empty:
        people = pd.DataFrame(columns=["employee_id", "badge_id", "employee_name", "expired_count", "expired_courses"])
        courses = pd.DataFrame(columns=["course_id", "course_name", "expired_count"])
    else:
        people = (
            expired.groupby(["employee_id", "badge_id", "employee_name"], as_index=False)
            .agg(expired_count=("course_id", "count"), expired_courses=("course_name", lambda s: ", ".join(sorted(s))))
            .sort_values(["expired_count", "employee_name"], ascending=[False, True])
            .head(TOP_EMPLOYEES)
        )
        courses = (
            expired.groupby(["course_id", "course_name"], as_index=False)
            .agg(expired_count=("employee_id", "nunique"))
        )
        courses = courses.loc[courses["expired_count"] > PROBLEM_COURSE_MIN_EXPIRED].sort_values(
            ["expired_count", "course_name"], ascending=[False, True]
        )

    if frame.empty:
        positions = pd.DataFrame(columns=["position_id", "position_name", "requirements", "expired", "percent_expired"])
    else:
        by_position = _position_requirements(conn, frame)
        by_position["is_expired"] = by_position["status"] == EXPIRED
        positions = by_position.groupby(["position_id", "position_name"], as_index=False).agg(
            requirements=("status", "size"), expired=("is_expired", "sum")
        )
        positions["percent_expired"] = (positions["expired"] * 100.0 / positions["requirements"]).round(1)
        positions = positions.loc[positions["expired"] > 0].sort_values(
            ["percent_expired", "position_name"], ascending=[False, True]
        )

    return {
        "employees_with_expired": frame_records(people),
        "employees_without_positions": frame_records(employees_without_positions(conn)),
        "problematic_positions": frame_records(positions),
        "problematic_courses": frame_records(courses),
    }


def team_training(
    conn: Connection, leader: str, as_of: date | None = None, cfg: ComplianceConfig | None = None
) -> Dict[str, Any]:
    """Training due across one leader's team, bucketed by urgency."""
    as_of = as_of or date.today()
    frame = compliance_frame(conn, as_of=as_of, cfg=cfg, leader=leader)
    members = team(conn, leader)
    if frame.empty:
        empty: list = []
        return {"leader": leader, "team_size": len(members), "expired_or_missing": empty,
                "expiring_30": empty, "expiring_90": empty}

    # Covered rows already carry the sibling record's dates
    days = frame["days_to_expiry"]
    missing = frame["status"].isin([EXPIRED, NEVER_COMPLETED])
    has_days = days.notna() & ~missing
    within_30 = has_days & (days.fillna(-1) >= 0) & (days.fillna(-1) <= 30)
    within_90 = has_days & (days.fillna(-1) > 30) & (days.fillna(-1) <= 90)

    cols = ["employee_id", "badge_id", "employee_name", "course_id", "course_name",
            "completion_date", "expiration_date", "days_to_expiry", "status"]
    return {
        "leader": leader,
        "team_size": len(members),
        "expired_or_missing": frame_records(frame.loc[missing, cols]),
        "expiring_30": frame_records(frame.loc[within_30, cols].sort_values("expiration_date")),
        "expiring_90": frame_records(frame.loc[within_90, cols].sort_values("expiration_date")),
    }


__all__ = ["metrics", "problems", "team_training", "PROBLEM_COURSE_MIN_EXPIRED", "TOP_EMPLOYEES"]
