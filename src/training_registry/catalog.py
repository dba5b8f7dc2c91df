from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Connection

from .dates import parse_report_date
from .db import as_bools, fetch_all, fetch_one, read_frame, scalar
from .errors import Conflict, NotFound
from .normalize import course_name_key, course_variant, extract_t_code, group_base_name

CLEANUP_ACTIONS = ("pending", "keep", "merge", "delete")


def _duration(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        months = int(value)
    except (TypeError, ValueError):
        raise ValueError("duration_months must be an integer") from None
    if months < 0:
        raise ValueError("duration_months must not be negative")
    return months


# --- Courses ---------------------------------------------------------------


def list_courses(conn: Connection, q: str | None = None, active_only: bool = False) -> pd.DataFrame:
    sql = """
        SELECT c.course_id, c.course_name, c.duration_months, c.is_active,
               (SELECT COUNT(*) FROM position_courses pc WHERE pc.course_id = c.course_id) AS position_count,
               (SELECT COUNT(*) FROM employee_training t WHERE t.course_id = c.course_id) AS completion_count
        FROM courses c
        WHERE 1 = 1
    """
    params: Dict[str, Any] = {}
    if q:
        term = q.strip()
        if len(term) < 2:
            raise ValueError("Search query must be at least 2 characters")
        sql += " AND (c.course_id LIKE :pat OR c.course_name LIKE :pat)"
        params["pat"] = f"%{term}%"
    if active_only:
        sql += " AND c.is_active = 1"
    sql += " ORDER BY c.course_name, c.course_id"
    return read_frame(conn, sql, params)


def get_course_row(conn: Connection, course_id: str) -> Dict[str, Any]:
    row = fetch_one(conn, "SELECT * FROM courses WHERE course_id = :c", {"c": str(course_id)})
    if row is None:
        raise NotFound(f"Course {course_id} not found")
    return as_bools(row, "is_active")


def create_course(
    conn: Connection, course_id: Any, course_name: Any, duration_months: Any = None
) -> Dict[str, Any]:
    cid = str(course_id).strip() if course_id is not None else ""
    name = str(course_name).strip() if course_name is not None else ""
    if not cid or not name:
        raise ValueError("course_id and course_name are required")
    months = _duration(duration_months)
    if scalar(conn, "SELECT 1 FROM courses WHERE course_id = :c", {"c": cid}) is not None:
        raise Conflict(f"Course {cid} already exists")
    conn.execute(
        text(
            "INSERT INTO courses (course_id, course_name, duration_months, is_active) VALUES (:c, :n, :m, 1)"
        ),
        {"c": cid, "n": name, "m": months},
    )
    return get_course_row(conn, cid)


def get_course(conn: Connection, course_id: str, as_of: date | None = None) -> Dict[str, Any]:
    """Course with the positions requiring it and completion statistics."""
    course = get_course_row(conn, course_id)
    as_of = as_of or date.today()
    positions = fetch_all(
        conn,
        """
        SELECT p.position_id, p.position_name, p.is_active
        FROM position_courses pc
        JOIN positions p ON p.position_id = pc.position_id
        WHERE pc.course_id = :c
        ORDER BY p.position_name
        """,
        {"c": course["course_id"]},
    )
    stats = fetch_one(
        conn,
        """
        SELECT COUNT(DISTINCT employee_id) AS total_completions,
               COUNT(DISTINCT CASE WHEN expiration_date < :today THEN employee_id END) AS expired_count,
               COUNT(DISTINCT CASE WHEN expiration_date IS NULL OR expiration_date >= :today
                                   THEN employee_id END) AS valid_count
        FROM employee_training
        WHERE course_id = :c
        """,
        {"c": course["course_id"], "today": as_of.isoformat()},
    )
    return {
        "course": course,
        "positions": [as_bools(p, "is_active") for p in positions],
        "stats": {k: int(v or 0) for k, v in (stats or {}).items()},
    }


def update_course(
    conn: Connection, course_id: str, course_name: Any, duration_months: Any = None, is_active: Any = None
) -> Dict[str, Any]:
    """Update a course; deactivating it drops it from every position."""
    get_course_row(conn, course_id)
    name = str(course_name).strip() if course_name is not None else ""
    if not name:
        raise ValueError("course_name is required")
    months = _duration(duration_months)
    if is_active is not None and not isinstance(is_active, bool):
        raise ValueError("is_active must be a boolean")
    conn.execute(
        text(
            "UPDATE courses SET course_name = :n, duration_months = :m, "
            "is_active = COALESCE(:a, is_active) WHERE course_id = :c"
        ),
        {"n": name, "m": months, "a": None if is_active is None else int(is_active), "c": course_id},
    )
    if is_active is False:
        conn.execute(text("DELETE FROM position_courses WHERE course_id = :c"), {"c": course_id})
    return get_course_row(conn, course_id)


def delete_course(conn: Connection, course_id: str) -> Dict[str, Any]:
    """Hard delete a course with its training records, position links and group memberships."""
    get_course_row(conn, course_id)
    deleted = conn.execute(text("DELETE FROM employee_training WHERE course_id = :c"), {"c": course_id}).rowcount
    conn.execute(text("DELETE FROM position_courses WHERE course_id = :c"), {"c": course_id})
    conn.execute(text("DELETE FROM course_group_members WHERE course_id = :c"), {"c": course_id})
    conn.execute(text("DELETE FROM employee_q_courses WHERE course_id = :c"), {"c": course_id})
    conn.execute(text("DELETE FROM courses WHERE course_id = :c"), {"c": course_id})
    return {"course_id": course_id, "training_records_deleted": int(deleted or 0)}


# --- Course groups ---------------------------------------------------------


def build_course_groups(conn: Connection, log: Callable[[str], None] | None = None) -> Dict[str, int]:
    """Group courses sharing a T-code; only T-codes spanning more than one course.

    Existing groups (and their enabled flag) are kept; new members are added.
    """
    courses = read_frame(conn, "SELECT course_id, course_name FROM courses ORDER BY course_id")
    by_code: Dict[str, List[Dict[str, str]]] = {}
    for r in courses.itertuples(index=False):
        code = extract_t_code(r.course_name)
        if code:
            by_code.setdefault(code, []).append({"course_id": str(r.course_id), "course_name": str(r.course_name)})

    created = members_added = 0
    for code, items in sorted(by_code.items()):
        if len(items) < 2:
            continue
        group = fetch_one(conn, "SELECT group_id FROM course_groups WHERE group_code = :g", {"g": code})
        if group is None:
            res = conn.execute(
                text("INSERT INTO course_groups (group_code, group_name, is_enabled) VALUES (:g, :n, 1)"),
                {"g": code, "n": group_base_name(items[0]["course_name"]) or code},
            )
            group_id = int(res.lastrowid)
            created += 1
            if log:
                log(f"group {code}: {len(items)} courses")
        else:
            group_id = int(group["group_id"])
        for item in items:
            res = conn.execute(
                text(
                    "INSERT INTO course_group_members (group_id, course_id) VALUES (:g, :c) "
                    "ON CONFLICT DO NOTHING"
                ),
                {"g": group_id, "c": item["course_id"]},
            )
            members_added += int(res.rowcount or 0)
    return {"groups_created": created, "members_added": members_added}


def list_course_groups(conn: Connection) -> List[Dict[str, Any]]:
    groups = fetch_all(conn, "SELECT * FROM course_groups ORDER BY group_code")
    members = fetch_all(
        conn,
        """
        SELECT m.group_id, c.course_id, c.course_name
        FROM course_group_members m
        JOIN courses c ON c.course_id = m.course_id
        ORDER BY c.course_name
        """,
    )
    by_group: Dict[int, List[Dict[str, Any]]] = {}
    for m in members:
        by_group.setdefault(int(m["group_id"]), []).append(
            {"course_id": m["course_id"], "course_name": m["course_name"]}
        )
    out = []
    for g in groups:
        g = as_bools(g, "is_enabled")
        g["courses"] = by_group.get(int(g["group_id"]), [])
        out.append(g)
    return out


def set_group_enabled(conn: Connection, group_code: str, enabled: Any) -> Dict[str, Any]:
    if not isinstance(enabled, bool):
        raise ValueError("is_enabled must be a boolean")
    res = conn.execute(
        text("UPDATE course_groups SET is_enabled = :e WHERE group_code = :g"),
        {"e": int(enabled), "g": group_code},
    )
    if res.rowcount == 0:
        raise NotFound(f"Course group {group_code} not found")
    row = fetch_one(conn, "SELECT * FROM course_groups WHERE group_code = :g", {"g": group_code})
    return as_bools(row or {}, "is_enabled")


# --- Cleanup review --------------------------------------------------------


def _duration_bucket(expiration: Optional[date], as_of: date) -> str:
    if expiration is None:
        return "no expiration"
    years = round((expiration - as_of).days / 365.25)
    if years <= 0:
        return "expired/<1y"
    return f"{years}y"


def tcode_review(conn: Connection, as_of: date | None = None) -> List[Dict[str, Any]]:
    """T-code groups seen in the external report, for deciding keep/merge/delete.

    Only T-codes spanning more than one course id are listed.
    """
    as_of = as_of or date.today()
    ext = read_frame(
        conn,
        """
        SELECT associate_name, requirement, course_id, expiration_date
        FROM external_training
        WHERE course_id IS NOT NULL
        """,
    )
    if ext.empty:
        return []
    ext["t_code"] = ext["requirement"].map(extract_t_code)
    ext = ext.loc[ext["t_code"].notna()]

    decisions = {r["course_id"]: as_bools(r, "is_one_time") for r in fetch_all(conn, "SELECT * FROM course_cleanup")}
    merged = {
        r["old_course_id"]: r["new_course_id"]
        for r in fetch_all(conn, "SELECT old_course_id, new_course_id FROM merged_courses")
    }
    known = set(conn.execute(text("SELECT course_id FROM courses")).scalars())

    groups: List[Dict[str, Any]] = []
    for code, grp in ext.groupby("t_code", sort=True):
        course_ids = sorted(grp["course_id"].astype(str).unique())
        if len(course_ids) < 2:
            continue
        courses = []
        for cid in course_ids:
            rows = grp.loc[grp["course_id"].astype(str) == cid]
            expirations = [parse_report_date(v) for v in rows["expiration_date"].tolist()]
            buckets = pd.Series([_duration_bucket(d, as_of) for d in expirations]).value_counts()
            decision = decisions.get(cid, {})
            courses.append(
                {
                    "course_id": cid,
                    "requirement": str(rows["requirement"].iloc[0]),
                    "variant": course_variant(rows["requirement"].iloc[0]),
                    "employee_count": int(rows["associate_name"].nunique()),
                    "no_expiration_count": int(sum(1 for d in expirations if d is None)),
                    "cert_durations": {str(k): int(v) for k, v in buckets.items()},
                    "in_db": cid in known,
                    "merged_into": merged.get(cid),
                    "action": decision.get("action", "pending"),
                    "merge_into": decision.get("merge_into"),
                    "rename_to": decision.get("rename_to"),
                    "is_one_time": decision.get("is_one_time", False),
                    "recert_months": decision.get("recert_months"),
                    "notes": decision.get("notes"),
                }
            )
        groups.append(
            {
                "t_code": code,
                "group_name": group_base_name(courses[0]["requirement"]) or code,
                "course_count": len(courses),
                "courses": courses,
            }
        )
    return groups


def set_cleanup_decision(
    conn: Connection,
    course_id: Any,
    action: Any,
    *,
    merge_into: str | None = None,
    rename_to: str | None = None,
    is_one_time: bool = False,
    recert_months: Any = None,
    notes: str | None = None,
    t_code: str | None = None,
) -> Dict[str, Any]:
    cid = str(course_id).strip() if course_id is not None else ""
    if not cid:
        raise ValueError("course_id is required")
    if action not in CLEANUP_ACTIONS:
        raise ValueError(f"Invalid action. Use one of: {', '.join(CLEANUP_ACTIONS)}")
    if action == "merge" and not (merge_into or "").strip():
        raise ValueError("merge_into is required when action is 'merge'")
    conn.execute(
        text(
            """
            INSERT INTO course_cleanup
                (course_id, action, merge_into, rename_to, is_one_time, recert_months, notes, t_code, reviewed_at)
            VALUES (:c, :a, :m, :r, :o, :rm, :n, :t, CURRENT_TIMESTAMP)
            ON CONFLICT (course_id) DO UPDATE SET
                action = excluded.action,
                merge_into = excluded.merge_into,
                rename_to = excluded.rename_to,
                is_one_time = excluded.is_one_time,
                recert_months = excluded.recert_months,
                notes = excluded.notes,
                t_code = COALESCE(excluded.t_code, course_cleanup.t_code),
                reviewed_at = CURRENT_TIMESTAMP
            """
        ),
        {
            "c": cid,
            "a": action,
            "m": (merge_into or "").strip() or None,
            "r": (rename_to or "").strip() or None,
            "o": int(bool(is_one_time)),
            "rm": _duration(recert_months),
            "n": notes or None,
            "t": t_code or extract_t_code(rename_to) or None,
        },
    )
    row = fetch_one(conn, "SELECT * FROM course_cleanup WHERE course_id = :c", {"c": cid})
    return as_bools(row or {}, "is_one_time")


# --- Duplicate merge -------------------------------------------------------


@dataclass
class MergeGroup:
    course_name: str
    keep_id: str
    merge_ids: List[str]
    scores: Dict[str, int] = field(default_factory=dict)


def plan_duplicate_merge(conn: Connection) -> List[MergeGroup]:
    """Courses with the same normalized name; keep the best-used id.

    Score is positions * 100 + training records; ties go to the lowest id.
    """
    df = read_frame(
        conn,
        """
        SELECT c.course_id, c.course_name,
               (SELECT COUNT(*) FROM position_courses pc WHERE pc.course_id = c.course_id) AS n_positions,
               (SELECT COUNT(*) FROM employee_training t WHERE t.course_id = c.course_id) AS n_training
        FROM courses c
        """,
    )
    if df.empty:
        return []
    df["key"] = df["course_name"].map(course_name_key)
    df["score"] = df["n_positions"].astype(int) * 100 + df["n_training"].astype(int)
    plans: List[MergeGroup] = []
    for _, grp in df.groupby("key", sort=True):
        if len(grp) < 2:
            continue
        ordered = grp.sort_values(["score", "course_id"], ascending=[False, True])
        ids = ordered["course_id"].astype(str).tolist()
        plans.append(
            MergeGroup(
                course_name=str(ordered["course_name"].iloc[0]),
                keep_id=ids[0],
                merge_ids=ids[1:],
                scores={str(r.course_id): int(r.score) for r in ordered.itertuples(index=False)},
            )
        )
    return plans


def _merge_one(conn: Connection, old_id: str, keep_id: str) -> Dict[str, int]:
    moved_positions = conn.execute(
        text(
            """
            INSERT INTO position_courses (position_id, course_id)
            SELECT position_id, :keep FROM position_courses WHERE course_id = :old
            ON CONFLICT DO NOTHING
            """
        ),
        {"keep": keep_id, "old": old_id},
    ).rowcount
    moved_training = conn.execute(
        text(
            """
            INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date, notes, created_at)
            SELECT t.employee_id, :keep, t.completion_date, t.expiration_date, t.notes, t.created_at
            FROM employee_training t
            WHERE t.course_id = :old
              AND NOT EXISTS (
                  SELECT 1 FROM employee_training k
                  WHERE k.employee_id = t.employee_id AND k.course_id = :keep
              )
            ON CONFLICT DO NOTHING
            """
        ),
        {"keep": keep_id, "old": old_id},
    ).rowcount
    conn.execute(
        text(
            """
            INSERT INTO employee_q_courses (employee_id, course_id, is_needed, updated_at)
            SELECT employee_id, :keep, is_needed, updated_at FROM employee_q_courses WHERE course_id = :old
            ON CONFLICT DO NOTHING
            """
        ),
        {"keep": keep_id, "old": old_id},
    )
    for table in ("employee_training", "position_courses", "course_group_members", "employee_q_courses"):
        conn.execute(text(f"DELETE FROM {table} WHERE course_id = :old"), {"old": old_id})
    conn.execute(text("DELETE FROM courses WHERE course_id = :old"), {"old": old_id})
    conn.execute(
        text(
            "INSERT INTO merged_courses (old_course_id, new_course_id) VALUES (:old, :keep) "
            "ON CONFLICT (old_course_id) DO UPDATE SET new_course_id = excluded.new_course_id"
        ),
        {"keep": keep_id, "old": old_id},
    )
    return {"positions_moved": int(moved_positions or 0), "training_moved": int(moved_training or 0)}


def apply_duplicate_merge(
    conn: Connection, dry_run: bool = True, log: Callable[[str], None] | None = None
) -> Dict[str, Any]:
    plans = plan_duplicate_merge(conn)
    summary: Dict[str, Any] = {
        "dry_run": dry_run,
        "groups": [
            {"course_name": p.course_name, "keep_id": p.keep_id, "merge_ids": p.merge_ids, "scores": p.scores}
            for p in plans
        ],
        "courses_merged": 0,
        "positions_moved": 0,
        "training_moved": 0,
        "groups_removed": 0,
    }
    if dry_run:
        summary["courses_merged"] = sum(len(p.merge_ids) for p in plans)
        return summary

    for plan in plans:
        for old_id in plan.merge_ids:
            counts = _merge_one(conn, old_id, plan.keep_id)
            summary["courses_merged"] += 1
            summary["positions_moved"] += counts["positions_moved"]
            summary["training_moved"] += counts["training_moved"]
            if log:
                log(f"merged {old_id} -> {plan.keep_id} ({plan.course_name})")

    # Groups left with fewer than two members no longer express an equivalence
    removed = conn.execute(
        text(
            """
            DELETE FROM course_groups
            WHERE group_id IN (
                SELECT g.group_id FROM course_groups g
                LEFT JOIN course_group_members m ON m.group_id = g.group_id
                GROUP BY g.group_id
                HAVING COUNT(m.course_id) < 2
            )
            """
        )
    ).rowcount
    summary["groups_removed"] = int(removed or 0)
    return summary


__all__ = [
    "CLEANUP_ACTIONS",
    "list_courses",
    "get_course_row",
    "create_course",
    "get_course",
    "update_course",
    "delete_course",
    "build_course_groups",
    "list_course_groups",
    "set_group_enabled",
    "tcode_review",
    "set_cleanup_decision",
    "MergeGroup",
    "plan_duplicate_merge",
    "apply_duplicate_merge",
]
