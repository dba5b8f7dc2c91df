from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Optional, Set, Tuple

import pandas as pd
from sqlalchemy.engine import Connection

from .db import read_frame
from .normalize import is_q_course

NEVER_COMPLETED = "never_completed"
EXPIRED = "expired"
EXPIRING_SOON = "expiring_soon"
VALID = "valid"
NO_EXPIRATION = "no_expiration"

# Display order: most urgent first
STATUS_ORDER = [NEVER_COMPLETED, EXPIRED, EXPIRING_SOON, VALID, NO_EXPIRATION]
# How well a status satisfies a requirement (higher is better)
_SATISFACTION = {NEVER_COMPLETED: 0, EXPIRED: 1, EXPIRING_SOON: 2, VALID: 3, NO_EXPIRATION: 3}

PERIODS: Dict[str, Optional[int]] = {"expired": None, "7days": 7, "30days": 30, "90days": 90}


@dataclass
class ComplianceConfig:
    expiring_window_days: int = 30  # valid records expiring within N days are "expiring soon"
    expiring_limit: int = 100
    periods: Dict[str, Optional[int]] = field(default_factory=lambda: dict(PERIODS))


def _to_date(v) -> Optional[date]:
    if v is None or (not isinstance(v, str) and pd.isna(v)):
        return None
    if isinstance(v, date) and not isinstance(v, datetime):
        return v
    ts = pd.to_datetime(v, errors="coerce")
    return None if pd.isna(ts) else ts.date()


def derive_status(
    has_record: bool, expiration: Optional[date], as_of: date, cfg: ComplianceConfig
) -> Tuple[str, Optional[int]]:
    """Status and days-to-expiry for the latest record of one employee-course pair."""
    if not has_record:
        return NEVER_COMPLETED, None
    if expiration is None:
        return NO_EXPIRATION, None
    days = (expiration - as_of).days
    if days < 0:
        return EXPIRED, days
    if days <= cfg.expiring_window_days:
        return EXPIRING_SOON, days
    return VALID, days


def annotate_status(
    df: pd.DataFrame, as_of: date | None = None, cfg: ComplianceConfig | None = None
) -> pd.DataFrame:
    """Add ``status`` and ``days_to_expiry`` to every row without filtering.

    A row counts as having a record when its ``training_id`` is set; frames
    without that column are treated as all-records.
    """
    as_of = as_of or date.today()
    cfg = cfg or ComplianceConfig()
    if "expiration_date" not in df.columns:
        raise ValueError("DataFrame must contain 'expiration_date'")

    result = df.copy()
    if "training_id" in result.columns:
        has_record = result["training_id"].notna().tolist()
    else:
        has_record = [True] * len(result)
    expirations = result["expiration_date"].map(_to_date).tolist()

    statuses: list[str] = []
    days_list: list[Optional[int]] = []
    for present, exp in zip(has_record, expirations):
        status, days = derive_status(present, exp, as_of, cfg)
        statuses.append(status)
        days_list.append(days)

    result["status"] = statuses
    result["days_to_expiry"] = pd.Series(days_list, index=result.index, dtype="Int64")
    return result


def load_requirements(
    conn: Connection,
    *,
    employee_ids: Iterable[int] | None = None,
    leader: str | None = None,
    active_only: bool = True,
    respect_q_courses: bool = True,
) -> pd.DataFrame:
    """One row per (employee, required course).

    Required courses come from the employee's active positions and must be
    active themselves. Q courses (QOP/QCD) are kept only where the employee
    has them marked as needed.
    """
    q = """
        SELECT DISTINCT e.employee_id, e.badge_id, e.employee_name, e.leader, e.is_active,
               c.course_id, c.course_name, COALESCE(q.is_needed, 0) AS q_needed
        FROM employees e
        JOIN employee_positions ep ON ep.employee_id = e.employee_id
        JOIN positions p ON p.position_id = ep.position_id AND p.is_active = 1
        JOIN position_courses pc ON pc.position_id = p.position_id
        JOIN courses c ON c.course_id = pc.course_id AND c.is_active = 1
        LEFT JOIN employee_q_courses q
               ON q.employee_id = e.employee_id AND q.course_id = c.course_id
        WHERE 1 = 1
    """
    params: Dict[str, object] = {}
    if active_only:
        q += " AND e.is_active = 1"
    if leader is not None:
        q += " AND e.leader = :leader"
        params["leader"] = leader
    ids = list(employee_ids) if employee_ids is not None else None
    if ids is not None:
        if not ids:
            return _coerce_keys(_empty_requirements())
        names = []
        for i, emp_id in enumerate(ids):
            params[f"e{i}"] = int(emp_id)
            names.append(f":e{i}")
        q += f" AND e.employee_id IN ({', '.join(names)})"
    df = read_frame(conn, q, params)
    if respect_q_courses and not df.empty:
        q_mask = df["course_name"].map(is_q_course)
        df = df.loc[~q_mask | (df["q_needed"].astype(int) == 1)]
    return _coerce_keys(df.drop(columns=["q_needed"]).reset_index(drop=True))


def _coerce_keys(df: pd.DataFrame) -> pd.DataFrame:
    if "employee_id" in df.columns:
        df["employee_id"] = df["employee_id"].astype("int64")
    if "course_id" in df.columns:
        df["course_id"] = df["course_id"].astype(str)
    return df


def _empty_requirements() -> pd.DataFrame:
    return pd.DataFrame(
        columns=["employee_id", "badge_id", "employee_name", "leader", "is_active", "course_id", "course_name"]
    )


def load_latest_training(conn: Connection) -> pd.DataFrame:
    """Latest record per (employee, course) by completion date, then expiration."""
    q = """
        SELECT training_id, employee_id, course_id, completion_date, expiration_date, notes
        FROM (
            SELECT t.*, ROW_NUMBER() OVER (
                PARTITION BY t.employee_id, t.course_id
                ORDER BY t.completion_date IS NULL, t.completion_date DESC,
                         t.expiration_date IS NULL, t.expiration_date DESC,
                         t.training_id DESC
            ) AS rn
            FROM employee_training t
        ) ranked
        WHERE rn = 1
    """
    return _coerce_keys(read_frame(conn, q))


def load_group_siblings(conn: Connection) -> Dict[str, Set[str]]:
    """course_id -> other courses sharing an enabled course group."""
    members = read_frame(
        conn,
        """
        SELECT g.group_code, m.course_id
        FROM course_groups g
        JOIN course_group_members m ON m.group_id = g.group_id
        WHERE g.is_enabled = 1
        """,
    )
    siblings: Dict[str, Set[str]] = {}
    for _, grp in members.groupby("group_code"):
        courses = set(grp["course_id"].astype(str))
        for cid in courses:
            siblings.setdefault(cid, set()).update(courses - {cid})
    return siblings


def _latest_lookup(latest: pd.DataFrame) -> Dict[Tuple[int, str], Optional[date]]:
    return {
        (int(r.employee_id), str(r.course_id)): _to_date(r.expiration_date)
        for r in latest.itertuples(index=False)
    }


# Record fields a covering sibling contributes to a requirement row
_CARRIED_COLUMNS = ["training_id", "completion_date", "expiration_date", "notes"]


def _latest_records(latest: pd.DataFrame) -> Dict[Tuple[int, str], Dict[str, object]]:
    return {
        (int(rec["employee_id"]), str(rec["course_id"])): rec
        for rec in latest.to_dict(orient="records")
    }


def compliance_frame(
    conn: Connection,
    as_of: date | None = None,
    cfg: ComplianceConfig | None = None,
    **requirement_filters,
) -> pd.DataFrame:
    """Requirement status for every (employee, required course) pair.

    Expired or never-completed requirements are satisfied by a better record
    on a sibling course of an enabled course group; ``covered_by`` then names
    that course and the record columns and ``days_to_expiry`` come from the
    sibling's record.
    """
    as_of = as_of or date.today()
    cfg = cfg or ComplianceConfig()
    req = load_requirements(conn, **requirement_filters)
    latest = load_latest_training(conn)
    if req.empty:
        cols = list(req.columns) + [
            "training_id", "completion_date", "expiration_date", "notes",
            "status", "days_to_expiry", "covered_by",
        ]
        return pd.DataFrame(columns=cols)

    merged = req.merge(latest, on=["employee_id", "course_id"], how="left")
    annotated = annotate_status(merged, as_of=as_of, cfg=cfg)

    siblings = load_group_siblings(conn)
    records = _latest_records(latest)
    covered_by: list[Optional[str]] = []
    statuses = annotated["status"].tolist()
    days_list = annotated["days_to_expiry"].tolist()
    carried = {col: annotated[col].tolist() for col in _CARRIED_COLUMNS}
    for pos, row in enumerate(annotated.itertuples(index=False)):
        status = statuses[pos]
        best: Optional[Tuple[int, str, str, Optional[int]]] = None
        if status in (NEVER_COMPLETED, EXPIRED):
            for sib in sorted(siblings.get(str(row.course_id), ())):
                rec = records.get((int(row.employee_id), sib))
                if rec is None:
                    continue
                sib_status, sib_days = derive_status(True, _to_date(rec["expiration_date"]), as_of, cfg)
                score = _SATISFACTION[sib_status]
                if score > _SATISFACTION[status] and (best is None or score > best[0]):
                    best = (score, sib, sib_status, sib_days)
        if best is None:
            covered_by.append(None)
            continue
        # The row reports the covering record so dates and status agree
        rec = records[(int(row.employee_id), best[1])]
        for col in _CARRIED_COLUMNS:
            carried[col][pos] = rec[col]
        statuses[pos] = best[2]
        days_list[pos] = best[3]
        covered_by.append(best[1])
    for col in _CARRIED_COLUMNS:
        annotated[col] = pd.Series(carried[col], index=annotated.index)
    annotated["status"] = statuses
    annotated["days_to_expiry"] = pd.Series(days_list, index=annotated.index, dtype="Int64")
    annotated["covered_by"] = covered_by

    rank = {s: i for i, s in enumerate(STATUS_ORDER)}
    annotated["_rank"] = annotated["status"].map(rank)
    annotated = annotated.sort_values(["employee_name", "employee_id", "_rank", "course_name"], kind="stable")
    return annotated.drop(columns=["_rank"]).reset_index(drop=True)


def requirements_status(
    conn: Connection, employee_id: int, as_of: date | None = None, cfg: ComplianceConfig | None = None
) -> pd.DataFrame:
    """Required courses of one employee, ordered most urgent first."""
    df = compliance_frame(conn, as_of=as_of, cfg=cfg, employee_ids=[employee_id], active_only=False)
    return df.drop(columns=["leader", "is_active"], errors="ignore")


def expiring_training(
    conn: Connection,
    period: str,
    as_of: date | None = None,
    cfg: ComplianceConfig | None = None,
    limit: int | None = 100,
) -> pd.DataFrame:
    """Training records expiring within ``period`` (or already expired).

    Only active employees, active courses and required courses are listed.
    Records covered by a sibling course of an enabled group that stays valid
    past the period end are excluded. Ordered by expiration ascending.
    """
    cfg = cfg or ComplianceConfig()
    if period not in cfg.periods:
        raise ValueError(f"Invalid period. Use one of: {', '.join(cfg.periods)}")
    as_of = as_of or date.today()
    days = cfg.periods[period]

    req = load_requirements(conn)
    latest = load_latest_training(conn)
    rows = req.merge(latest, on=["employee_id", "course_id"], how="inner")
    rows = rows.loc[rows["expiration_date"].notna()].copy()
    exp = rows["expiration_date"].map(_to_date)
    if days is None:
        mask = exp.map(lambda d: d is not None and d < as_of)
        period_end = as_of - timedelta(days=1)
    else:
        period_end = as_of + timedelta(days=days)
        mask = exp.map(lambda d: d is not None and as_of <= d <= period_end)
    rows = rows.loc[mask.astype(bool)]

    siblings = load_group_siblings(conn)
    lookup = _latest_lookup(latest)

    def _covered(r) -> bool:
        for sib in siblings.get(str(r.course_id), ()):
            key = (int(r.employee_id), sib)
            if key not in lookup:
                continue
            sib_exp = lookup[key]
            if sib_exp is None or sib_exp > period_end:
                return True
        return False

    if not rows.empty:
        keep = [not _covered(r) for r in rows.itertuples(index=False)]
        rows = rows.loc[keep]

    rows = annotate_status(rows, as_of=as_of, cfg=cfg)
    rows = rows.sort_values(["expiration_date", "employee_name"], kind="stable").reset_index(drop=True)
    rows = rows.drop(columns=["leader", "is_active"], errors="ignore")
    if limit is not None:
        rows = rows.head(int(limit))
    return rows


__all__ = [
    "ComplianceConfig",
    "PERIODS",
    "STATUS_ORDER",
    "NEVER_COMPLETED",
    "EXPIRED",
    "EXPIRING_SOON",
    "VALID",
    "NO_EXPIRATION",
    "derive_status",
    "annotate_status",
    "load_requirements",
    "load_latest_training",
    "load_group_siblings",
    "compliance_frame",
    "requirements_status",
    "expiring_training",
]
