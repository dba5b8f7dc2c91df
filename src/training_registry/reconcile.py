"""Reconcile the external training report against the internal roster.

Each external row is matched to an employee (exact name key, then fuzzy) and
to a course (id, code prefix, normalized name, then fuzzy), and classified:

- ``Exact``: the employee has a record for the matched course
- ``Group``: the employee has a record for a sibling in an enabled course group
- ``Not Found``: employee known, no record (or no course id to go on)
- ``Course Not in DB``: the report's course id is unknown and nothing else matches
- ``Employee Not in DB``: the associate name matches no employee (or several)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd
from rapidfuzz import fuzz, process
from sqlalchemy import text
from sqlalchemy.engine import Connection

from .compliance import load_latest_training, load_requirements
from .dates import add_months, parse_report_date
from .db import fetch_one, frame_records, read_frame
from .external import external_rows
from .io_excel import write_workbook
from .normalize import (
    course_name_key,
    extract_course_code,
    extract_t_code,
    migration_position_name,
    name_key,
    strip_course_id,
)
from .roster import next_position_id

EXACT = "Exact"
GROUP = "Group"
NOT_FOUND = "Not Found"
COURSE_NOT_IN_DB = "Course Not in DB"
EMPLOYEE_NOT_IN_DB = "Employee Not in DB"
MATCH_TYPES = [EXACT, GROUP, NOT_FOUND, COURSE_NOT_IN_DB, EMPLOYEE_NOT_IN_DB]

MATCH_COLOURS = {
    EXACT: "green",
    GROUP: "purple",
    NOT_FOUND: "orange",
    COURSE_NOT_IN_DB: "red",
    EMPLOYEE_NOT_IN_DB: "red",
}

MIGRATION_ID_MIN = 777000
MIGRATION_ID_MAX = 777999
IMPORT_NOTE = "Imported from external training report"


# --- Matching --------------------------------------------------------------


@dataclass
class EmployeeMatch:
    employee_id: Optional[int]
    employee_name: Optional[str]
    is_active: Optional[bool]
    method: str  # exact | fuzzy | ambiguous | none
    score: float = 0.0
    candidates: List[str] = field(default_factory=list)


class EmployeeMatcher:
    """Resolve free-text associate names to employees."""

    def __init__(self, employees: pd.DataFrame, cutoff: float = 90.0, margin: float = 2.0):
        self.cutoff = cutoff
        self.margin = margin
        self._by_key: Dict[str, List[Dict[str, Any]]] = {}
        for rec in employees.to_dict(orient="records"):
            key = name_key(rec["employee_name"])
            if key:
                self._by_key.setdefault(key, []).append(rec)
        self._keys = list(self._by_key)
        self._cache: Dict[str, EmployeeMatch] = {}

    @classmethod
    def from_conn(cls, conn: Connection, **kwargs) -> "EmployeeMatcher":
        df = read_frame(conn, "SELECT employee_id, employee_name, is_active FROM employees")
        return cls(df, **kwargs)

    def _resolve(self, key: str, method: str, score: float) -> EmployeeMatch:
        recs = self._by_key[key]
        if len(recs) > 1:
            active = [r for r in recs if bool(r["is_active"])]
            recs = active if len(active) == 1 else recs
        if len(recs) > 1:
            return EmployeeMatch(None, None, None, "ambiguous", score, [r["employee_name"] for r in recs])
        rec = recs[0]
        return EmployeeMatch(int(rec["employee_id"]), str(rec["employee_name"]), bool(rec["is_active"]), method, score)

    def match(self, name: Any) -> EmployeeMatch:
        key = name_key(name)
        if key in self._cache:
            return self._cache[key]
        if not key:
            result = EmployeeMatch(None, None, None, "none")
        elif key in self._by_key:
            result = self._resolve(key, "exact", 100.0)
        else:
            hits = process.extract(key, self._keys, scorer=fuzz.WRatio, limit=2, score_cutoff=self.cutoff)
            if not hits:
                result = EmployeeMatch(None, None, None, "none")
            elif len(hits) > 1 and hits[0][1] - hits[1][1] < self.margin:
                result = EmployeeMatch(
                    None, None, None, "ambiguous", float(hits[0][1]), [str(h[0]) for h in hits]
                )
            else:
                result = self._resolve(str(hits[0][0]), "fuzzy", float(hits[0][1]))
        self._cache[key] = result
        return result


@dataclass
class CourseMatch:
    course_id: Optional[str]
    course_name: Optional[str]
    method: str  # id | code | name | fuzzy | none
    score: float = 0.0


class CourseMatcher:
    """Resolve requirement text (and an optional course id) to a course."""

    def __init__(self, courses: pd.DataFrame, cutoff: float = 90.0):
        self.cutoff = cutoff
        ordered = courses.sort_values("course_id") if not courses.empty else courses
        self._names: Dict[str, str] = {}
        self._by_id: Dict[str, str] = {}
        self._by_name: Dict[str, str] = {}
        codes: Dict[str, Set[str]] = {}
        for rec in ordered.to_dict(orient="records"):
            cid, cname = str(rec["course_id"]), str(rec["course_name"])
            self._names[cid] = cname
            self._by_id[cid] = cid
            self._by_name.setdefault(course_name_key(strip_course_id(cname)), cid)
            code = extract_course_code(cname)
            if code:
                codes.setdefault(code.lower(), set()).add(cid)
        # A code shared by several courses identifies none of them
        self._by_code = {code: next(iter(ids)) for code, ids in codes.items() if len(ids) == 1}
        self._name_keys = [k for k in self._by_name if k]

    @classmethod
    def from_conn(cls, conn: Connection, **kwargs) -> "CourseMatcher":
        return cls(read_frame(conn, "SELECT course_id, course_name FROM courses"), **kwargs)

    def _hit(self, cid: str, method: str, score: float = 100.0) -> CourseMatch:
        return CourseMatch(cid, self._names[cid], method, score)

    def match(self, requirement: Any, course_id: Any = None) -> CourseMatch:
        cid = str(course_id).strip() if course_id is not None and not pd.isna(course_id) else ""
        if cid and cid in self._by_id:
            return self._hit(cid, "id")
        text_ = "" if requirement is None or (not isinstance(requirement, str) and pd.isna(requirement)) else str(requirement)
        code = extract_course_code(text_)
        if code and code.lower() in self._by_code:
            return self._hit(self._by_code[code.lower()], "code")
        key = course_name_key(strip_course_id(text_))
        if key and key in self._by_name:
            return self._hit(self._by_name[key], "name")
        if key and self._name_keys:
            hit = process.extractOne(key, self._name_keys, scorer=fuzz.WRatio, score_cutoff=self.cutoff)
            if hit:
                return self._hit(self._by_name[str(hit[0])], "fuzzy", float(hit[1]))
        return CourseMatch(None, None, "none")


# --- Classification --------------------------------------------------------


@dataclass
class ReconcileContext:
    employees: EmployeeMatcher
    courses: CourseMatcher
    latest: Dict[Tuple[int, str], Dict[str, Any]]
    group_of: Dict[str, str]
    group_members: Dict[str, List[str]]
    required: Set[Tuple[int, str]]

    @classmethod
    def load(cls, conn: Connection, *, name_cutoff: float = 90.0, course_cutoff: float = 90.0) -> "ReconcileContext":
        latest_df = load_latest_training(conn)
        latest = {
            (int(r["employee_id"]), str(r["course_id"])): r for r in latest_df.to_dict(orient="records")
        }
        groups = read_frame(
            conn,
            """
            SELECT g.group_code, m.course_id
            FROM course_groups g
            JOIN course_group_members m ON m.group_id = g.group_id
            WHERE g.is_enabled = 1
            ORDER BY g.group_code, m.course_id
            """,
        )
        group_of: Dict[str, str] = {}
        members: Dict[str, List[str]] = {}
        for r in groups.itertuples(index=False):
            group_of.setdefault(str(r.course_id), str(r.group_code))
            members.setdefault(str(r.group_code), []).append(str(r.course_id))
        req = load_requirements(conn, active_only=False)
        required = {(int(r.employee_id), str(r.course_id)) for r in req.itertuples(index=False)}
        return cls(
            employees=EmployeeMatcher.from_conn(conn, cutoff=name_cutoff),
            courses=CourseMatcher.from_conn(conn, cutoff=course_cutoff),
            latest=latest,
            group_of=group_of,
            group_members=members,
            required=required,
        )


def _none_if_na(v: Any) -> Any:
    if v is None or (not isinstance(v, str) and pd.isna(v)):
        return None
    return v


def classify_rows(ctx: ReconcileContext, ext: pd.DataFrame) -> pd.DataFrame:
    """Tag each external row with its match type and the DB side of the match."""
    out: List[Dict[str, Any]] = []
    for row in ext.to_dict(orient="records"):
        row = {k: _none_if_na(v) for k, v in row.items()}
        emp = ctx.employees.match(row["associate_name"])
        course = ctx.courses.match(row["requirement"], row.get("course_id"))
        rec: Dict[str, Any] = dict(row)
        rec.update(
            employee_id=emp.employee_id,
            employee_name=emp.employee_name,
            employee_active=emp.is_active,
            employee_match=emp.method,
            employee_score=emp.score,
            matched_course_id=course.course_id,
            matched_course_name=course.course_name,
            course_match=course.method,
            t_code=extract_t_code(row["requirement"]),
            group_code=None,
            group_course_id=None,
            db_training_id=None,
            db_completion_date=None,
            db_expiration_date=None,
            is_required=bool(
                emp.employee_id is not None
                and course.course_id is not None
                and (emp.employee_id, course.course_id) in ctx.required
            ),
            reason=None,
        )
        if emp.employee_id is None:
            rec["match_type"] = EMPLOYEE_NOT_IN_DB
            rec["reason"] = "Ambiguous employee name" if emp.method == "ambiguous" else "Employee not found"
        elif course.course_id is None:
            if row.get("course_id"):
                rec["match_type"] = COURSE_NOT_IN_DB
                rec["reason"] = "Course id not in database"
            else:
                rec["match_type"] = NOT_FOUND
                rec["reason"] = "No course ID in requirement"
        else:
            key = (emp.employee_id, course.course_id)
            if key in ctx.latest:
                hit = ctx.latest[key]
                rec["match_type"] = EXACT
            else:
                hit = None
                group = ctx.group_of.get(course.course_id)
                for sib in ctx.group_members.get(group, []) if group else []:
                    if sib != course.course_id and (emp.employee_id, sib) in ctx.latest:
                        hit = ctx.latest[(emp.employee_id, sib)]
                        rec.update(group_code=group, group_course_id=sib)
                        break
                rec["match_type"] = GROUP if hit is not None else NOT_FOUND
                if hit is None:
                    rec["reason"] = "No training record in database"
            if hit is not None:
                rec.update(
                    db_training_id=int(hit["training_id"]),
                    db_completion_date=_none_if_na(hit["completion_date"]),
                    db_expiration_date=_none_if_na(hit["expiration_date"]),
                )
        out.append(rec)

    df = pd.DataFrame(out)
    if df.empty:
        return df
    for col in ("employee_id", "db_training_id"):
        df[col] = df[col].astype("Int64")
    return _flag_duplicates(df)


def _flag_duplicates(df: pd.DataFrame) -> pd.DataFrame:
    """Mark repeated (person, course) rows; the latest expiration stays primary."""
    person = df["employee_id"].map(lambda v: None if v is None or pd.isna(v) else f"e{int(v)}")
    person = person.where(person.notna(), "n" + df["associate_name"].map(name_key))
    course = df["matched_course_id"].where(df["matched_course_id"].notna(), df["course_id"])
    course = course.where(course.notna(), df["requirement"].map(lambda r: course_name_key(strip_course_id(r))))
    exp_sort = df["expiration_date"].map(lambda v: v if isinstance(v, str) else "")
    order = pd.DataFrame({"p": person, "c": course.astype(str), "e": exp_sort}).sort_values(
        ["p", "c", "e"], ascending=[True, True, False], kind="stable"
    )
    dup = order.duplicated(subset=["p", "c"], keep="first")
    df = df.copy()
    df["is_duplicate"] = dup.reindex(df.index).astype(bool)
    return df


def classify_external(conn: Connection, ctx: ReconcileContext | None = None) -> pd.DataFrame:
    ctx = ctx or ReconcileContext.load(conn)
    return classify_rows(ctx, external_rows(conn))


def match_summary(classified: pd.DataFrame) -> Dict[str, int]:
    counts = {t: 0 for t in MATCH_TYPES}
    if classified is not None and not classified.empty:
        for t, n in classified["match_type"].value_counts().items():
            counts[str(t)] = int(n)
        counts["duplicates"] = int(classified["is_duplicate"].sum())
        counts["total"] = int(len(classified))
    else:
        counts["duplicates"] = 0
        counts["total"] = 0
    counts["accounted_for"] = counts[EXACT] + counts[GROUP]
    return counts


# --- Per-employee comparison -----------------------------------------------


def _suggestions(names: List[str], query: str, limit: int = 10) -> List[str]:
    first = query.split(",")[0].strip().lower()
    subs = [n for n in names if first and first in n.lower()]
    if len(subs) < limit:
        fuzzy = process.extract(query.lower(), [n.lower() for n in names], scorer=fuzz.WRatio, limit=limit, score_cutoff=60)
        for _, _, idx in fuzzy:
            if names[idx] not in subs:
                subs.append(names[idx])
    return subs[:limit]


def compare_employee(conn: Connection, name: str, ctx: ReconcileContext | None = None) -> Dict[str, Any]:
    """One person's external rows against their DB records."""
    query = (name or "").strip()
    if not query:
        raise ValueError("name is required")
    names = sorted(
        str(n) for n in conn.execute(text("SELECT DISTINCT associate_name FROM external_training")).scalars() if n
    )
    hits = [n for n in names if query.lower() in n.lower()]
    if not hits:
        qkey = name_key(query)
        hits = [n for n in names if name_key(n) == qkey]
    if not hits and names:
        best = process.extractOne(name_key(query), [name_key(n) for n in names], scorer=fuzz.WRatio, score_cutoff=90)
        if best:
            hits = [names[best[2]]]
    if not hits:
        return {
            "found": False,
            "message": f'No records found in external training data for "{query}"',
            "suggestions": _suggestions(names, query),
        }

    exact_name = hits[0]
    ctx = ctx or ReconcileContext.load(conn)
    ext = external_rows(conn)
    ext = ext.loc[ext["associate_name"].str.lower() == exact_name.lower()]
    classified = classify_rows(ctx, ext)
    emp = ctx.employees.match(exact_name)

    result: Dict[str, Any] = {"found": True, "csv_name": exact_name, "in_database": emp.employee_id is not None}
    if emp.employee_id is None:
        result["employee"] = None
        result["candidates"] = emp.candidates
        result["records"] = frame_records(classified, bool_cols=("is_duplicate", "is_required"))
        return result

    db_records = fetch_one(
        conn, "SELECT COUNT(*) AS n FROM employee_training WHERE employee_id = :e", {"e": emp.employee_id}
    )
    by_type = {t: classified.loc[classified["match_type"] == t] for t in (EXACT, GROUP, NOT_FOUND, COURSE_NOT_IN_DB)}
    matched = pd.concat([by_type[EXACT], by_type[GROUP]])
    not_found = by_type[NOT_FOUND]
    result["employee"] = {
        "employee_id": emp.employee_id,
        "employee_name": emp.employee_name,
        "is_active": emp.is_active,
        "match": emp.method,
    }
    result["summary"] = {
        "csv_records": int(len(classified)),
        "db_records": int((db_records or {}).get("n", 0)),
        "exact_matches": int(len(by_type[EXACT])),
        "group_matches": int(len(by_type[GROUP])),
        "not_found": int(len(not_found)),
        "course_not_in_db": int(len(by_type[COURSE_NOT_IN_DB])),
        "total_matched": int(len(matched)),
        "required_matched": int(matched["is_required"].sum()) if not matched.empty else 0,
        "required_missing": int(not_found["is_required"].sum()) if not not_found.empty else 0,
        "rogue_count": int((~not_found["is_required"]).sum() if not not_found.empty else 0)
        + int(len(by_type[COURSE_NOT_IN_DB])),
    }
    flags = ("is_duplicate", "is_required")
    result["records"] = {
        "exact_matches": frame_records(by_type[EXACT], flags),
        "group_matches": frame_records(by_type[GROUP], flags),
        "not_found": frame_records(not_found, flags),
        "course_not_in_db": frame_records(by_type[COURSE_NOT_IN_DB], flags),
    }
    return result


# --- Training import -------------------------------------------------------


@dataclass
class ImportPlan:
    actions: pd.DataFrame
    counts: Dict[str, int]


def plan_training_import(conn: Connection, ctx: ReconcileContext | None = None) -> ImportPlan:
    """Decide which report expirations can be written into training records.

    A record with no expiration gets the report's date; a missing record is
    inserted with completion one year before the expiration.
    """
    classified = classify_external(conn, ctx)
    counts = {
        "updates": 0,
        "inserts": 0,
        "already_has_expiration": 0,
        "no_expiration_in_report": 0,
        "employee_not_found": 0,
        "course_not_found": 0,
        "duplicates_skipped": 0,
    }
    actions: List[Dict[str, Any]] = []
    for rec in classified.to_dict(orient="records") if not classified.empty else []:
        if rec["match_type"] == EMPLOYEE_NOT_IN_DB:
            counts["employee_not_found"] += 1
            continue
        if rec["matched_course_id"] is None or pd.isna(rec["matched_course_id"]):
            counts["course_not_found"] += 1
            continue
        if rec["is_duplicate"]:
            counts["duplicates_skipped"] += 1
            continue
        expiration = parse_report_date(rec["expiration_date"])
        if expiration is None:
            counts["no_expiration_in_report"] += 1
            continue
        base = {
            "employee_id": int(rec["employee_id"]),
            "employee_name": rec["employee_name"],
            "course_id": rec["matched_course_id"],
            "course_name": rec["matched_course_name"],
            "expiration_date": expiration.isoformat(),
        }
        if rec["match_type"] == EXACT:
            if _none_if_na(rec["db_expiration_date"]) is not None:
                counts["already_has_expiration"] += 1
                continue
            actions.append(dict(base, action="update", training_id=int(rec["db_training_id"]), completion_date=None))
            counts["updates"] += 1
        else:
            completion = add_months(expiration, -12).isoformat()
            actions.append(dict(base, action="insert", training_id=None, completion_date=completion))
            counts["inserts"] += 1
    cols = ["action", "employee_id", "employee_name", "course_id", "course_name",
            "training_id", "completion_date", "expiration_date"]
    return ImportPlan(actions=pd.DataFrame(actions, columns=cols), counts=counts)


def apply_training_import(
    conn: Connection, plan: ImportPlan | None = None, log: Callable[[str], None] | None = None
) -> Dict[str, int]:
    plan = plan or plan_training_import(conn)
    applied = {"updated": 0, "inserted": 0}
    for act in plan.actions.to_dict(orient="records"):
        if act["action"] == "update":
            res = conn.execute(
                text(
                    """
                    UPDATE employee_training
                    SET expiration_date = :exp,
                        notes = CASE WHEN notes IS NULL OR notes = '' THEN :note ELSE notes || char(10) || :note END
                    WHERE training_id = :t AND expiration_date IS NULL
                    """
                ),
                {"exp": act["expiration_date"], "note": IMPORT_NOTE, "t": int(act["training_id"])},
            )
            applied["updated"] += int(res.rowcount or 0)
        else:
            res = conn.execute(
                text(
                    """
                    INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date, notes)
                    VALUES (:e, :c, :done, :exp, :note)
                    ON CONFLICT (employee_id, course_id, completion_date) DO NOTHING
                    """
                ),
                {
                    "e": int(act["employee_id"]),
                    "c": act["course_id"],
                    "done": act["completion_date"],
                    "exp": act["expiration_date"],
                    "note": IMPORT_NOTE,
                },
            )
            applied["inserted"] += int(res.rowcount or 0)
    if log:
        log(f"training import: {applied['updated']} updated, {applied['inserted']} inserted")
    return applied


# --- Migration of orphan courses -------------------------------------------


@dataclass
class MigrationEntry:
    employee_id: int
    employee_name: str
    position_name: str
    courses: List[Tuple[str, Optional[str]]]  # (course_id, expiration)


@dataclass
class MigrationPlan:
    entries: List[MigrationEntry]
    skipped: List[Dict[str, str]]


def plan_migration(
    conn: Connection, names: Iterable[str] | None = None, ctx: ReconcileContext | None = None
) -> MigrationPlan:
    """Collect report courses missing from the DB, per employee.

    ``names`` limits the plan to those associates; ``None`` means everyone.
    """
    classified = classify_external(conn, ctx)
    skipped: List[Dict[str, str]] = []
    if classified.empty:
        return MigrationPlan([], [{"name": n, "reason": "not found in external data"} for n in names or []])

    keys = classified["associate_name"].map(name_key)
    if names is not None:
        wanted: List[str] = []
        for n in names:
            rows = classified.loc[keys == name_key(n)]
            if rows.empty:
                skipped.append({"name": n, "reason": "not found in external data"})
                continue
            method = rows["employee_match"].iloc[0]
            if method == "ambiguous":
                skipped.append({"name": n, "reason": "ambiguous employee name"})
                continue
            if rows["employee_id"].isna().all():
                skipped.append({"name": n, "reason": "employee not found"})
                continue
            wanted.append(name_key(n))
        classified = classified.loc[keys.isin(wanted)]

    pending = classified.loc[
        (classified["match_type"] == NOT_FOUND)
        & classified["matched_course_id"].notna()
        & classified["employee_id"].notna()
        & ~classified["is_duplicate"]
    ]
    entries: List[MigrationEntry] = []
    for emp_id, grp in pending.groupby("employee_id", sort=False):
        emp_name = str(grp["employee_name"].iloc[0])
        courses = list(dict.fromkeys(
            (str(r.matched_course_id), _none_if_na(r.expiration_date)) for r in grp.itertuples(index=False)
        ))
        entries.append(MigrationEntry(int(emp_id), emp_name, migration_position_name(emp_name), courses))
    entries.sort(key=lambda e: e.employee_name)
    return MigrationPlan(entries, skipped)


def apply_migration(
    conn: Connection, plan: MigrationPlan, log: Callable[[str], None] | None = None
) -> Dict[str, int]:
    """Create per-employee MG_ positions carrying the migrated courses."""
    summary = {"positions_created": 0, "courses_linked": 0, "positions_assigned": 0, "training_inserted": 0}
    for entry in plan.entries:
        existing = fetch_one(
            conn, "SELECT position_id FROM positions WHERE position_name = :n", {"n": entry.position_name}
        )
        if existing is None:
            pid = next_position_id(conn, MIGRATION_ID_MIN, MIGRATION_ID_MAX)
            conn.execute(
                text(
                    "INSERT INTO positions (position_id, position_name, description, is_active) "
                    "VALUES (:p, :n, :d, 1)"
                ),
                {"p": pid, "n": entry.position_name, "d": f"Courses migrated from external report for {entry.employee_name}"},
            )
            summary["positions_created"] += 1
        else:
            pid = str(existing["position_id"])

        for course_id, expiration in entry.courses:
            res = conn.execute(
                text("INSERT INTO position_courses (position_id, course_id) VALUES (:p, :c) ON CONFLICT DO NOTHING"),
                {"p": pid, "c": course_id},
            )
            summary["courses_linked"] += int(res.rowcount or 0)
            res = conn.execute(
                text(
                    """
                    INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date, notes)
                    SELECT :e, :c, :exp, :exp, :note
                    WHERE NOT EXISTS (
                        SELECT 1 FROM employee_training
                        WHERE employee_id = :e AND course_id = :c AND expiration_date IS :exp
                    )
                    """
                ),
                {"e": entry.employee_id, "c": course_id, "exp": expiration, "note": IMPORT_NOTE},
            )
            summary["training_inserted"] += int(res.rowcount or 0)

        res = conn.execute(
            text(
                "INSERT INTO employee_positions (employee_id, position_id, job_code) VALUES (:e, :p, 'MG') "
                "ON CONFLICT DO NOTHING"
            ),
            {"e": entry.employee_id, "p": pid},
        )
        summary["positions_assigned"] += int(res.rowcount or 0)
        if log:
            log(f"{entry.employee_name}: {len(entry.courses)} course(s) -> {entry.position_name} ({pid})")
    return summary


# --- Reports ---------------------------------------------------------------


def gaps_frame(classified: pd.DataFrame) -> pd.DataFrame:
    cols = {
        "associate_name": "Employee",
        "employee_active": "Active",
        "course_id": "Course ID",
        "requirement": "Course Name",
        "status": "External Status",
        "expire_date": "External Expiration",
        "match_type": "Match Type",
        "group_code": "Group Code",
        "matched_course_id": "DB Course ID",
        "db_completion_date": "DB Completion",
        "db_expiration_date": "DB Expiration",
        "is_duplicate": "Duplicate",
    }
    if classified.empty:
        return pd.DataFrame(columns=list(cols.values()))
    out = classified[list(cols)].rename(columns=cols)
    out["Active"] = out["Active"].map(lambda v: "" if v is None or pd.isna(v) else ("Yes" if v else "No"))
    out["Duplicate"] = out["Duplicate"].map(lambda v: "Yes" if v else "")
    return out


def gaps_report(conn: Connection, out_path: Path | BinaryIO, ctx: ReconcileContext | None = None) -> Dict[str, int]:
    """External training gaps workbook: detail sheet plus a Summary sheet."""
    classified = classify_external(conn, ctx)
    counts = match_summary(classified)
    summary = pd.DataFrame(
        [{"Category": t, "Count": counts[t]} for t in MATCH_TYPES]
        + [
            {"Category": "Accounted For (Exact + Group)", "Count": counts["accounted_for"]},
            {"Category": "Duplicate rows", "Count": counts["duplicates"]},
            {"Category": "Total rows", "Count": counts["total"]},
        ]
    )
    write_workbook(
        {"External Training Gaps": gaps_frame(classified), "Summary": summary},
        out_path,
        highlight={"Match Type": MATCH_COLOURS, "Category": MATCH_COLOURS},
    )
    return counts


def course_compare_frame(
    conn: Connection, as_of: date | None = None, ctx: ReconcileContext | None = None
) -> pd.DataFrame:
    """Per external row: does the course exist, and what does the DB say?"""
    as_of = as_of or date.today()
    ctx = ctx or ReconcileContext.load(conn)
    ext = external_rows(conn)
    labels = {"id": "Yes (ID)", "code": "Yes (Code)", "name": "Yes (Name)", "fuzzy": "Yes (Fuzzy)", "none": "No"}
    rows: List[Dict[str, Any]] = []
    for r in ext.to_dict(orient="records"):
        r = {k: _none_if_na(v) for k, v in r.items()}
        emp = ctx.employees.match(r["associate_name"])
        course = ctx.courses.match(r["requirement"], r["course_id"])
        completion = expiration = db_status = ""
        if emp.employee_id is not None and course.course_id is not None:
            hit = ctx.latest.get((emp.employee_id, course.course_id))
            if hit is None or _none_if_na(hit["completion_date"]) is None:
                db_status = "Missing"
            else:
                completion = str(hit["completion_date"])
                exp = parse_report_date(hit["expiration_date"])
                expiration = exp.isoformat() if exp else "No expiration"
                db_status = "Expired" if exp is not None and exp < as_of else "Current"
        rows.append(
            {
                "Requirement": r["requirement"],
                "Associate": r["associate_name"],
                "Current Status": r["status"],
                "Expire Date": r["expire_date"],
                "Employee Active": "Not Found" if emp.employee_id is None else ("Yes" if emp.is_active else "No"),
                "Found in DB": "Yes" if emp.employee_id is not None else "No",
                "Course Match": labels[course.method],
                "DB Course Name": course.course_name or "",
                "DB Completion Date": completion,
                "DB Expiration Date": expiration,
                "DB Status": db_status,
            }
        )
    cols = ["Requirement", "Associate", "Current Status", "Expire Date", "Employee Active", "Found in DB",
            "Course Match", "DB Course Name", "DB Completion Date", "DB Expiration Date", "DB Status"]
    return pd.DataFrame(rows, columns=cols)


def course_compare_report(conn: Connection, out_path: Path | BinaryIO, as_of: date | None = None) -> Dict[str, int]:
    frame = course_compare_frame(conn, as_of=as_of)
    summary = {
        "total_rows": int(len(frame)),
        "courses_matched": int(frame["Course Match"].str.startswith("Yes").sum()),
        "courses_not_matched": int((frame["Course Match"] == "No").sum()),
        "training_current": int((frame["DB Status"] == "Current").sum()),
        "training_expired": int((frame["DB Status"] == "Expired").sum()),
        "training_missing": int((frame["DB Status"] == "Missing").sum()),
        "employees_not_found": int(frame.loc[frame["Found in DB"] == "No", "Associate"].nunique()),
    }
    summary_frame = pd.DataFrame([{"Metric": k.replace("_", " ").title(), "Count": v} for k, v in summary.items()])
    colours = {"Yes": "green", "No": "red", "Not Found": "gray"}
    write_workbook(
        {"Course Comparison": frame, "Summary": summary_frame},
        out_path,
        highlight={
            "Employee Active": colours,
            "Found in DB": colours,
            "DB Status": {"Current": "green", "Expired": "red", "Missing": "orange"},
        },
    )
    return summary


__all__ = [
    "EXACT",
    "GROUP",
    "NOT_FOUND",
    "COURSE_NOT_IN_DB",
    "EMPLOYEE_NOT_IN_DB",
    "MATCH_TYPES",
    "EmployeeMatch",
    "EmployeeMatcher",
    "CourseMatch",
    "CourseMatcher",
    "ReconcileContext",
    "classify_rows",
    "classify_external",
    "match_summary",
    "compare_employee",
    "ImportPlan",
    "plan_training_import",
    "apply_training_import",
    "MigrationEntry",
    "MigrationPlan",
    "plan_migration",
    "apply_migration",
    "gaps_frame",
    "gaps_report",
    "course_compare_frame",
    "course_compare_report",
]
