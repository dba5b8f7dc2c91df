from datetime import date

import pandas as pd
import pytest
from openpyxl import load_workbook

from training_registry import reconcile
from training_registry.catalog import build_course_groups
from training_registry.db import fetch_all, fetch_one

from conftest import AS_OF, COURSES


def _courses():
    return pd.DataFrame([(c, n) for c, n, _ in COURSES], columns=["course_id", "course_name"])


def test_employee_matcher_methods():
    people = pd.DataFrame(
        [(1, "Doe, John", 1), (2, "Roe, Jane", 1), (3, "Lee, Sam", 1), (4, "Lee, Sam", 1)],
        columns=["employee_id", "employee_name", "is_active"],
    )
    m = reconcile.EmployeeMatcher(people)
    assert m.match("Doe, John").method == "exact"
    assert m.match("john  doe").employee_id == 1
    fuzzy = m.match("Doe, Jon")
    assert fuzzy.method == "fuzzy"
    assert fuzzy.employee_id == 1
    assert m.match("Lee, Sam").method == "ambiguous"
    assert m.match("Nobody, Here").method == "none"
    assert m.match(None).method == "none"


def test_employee_matcher_prefers_single_active_namesake():
    people = pd.DataFrame(
        [(1, "Lee, Sam", 0), (2, "Lee, Sam", 1)], columns=["employee_id", "employee_name", "is_active"]
    )
    match = reconcile.EmployeeMatcher(people).match("Sam Lee")
    assert (match.method, match.employee_id) == ("exact", 2)


def test_course_matcher_order():
    m = reconcile.CourseMatcher(_courses())
    by_id = m.match("Whatever (1001)", "1001")
    assert (by_id.method, by_id.course_id) == ("id", "1001")
    code = m.match("EHSBBPOCCWB Annual Refresher")
    assert (code.method, code.course_id) == ("code", "1003")
    name = m.match("lockout  tagout!")
    assert (name.method, name.course_id) == ("name", "1002")
    fuzzy = m.match("Lockout Tagot")
    assert (fuzzy.method, fuzzy.course_id) == ("fuzzy", "1002")
    assert m.match("Crane Rigging (9999)", "9999").method == "none"


def test_shared_course_code_is_not_used():
    m = reconcile.CourseMatcher(_courses())
    # SPPIVT T111 belongs to two courses
    assert m.match("SPPIVT T111 Forklift Practical").course_id is None


def test_classify_external(with_external):
    with with_external.begin() as conn:
        build_course_groups(conn)
        df = reconcile.classify_external(conn)

    assert len(df) == 8
    by_req = {(r.associate_name, r.requirement, r.expire_date): r for r in df.itertuples(index=False)}
    group = by_req[("Doe, John", "SPPIVT T111 Powered Industrial Vehicle OL (2001)", "3/1/2026")]
    assert group.match_type == reconcile.GROUP
    assert (group.group_code, group.group_course_id) == ("T111", "2002")

    lockout = by_req[("Roe, Jane", "Lockout Tagout (1002)", "3/1/2025")]
    assert lockout.match_type == reconcile.NOT_FOUND
    assert lockout.reason == "No training record in database"
    assert bool(lockout.is_required)

    ladder = by_req[("Roe, Jane", "Ladder Safety", "n/a")]
    assert ladder.match_type == reconcile.NOT_FOUND
    assert ladder.reason == "No course ID in requirement"

    assert by_req[("Roe, Jane", "Crane Rigging (9999)", "5/5/2025")].match_type == reconcile.COURSE_NOT_IN_DB
    assert by_req[("Nobody, Here", "Forklift Safety (1001)", "6/1/2025")].match_type == reconcile.EMPLOYEE_NOT_IN_DB

    latest = by_req[("Doe, John", "Forklift Safety (1001)", "6/1/2025")]
    older = by_req[("Doe, John", "Forklift Safety (1001)", "1/1/2024")]
    assert not latest.is_duplicate
    assert older.is_duplicate


def test_match_summary(with_external):
    with with_external.begin() as conn:
        build_course_groups(conn)
        counts = reconcile.match_summary(reconcile.classify_external(conn))
    assert counts == {
        reconcile.EXACT: 3,
        reconcile.GROUP: 1,
        reconcile.NOT_FOUND: 2,
        reconcile.COURSE_NOT_IN_DB: 1,
        reconcile.EMPLOYEE_NOT_IN_DB: 1,
        "duplicates": 1,
        "total": 8,
        "accounted_for": 4,
    }


def test_classify_without_external_rows(seeded):
    with seeded.connect() as conn:
        assert reconcile.classify_external(conn).empty
        assert reconcile.match_summary(reconcile.classify_external(conn))["total"] == 0


def test_compare_employee(with_external):
    with with_external.connect() as conn:
        result = reconcile.compare_employee(conn, "roe")
    assert result["found"] is True
    assert result["csv_name"] == "Roe, Jane"
    assert result["employee"]["employee_id"] == 2
    assert result["summary"] == {
        "csv_records": 4,
        "db_records": 2,
        "exact_matches": 1,
        "group_matches": 0,
        "not_found": 2,
        "course_not_in_db": 1,
        "total_matched": 1,
        "required_matched": 1,
        "required_missing": 1,
        "rogue_count": 2,
    }
    assert [r["requirement"] for r in result["records"]["course_not_in_db"]] == ["Crane Rigging (9999)"]


def test_compare_employee_not_found_suggests(with_external):
    with with_external.connect() as conn:
        result = reconcile.compare_employee(conn, "Doe, Jonathan Q")
        missing_person = reconcile.compare_employee(conn, "Nobody")
        with pytest.raises(ValueError):
            reconcile.compare_employee(conn, " ")
    assert result["found"] is False
    assert "Doe, John" in result["suggestions"]
    assert missing_person["found"] is True
    assert missing_person["in_database"] is False


def test_training_import_plan_and_apply(with_external):
    with with_external.begin() as conn:
        build_course_groups(conn)
        plan = reconcile.plan_training_import(conn)
        assert plan.counts == {
            "updates": 1,
            "inserts": 2,
            "already_has_expiration": 1,
            "no_expiration_in_report": 0,
            "employee_not_found": 1,
            "course_not_found": 2,
            "duplicates_skipped": 1,
        }
        result = reconcile.apply_training_import(conn, plan)
        assert result == {"updated": 1, "inserted": 2}

        updated = fetch_one(
            conn, "SELECT expiration_date, notes FROM employee_training WHERE employee_id = 2 AND course_id = '1003'"
        )
        assert updated == {"expiration_date": "2025-12-31", "notes": reconcile.IMPORT_NOTE}
        inserted = fetch_one(
            conn,
            "SELECT completion_date, expiration_date FROM employee_training WHERE employee_id = 2 AND course_id = '1002'",
        )
        assert inserted == {"completion_date": "2024-03-01", "expiration_date": "2025-03-01"}

        again = reconcile.plan_training_import(conn)
        assert again.counts["updates"] == 0
        assert again.counts["inserts"] == 0


def test_migration_plan_and_apply(with_external):
    with with_external.begin() as conn:
        plan = reconcile.plan_migration(conn, ["Roe, Jane", "Nobody, Here", "Ghost, Casper"])
        assert [(e.employee_id, e.position_name, e.courses) for e in plan.entries] == [
            (2, "MG_RoeJane", [("1002", "2025-03-01")])
        ]
        assert plan.skipped == [
            {"name": "Nobody, Here", "reason": "employee not found"},
            {"name": "Ghost, Casper", "reason": "not found in external data"},
        ]

        summary = reconcile.apply_migration(conn, plan)
        assert summary == {
            "positions_created": 1,
            "courses_linked": 1,
            "positions_assigned": 1,
            "training_inserted": 1,
        }
        position = fetch_one(conn, "SELECT position_id FROM positions WHERE position_name = 'MG_RoeJane'")
        assert position == {"position_id": "777000"}
        training = fetch_all(
            conn, "SELECT completion_date, expiration_date FROM employee_training WHERE employee_id = 2 AND course_id = '1002'"
        )
        assert training == [{"completion_date": "2025-03-01", "expiration_date": "2025-03-01"}]

        rerun = reconcile.apply_migration(conn, plan)
        assert rerun == {"positions_created": 0, "courses_linked": 0, "positions_assigned": 0, "training_inserted": 0}


def test_migration_plan_for_everyone(with_external):
    with with_external.connect() as conn:
        plan = reconcile.plan_migration(conn)
    # without groups John's T111 OL course is also missing
    assert [e.position_name for e in plan.entries] == ["MG_DoeJohn", "MG_RoeJane"]


def test_gaps_report_workbook(with_external, tmp_path):
    out = tmp_path / "gaps.xlsx"
    with with_external.connect() as conn:
        counts = reconcile.gaps_report(conn, out)
    assert counts[reconcile.EXACT] == 3
    wb = load_workbook(out)
    assert wb.sheetnames == ["External Training Gaps", "Summary"]
    ws = wb["External Training Gaps"]
    assert ws.max_row == 9
    header = [c.value for c in ws[1]]
    assert "Match Type" in header


def test_course_compare_frame(with_external):
    with with_external.connect() as conn:
        frame = reconcile.course_compare_frame(conn, as_of=AS_OF)
    rows = {(r["Associate"], r["Requirement"], r["Expire Date"]): r for r in frame.to_dict(orient="records")}
    forklift = rows[("Doe, John", "Forklift Safety (1001)", "6/1/2025")]
    assert (forklift["Course Match"], forklift["DB Status"]) == ("Yes (ID)", "Current")
    lockout = rows[("Roe, Jane", "Lockout Tagout (1002)", "3/1/2025")]
    assert lockout["DB Status"] == "Missing"
    bbp = rows[("Roe, Jane", "EHSBBPOCCWB Bloodborne Pathogens (1003)", "12/31/2025")]
    assert bbp["DB Expiration Date"] == "No expiration"
    crane = rows[("Roe, Jane", "Crane Rigging (9999)", "5/5/2025")]
    assert (crane["Course Match"], crane["DB Status"]) == ("No", "")
    nobody = rows[("Nobody, Here", "Forklift Safety (1001)", "6/1/2025")]
    assert nobody["Employee Active"] == "Not Found"

    with with_external.connect() as conn:
        expired_view = reconcile.course_compare_frame(conn, as_of=date(2025, 7, 1))
    doe = expired_view.loc[
        (expired_view["Associate"] == "Doe, John") & (expired_view["Expire Date"] == "6/1/2025")
    ].iloc[0]
    assert doe["DB Status"] == "Expired"
