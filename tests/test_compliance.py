from datetime import date

import pytest
from sqlalchemy import text

from training_registry.catalog import build_course_groups, set_group_enabled
from training_registry.compliance import (
    EXPIRED,
    EXPIRING_SOON,
    NEVER_COMPLETED,
    NO_EXPIRATION,
    VALID,
    ComplianceConfig,
    compliance_frame,
    derive_status,
    expiring_training,
    requirements_status,
)

from conftest import AS_OF


def _statuses(frame, employee_id):
    rows = frame.loc[frame["employee_id"] == employee_id]
    return dict(zip(rows["course_id"], rows["status"]))


def test_derive_status_windows():
    cfg = ComplianceConfig(expiring_window_days=30)
    assert derive_status(False, None, AS_OF, cfg) == (NEVER_COMPLETED, None)
    assert derive_status(True, None, AS_OF, cfg) == (NO_EXPIRATION, None)
    assert derive_status(True, date(2024, 12, 31), AS_OF, cfg) == (EXPIRED, -1)
    assert derive_status(True, AS_OF, AS_OF, cfg) == (EXPIRING_SOON, 0)
    assert derive_status(True, date(2025, 1, 31), AS_OF, cfg) == (EXPIRING_SOON, 30)
    assert derive_status(True, date(2025, 2, 1), AS_OF, cfg) == (VALID, 31)


def test_compliance_frame_statuses(seeded):
    with seeded.connect() as conn:
        frame = compliance_frame(conn, as_of=AS_OF)

    assert _statuses(frame, 1) == {"1001": VALID, "1002": EXPIRED, "2001": NEVER_COMPLETED}
    assert _statuses(frame, 2) == {
        "1001": EXPIRING_SOON,
        "1002": NEVER_COMPLETED,
        "2001": NEVER_COMPLETED,
        "1003": NO_EXPIRATION,
    }
    # inactive employees are left out
    assert 3 not in set(frame["employee_id"])
    # most urgent first within an employee
    assert frame.loc[frame["employee_id"] == 1, "status"].tolist()[0] == NEVER_COMPLETED


def test_expiring_window_is_configurable(seeded):
    with seeded.connect() as conn:
        frame = compliance_frame(conn, as_of=AS_OF, cfg=ComplianceConfig(expiring_window_days=10))
    assert _statuses(frame, 2)["1001"] == VALID


def test_group_sibling_covers_missing_requirement(seeded):
    with seeded.begin() as conn:
        build_course_groups(conn)
        frame = compliance_frame(conn, as_of=AS_OF)
    row = frame.loc[(frame["employee_id"] == 1) & (frame["course_id"] == "2001")].iloc[0]
    assert row["status"] == VALID
    assert row["covered_by"] == "2002"
    # Jane has no sibling record
    assert _statuses(frame, 2)["2001"] == NEVER_COMPLETED

    with seeded.begin() as conn:
        set_group_enabled(conn, "T111", False)
        frame = compliance_frame(conn, as_of=AS_OF)
    assert _statuses(frame, 1)["2001"] == NEVER_COMPLETED


def test_covered_requirement_reports_sibling_record(seeded):
    with seeded.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date) "
                "VALUES (1, '2001', '2023-06-01', '2024-06-01')"
            )
        )
        build_course_groups(conn)
        frame = compliance_frame(conn, as_of=AS_OF)
    row = frame.loc[(frame["employee_id"] == 1) & (frame["course_id"] == "2001")].iloc[0]
    assert row["status"] == VALID
    assert row["covered_by"] == "2002"
    assert row["training_id"] == 3
    assert row["completion_date"] == "2024-03-01"
    assert row["expiration_date"] == "2026-03-01"
    assert row["days_to_expiry"] == 424


def test_q_course_only_when_marked_needed(seeded):
    with seeded.begin() as conn:
        conn.execute(
            text("INSERT INTO employee_q_courses (employee_id, course_id, is_needed) VALUES (1, '3001', 1)")
        )
        frame = compliance_frame(conn, as_of=AS_OF)
    assert _statuses(frame, 1)["3001"] == NEVER_COMPLETED
    assert "3001" not in _statuses(frame, 2)


def test_requirements_status_includes_inactive_employee(seeded):
    with seeded.connect() as conn:
        df = requirements_status(conn, 3, as_of=AS_OF)
    assert set(df["course_id"]) == {"1001", "1002", "2001"}
    assert set(df["status"]) == {NEVER_COMPLETED}


def test_expiring_training_periods(seeded):
    with seeded.connect() as conn:
        soon = expiring_training(conn, "30days", as_of=AS_OF)
        expired = expiring_training(conn, "expired", as_of=AS_OF)
        quarter = expiring_training(conn, "90days", as_of=AS_OF)

    assert list(zip(soon["employee_id"], soon["course_id"])) == [(2, "1001")]
    assert list(zip(expired["employee_id"], expired["course_id"])) == [(1, "1002")]
    assert list(zip(quarter["employee_id"], quarter["course_id"])) == [(2, "1001")]


def test_expiring_training_skips_records_covered_by_group(seeded):
    with seeded.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date) VALUES "
                "(2, '2001', '2024-01-10', '2025-01-10'), (2, '2002', '2025-01-01', '2027-01-01')"
            )
        )
        build_course_groups(conn)
        df = expiring_training(conn, "30days", as_of=AS_OF)
    assert list(df["course_id"]) == ["1001"]


def test_expiring_training_rejects_unknown_period(seeded):
    with seeded.connect() as conn:
        with pytest.raises(ValueError):
            expiring_training(conn, "45days", as_of=AS_OF)
