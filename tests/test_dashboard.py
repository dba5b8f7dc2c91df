from sqlalchemy import text

from training_registry import dashboard
from training_registry.catalog import build_course_groups

from conftest import AS_OF


def test_metrics(seeded):
    with seeded.connect() as conn:
        assert dashboard.metrics(conn) == {
            "active_positions": 2,
            "active_courses": 6,
            "active_employees": 2,
            "employees_without_positions": 0,
        }


def test_problems_report(seeded):
    with seeded.connect() as conn:
        report = dashboard.problems(conn, as_of=AS_OF)

    people = report["employees_with_expired"]
    assert [(p["employee_name"], p["expired_count"]) for p in people] == [("Doe, John", 1)]
    assert people[0]["expired_courses"] == "Lockout Tagout"

    positions = report["problematic_positions"]
    assert [(p["position_id"], p["requirements"], p["expired"]) for p in positions] == [("555000", 6, 1)]
    assert positions[0]["percent_expired"] == 16.7
    assert report["problematic_courses"] == []
    assert report["employees_without_positions"] == []


def test_team_training_buckets(seeded):
    with seeded.connect() as conn:
        result = dashboard.team_training(conn, "Smith", as_of=AS_OF)
    assert result["team_size"] == 2
    missing = {(r["employee_id"], r["course_id"]) for r in result["expired_or_missing"]}
    assert missing == {(1, "1002"), (1, "2001"), (2, "1002"), (2, "2001")}
    assert [(r["employee_id"], r["course_id"]) for r in result["expiring_30"]] == [(2, "1001")]
    assert result["expiring_90"] == []


def test_team_training_for_unknown_leader(seeded):
    with seeded.connect() as conn:
        result = dashboard.team_training(conn, "Nobody", as_of=AS_OF)
    assert result["team_size"] == 0
    assert result["expired_or_missing"] == []


def test_team_training_buckets_covered_requirements_by_sibling_dates(seeded):
    with seeded.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date) "
                "VALUES (2, '2002', '2024-01-11', '2025-01-11')"
            )
        )
        build_course_groups(conn)
        result = dashboard.team_training(conn, "Smith", as_of=AS_OF)

    missing = {(r["employee_id"], r["course_id"]) for r in result["expired_or_missing"]}
    assert missing == {(1, "1002"), (2, "1002")}
    soon = result["expiring_30"]
    assert [(r["employee_id"], r["course_id"]) for r in soon] == [(2, "2001"), (2, "1001")]
    assert soon[0]["expiration_date"] == "2025-01-11"
    assert soon[0]["days_to_expiry"] == 10
