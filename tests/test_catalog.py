import pytest
from sqlalchemy import text

from training_registry import catalog
from training_registry.db import fetch_all, scalar
from training_registry.errors import Conflict, NotFound

from conftest import AS_OF


def test_course_crud(seeded):
    with seeded.begin() as conn:
        course = catalog.create_course(conn, "4001", "Crane Rigging", 36)
        assert course["course_id"] == "4001"
        assert course["duration_months"] == 36
        assert course["is_active"] is True
        with pytest.raises(Conflict):
            catalog.create_course(conn, "4001", "Crane Rigging")
        with pytest.raises(ValueError):
            catalog.create_course(conn, "4002", "Bad Duration", "often")
        updated = catalog.update_course(conn, "4001", "Crane Rigging II", 24)
        assert updated["course_name"] == "Crane Rigging II"
        with pytest.raises(NotFound):
            catalog.get_course(conn, "nope")


def test_course_detail_stats(seeded):
    with seeded.connect() as conn:
        detail = catalog.get_course(conn, "1001", as_of=AS_OF)
    assert detail["stats"] == {"total_completions": 2, "expired_count": 0, "valid_count": 2}
    assert [p["position_id"] for p in detail["positions"]] == ["555000"]


def test_course_detail_counts_employees_not_records(seeded):
    with seeded.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date) "
                "VALUES (1, '1001', '2023-06-01', '2024-06-01')"
            )
        )
        detail = catalog.get_course(conn, "1001", as_of=AS_OF)
    assert detail["stats"]["total_completions"] == 2
    assert detail["stats"]["valid_count"] == 2


def test_deactivating_course_drops_position_links(seeded):
    with seeded.begin() as conn:
        catalog.update_course(conn, "1002", "Lockout Tagout", 24, is_active=False)
        links = scalar(conn, "SELECT COUNT(*) FROM position_courses WHERE course_id = '1002'")
    assert links == 0


def test_delete_course_reports_removed_training(seeded):
    with seeded.begin() as conn:
        result = catalog.delete_course(conn, "1001")
        assert result == {"course_id": "1001", "training_records_deleted": 2}
        assert scalar(conn, "SELECT COUNT(*) FROM courses WHERE course_id = '1001'") == 0


def test_build_course_groups_is_idempotent(seeded):
    with seeded.begin() as conn:
        first = catalog.build_course_groups(conn)
        second = catalog.build_course_groups(conn)
        groups = catalog.list_course_groups(conn)
    assert first == {"groups_created": 1, "members_added": 2}
    assert second == {"groups_created": 0, "members_added": 0}
    assert len(groups) == 1
    assert groups[0]["group_code"] == "T111"
    assert groups[0]["group_name"] == "SPPIVT T111 Powered Industrial Vehicle"
    assert groups[0]["is_enabled"] is True
    assert {c["course_id"] for c in groups[0]["courses"]} == {"2001", "2002"}


def test_set_group_enabled(seeded):
    with seeded.begin() as conn:
        catalog.build_course_groups(conn)
        assert catalog.set_group_enabled(conn, "T111", False)["is_enabled"] is False
        with pytest.raises(ValueError):
            catalog.set_group_enabled(conn, "T111", "off")
        with pytest.raises(NotFound):
            catalog.set_group_enabled(conn, "T999", True)


def test_cleanup_decision_validation(seeded):
    with seeded.begin() as conn:
        with pytest.raises(ValueError):
            catalog.set_cleanup_decision(conn, "2001", "archive")
        with pytest.raises(ValueError):
            catalog.set_cleanup_decision(conn, "2001", "merge")
        row = catalog.set_cleanup_decision(
            conn, "2001", "merge", merge_into="2002", rename_to="SPPIVT T111 Powered Industrial Vehicle"
        )
    assert row["action"] == "merge"
    assert row["merge_into"] == "2002"
    assert row["t_code"] == "T111"
    assert row["is_one_time"] is False


def test_tcode_review_lists_multi_course_codes(with_external):
    with with_external.connect() as conn:
        assert catalog.tcode_review(conn, as_of=AS_OF) == []
        conn.execute(
            text(
                "INSERT INTO external_training (associate_name, requirement, course_id, expiration_date) "
                "VALUES ('Roe, Jane', 'SPPIVT T111 Powered Industrial Vehicle OJT (2002)', '2002', NULL)"
            )
        )
        review = catalog.tcode_review(conn, as_of=AS_OF)
    assert [g["t_code"] for g in review] == ["T111"]
    courses = {c["course_id"]: c for c in review[0]["courses"]}
    assert courses["2001"]["variant"] == "OL"
    assert courses["2002"]["variant"] == "OJT"
    assert courses["2002"]["no_expiration_count"] == 1
    assert courses["2001"]["action"] == "pending"


def test_duplicate_merge_dry_run_then_apply(seeded):
    with seeded.begin() as conn:
        conn.execute(text("INSERT INTO courses (course_id, course_name) VALUES ('1004', 'Forklift  safety')"))
        conn.execute(
            text(
                "INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date) "
                "VALUES (3, '1004', '2023-05-01', '2024-05-01')"
            )
        )

    with seeded.begin() as conn:
        preview = catalog.apply_duplicate_merge(conn, dry_run=True)
        assert preview["courses_merged"] == 1
        assert preview["groups"][0]["keep_id"] == "1001"
        assert preview["groups"][0]["merge_ids"] == ["1004"]
        assert scalar(conn, "SELECT COUNT(*) FROM courses WHERE course_id = '1004'") == 1

    with seeded.begin() as conn:
        result = catalog.apply_duplicate_merge(conn, dry_run=False)
        assert result["courses_merged"] == 1
        assert result["training_moved"] == 1
        assert scalar(conn, "SELECT COUNT(*) FROM courses WHERE course_id = '1004'") == 0
        moved = fetch_all(conn, "SELECT course_id FROM employee_training WHERE employee_id = 3")
        assert moved == [{"course_id": "1001"}]
        assert scalar(conn, "SELECT new_course_id FROM merged_courses WHERE old_course_id = '1004'") == "1001"
