from datetime import date

import pytest

from training_registry import training
from training_registry.db import scalar
from training_registry.errors import NotFound

from conftest import AS_OF


def _training_id(conn, employee_id, course_id):
    return scalar(
        conn,
        "SELECT training_id FROM employee_training WHERE employee_id = :e AND course_id = :c",
        {"e": employee_id, "c": course_id},
    )


def test_add_training_derives_expiration_from_duration(seeded):
    with seeded.begin() as conn:
        result = training.add_training(conn, 2, "1001", "2/1/2025")
        again = training.add_training(conn, 2, "1001", "2025-02-01")
    assert result["created"] is True
    assert result["training"]["completion_date"] == "2025-02-01"
    assert result["training"]["expiration_date"] == "2026-02-01"
    assert again["created"] is False


def test_add_training_keeps_explicit_expiration(seeded):
    with seeded.begin() as conn:
        result = training.add_training(conn, 2, "3001", "2025-01-05", "2025-07-05", notes="Class B")
    assert result["training"]["expiration_date"] == "2025-07-05"
    assert result["training"]["notes"] == "Class B"


def test_add_training_validation(seeded):
    with seeded.begin() as conn:
        with pytest.raises(ValueError):
            training.add_training(conn, 2, "1001", "not a date")
        with pytest.raises(ValueError):
            training.add_training(conn, 2, "1001", None)
        with pytest.raises(NotFound):
            training.add_training(conn, 2, "nope", "2025-01-01")
        with pytest.raises(NotFound):
            training.add_training(conn, 99, "1001", "2025-01-01")


def test_extend_training_appends_note(seeded):
    with seeded.begin() as conn:
        tid = _training_id(conn, 1, "1001")
        first = training.extend_training(conn, tid, 6, "Audit delay", today=date(2025, 1, 1))
        second = training.extend_training(conn, tid, "1", "Second delay", today=date(2025, 2, 3))
    assert first["old_expiration"] == "2025-06-01"
    assert first["new_expiration"] == "2025-12-01"
    assert first["notes"] == "\n\n[EXTENDED 6 months on 01/01/2025]\nAudit delay"
    assert second["new_expiration"] == "2026-01-01"
    assert second["notes"] == (
        "\n\n[EXTENDED 6 months on 01/01/2025]\nAudit delay\n\n[EXTENDED 1 months on 02/03/2025]\nSecond delay"
    )


def test_extend_training_validation(seeded):
    with seeded.begin() as conn:
        tid = _training_id(conn, 1, "1001")
        no_exp = _training_id(conn, 2, "1003")
        with pytest.raises(ValueError):
            training.extend_training(conn, tid, 0, "zero")
        with pytest.raises(ValueError):
            training.extend_training(conn, tid, 121, "too long")
        with pytest.raises(ValueError):
            training.extend_training(conn, tid, 3, "  ")
        with pytest.raises(ValueError):
            training.extend_training(conn, no_exp, 3, "nothing to extend")
        with pytest.raises(NotFound):
            training.extend_training(conn, 9999, 3, "missing")


def test_update_notes_clears_blank(seeded):
    with seeded.begin() as conn:
        tid = _training_id(conn, 1, "1001")
        assert training.update_training_notes(conn, tid, " Checked ")["notes"] == "Checked"
        assert training.update_training_notes(conn, tid, "")["notes"] is None


def test_employee_certificates(seeded):
    with seeded.connect() as conn:
        certs = training.employee_certificates(conn, "B001", as_of=AS_OF)
        with pytest.raises(NotFound):
            training.employee_certificates(conn, "NOPE")
    assert certs["course_id"].tolist() == ["1001", "2002", "1002"]
    assert dict(zip(certs["course_id"], certs["status"])) == {"1001": "Valid", "2002": "Valid", "1002": "Expired"}


def test_q_course_flags(seeded):
    with seeded.begin() as conn:
        assert training.get_q_courses(conn, 1) == {}
        training.set_q_course(conn, 1, "3001", True)
        training.set_q_course(conn, 1, "3001", False)
        assert training.get_q_courses(conn, 1) == {"3001": False}
        with pytest.raises(ValueError):
            training.set_q_course(conn, 1, "3001", "yes")
        with pytest.raises(NotFound):
            training.set_q_course(conn, 1, "nope", True)
