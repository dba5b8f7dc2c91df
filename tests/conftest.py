from datetime import date

import pandas as pd
import pytest
from sqlalchemy import text

from training_registry.db import init_db
from training_registry.external import load_external_training, prepare_external_frame

AS_OF = date(2025, 1, 1)

COURSES = [
    ("1001", "Forklift Safety", 12),
    ("1002", "Lockout Tagout", 24),
    ("1003", "EHSBBPOCCWB Bloodborne Pathogens", None),
    ("2001", "SPPIVT T111 Powered Industrial Vehicle OL", None),
    ("2002", "SPPIVT T111 Powered Industrial Vehicle OJT", None),
    ("3001", "QOP Quality Operator", None),
]

# Associate, requirement, status, expire date
EXTERNAL_ROWS = [
    ("Doe, John", "Forklift Safety (1001)", "Complete", "6/1/2025"),
    ("Doe, John", "SPPIVT T111 Powered Industrial Vehicle OL (2001)", "Complete", "3/1/2026"),
    ("Roe, Jane", "Lockout Tagout (1002)", "Overdue", "3/1/2025"),
    ("Roe, Jane", "Crane Rigging (9999)", "Complete", "5/5/2025"),
    ("Roe, Jane", "Ladder Safety", "Complete", "n/a"),
    ("Nobody, Here", "Forklift Safety (1001)", "Complete", "6/1/2025"),
    ("Doe, John", "Forklift Safety (1001)", "Complete", "1/1/2024"),
    ("Roe, Jane", "EHSBBPOCCWB Bloodborne Pathogens (1003)", "Complete", "12/31/2025"),
]


def seed(conn) -> None:
    conn.execute(
        text("INSERT INTO positions (position_id, position_name) VALUES (:p, :n)"),
        [{"p": "555000", "n": "Operator"}, {"p": "555001", "n": "Lead"}],
    )
    conn.execute(
        text("INSERT INTO courses (course_id, course_name, duration_months) VALUES (:c, :n, :m)"),
        [{"c": c, "n": n, "m": m} for c, n, m in COURSES],
    )
    conn.execute(
        text("INSERT INTO position_courses (position_id, course_id) VALUES (:p, :c)"),
        [
            {"p": "555000", "c": "1001"},
            {"p": "555000", "c": "1002"},
            {"p": "555000", "c": "2001"},
            {"p": "555000", "c": "3001"},
            {"p": "555001", "c": "1003"},
        ],
    )
    conn.execute(
        text(
            "INSERT INTO employees (badge_id, employee_name, is_active, leader) VALUES (:b, :n, :a, :l)"
        ),
        [
            {"b": "B001", "n": "Doe, John", "a": 1, "l": "Smith"},
            {"b": "B002", "n": "Roe, Jane", "a": 1, "l": "Smith"},
            {"b": "B003", "n": "Inactive, Ian", "a": 0, "l": None},
        ],
    )
    conn.execute(
        text("INSERT INTO employee_positions (employee_id, position_id) VALUES (:e, :p)"),
        [
            {"e": 1, "p": "555000"},
            {"e": 2, "p": "555000"},
            {"e": 2, "p": "555001"},
            {"e": 3, "p": "555000"},
        ],
    )
    conn.execute(
        text(
            "INSERT INTO employee_training (employee_id, course_id, completion_date, expiration_date) "
            "VALUES (:e, :c, :d, :x)"
        ),
        [
            {"e": 1, "c": "1001", "d": "2024-06-01", "x": "2025-06-01"},
            {"e": 1, "c": "1002", "d": "2022-12-01", "x": "2024-12-01"},
            {"e": 1, "c": "2002", "d": "2024-03-01", "x": "2026-03-01"},
            {"e": 2, "c": "1001", "d": "2024-01-15", "x": "2025-01-20"},
            {"e": 2, "c": "1003", "d": "2020-01-01", "x": None},
        ],
    )


def load_external(conn) -> int:
    raw = pd.DataFrame(EXTERNAL_ROWS, columns=["Associate Name", "Requirement", "Current Status", "Expire Date"])
    return load_external_training(conn, prepare_external_frame(raw))


@pytest.fixture
def engine(tmp_path):
    return init_db(tmp_path / "training.sqlite")


@pytest.fixture
def seeded(engine):
    with engine.begin() as conn:
        seed(conn)
    return engine


@pytest.fixture
def with_external(seeded):
    with seeded.begin() as conn:
        load_external(conn)
    return seeded
