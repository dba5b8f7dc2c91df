from datetime import date, datetime

import pandas as pd

from training_registry.dates import add_months, format_us, parse_report_date, to_iso


def test_parse_report_formats():
    assert parse_report_date("6/1/2025") == date(2025, 6, 1)
    assert parse_report_date("2025-06-01") == date(2025, 6, 1)
    assert parse_report_date("2025-06-01 00:00:00") == date(2025, 6, 1)
    assert parse_report_date(datetime(2025, 6, 1, 8, 30)) == date(2025, 6, 1)
    assert parse_report_date(date(2025, 6, 1)) == date(2025, 6, 1)


def test_parse_report_blanks_and_garbage():
    for value in (None, "", "n/a", "N/A", " - ", pd.NaT, float("nan"), "someday", "2/30/2025"):
        assert parse_report_date(value) is None, value


def test_to_iso():
    assert to_iso("12/31/2025") == "2025-12-31"
    assert to_iso("n/a") is None


def test_add_months_clamps_day():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2025, 3, 1), -12) == date(2024, 3, 1)
    assert add_months(date(2024, 6, 1), 12) == date(2025, 6, 1)


def test_format_us():
    assert format_us(date(2025, 6, 1)) == "06/01/2025"
    assert format_us(None) == ""
