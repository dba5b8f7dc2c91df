from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd

_BLANK_TOKENS = {"", "n/a", "na", "none", "null", "-", "--"}


def parse_report_date(value: Any) -> Optional[date]:
    """Parse a date cell from an external report.

    Accepts M/D/YYYY (the report format), ISO YYYY-MM-DD and native
    date/datetime cells. "n/a" and blanks give None.
    """
    if value is None:
        return None
    if not isinstance(value, str) and pd.isna(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    s = str(value).strip()
    if s.lower() in _BLANK_TOKENS:
        return None

    m = re.fullmatch(r"(\d{1,2})/(\d{1,2})/(\d{4})", s)
    if m:
        mo, d, y = map(int, m.groups())
        try:
            return date(y, mo, d)
        except ValueError:
            return None

    m = re.match(r"(\d{4})-(\d{1,2})-(\d{1,2})", s)
    if m:
        y, mo, d = map(int, m.groups())
        try:
            return date(y, mo, d)
        except ValueError:
            return None

    ts = pd.to_datetime(s, errors="coerce")
    return ts.date() if pd.notna(ts) else None


def to_iso(value: Any) -> Optional[str]:
    d = parse_report_date(value)
    return d.isoformat() if d else None


def add_months(d: date, months: int) -> date:
    """Shift by calendar months; the day clamps to the end of short months."""
    return (pd.Timestamp(d) + pd.DateOffset(months=int(months))).date()


def format_us(d: Optional[date]) -> str:
    if d is None:
        return ""
    return f"{d.month:02d}/{d.day:02d}/{d.year}"


__all__ = ["parse_report_date", "to_iso", "add_months", "format_us"]
