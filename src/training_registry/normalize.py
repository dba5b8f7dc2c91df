from __future__ import annotations

import re
from typing import Optional
import unicodedata as _ud

import pandas as pd

_COURSE_ID_RE = re.compile(r"\((\d+)\)\s*$")
_T_CODE_RE = re.compile(r"\b(T\d+[A-Z]?)\b")
# Upper-case only; a leading capitalised word ("Forklift ...") is not a code
_COURSE_CODE_RE = re.compile(r"^([A-Z]{2,}(?:\s+T?\d+[A-Z]?)?)\b")
_VARIANT_SUFFIX_RE = re.compile(
    r"[\s\-:]*\b(PARENT|Initial|Recertification|Recert|IL|OL|OJT)\b\s*$", re.IGNORECASE
)
Q_COURSE_MARKERS = ("QOP", "QCD")


def strip_whitespace(df: pd.DataFrame) -> pd.DataFrame:
    def _clean(v):
        if isinstance(v, str):
            return re.sub(r"\s+", " ", v.strip())
        return v

    return df.map(_clean)


def name_key(s: Optional[str]) -> str:
    """Comparable form of a person name.

    "Doe, John" and "John  Doe" both become "john doe".
    """
    if s is None or (isinstance(s, float) and pd.isna(s)):
        return ""
    t = _ud.normalize("NFKC", str(s)).strip()
    if "," in t:
        last, _, first = t.partition(",")
        t = f"{first.strip()} {last.strip()}"
    t = re.sub(r"[^\w\s'-]", " ", t)
    t = re.sub(r"\s+", " ", t)
    return t.strip().casefold()


def course_name_key(s: Optional[str]) -> str:
    if s is None:
        return ""
    t = _ud.normalize("NFKC", str(s)).lower()
    t = re.sub(r"\s+", " ", t)
    t = re.sub(r"[^\w\s]", "", t)
    return re.sub(r"\s+", " ", t).strip()


def extract_course_id(requirement: Optional[str]) -> Optional[str]:
    if not requirement:
        return None
    m = _COURSE_ID_RE.search(str(requirement))
    return m.group(1) if m else None


def strip_course_id(requirement: Optional[str]) -> str:
    """Requirement text without its trailing "(12345)" id."""
    if not requirement:
        return ""
    return _COURSE_ID_RE.sub("", str(requirement)).strip()


def extract_t_code(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    m = _T_CODE_RE.search(str(name))
    return m.group(1) if m else None


def extract_course_code(name: Optional[str]) -> Optional[str]:
    """Leading course code such as "SPPIVT T111" or "EHSBBPOCCWB"."""
    if not name:
        return None
    m = _COURSE_CODE_RE.match(str(name).strip())
    if not m:
        return None
    code = m.group(1).strip()
    return code or None


def course_variant(name: Optional[str]) -> str:
    upper = str(name or "").upper()
    if "PARENT" in upper:
        return "PARENT"
    for tag in ("OJT", "IL", "OL"):
        if re.search(rf"\b{tag}\b", upper):
            return tag
    return "STANDARD"


def group_base_name(name: Optional[str]) -> str:
    """Course name with trailing id and variant suffixes removed."""
    t = strip_course_id(name)
    prev = None
    while prev != t:
        prev = t
        t = _VARIANT_SUFFIX_RE.sub("", t).strip(" -:")
    return t


def is_q_course(name: Optional[str]) -> bool:
    upper = str(name or "").upper()
    return any(marker in upper for marker in Q_COURSE_MARKERS)


def migration_position_name(employee_name: str) -> str:
    return "MG_" + re.sub(r"[,\s]+", "", str(employee_name))


__all__ = [
    "strip_whitespace",
    "name_key",
    "course_name_key",
    "extract_course_id",
    "strip_course_id",
    "extract_t_code",
    "extract_course_code",
    "course_variant",
    "group_base_name",
    "is_q_course",
    "migration_position_name",
    "Q_COURSE_MARKERS",
]
