from __future__ import annotations

import re
from pathlib import Path
from functools import lru_cache
from typing import Dict, Iterable
import unicodedata as _ud

import yaml


# Columns an external training report must provide after mapping
REQUIRED_EXTERNAL_COLUMNS = ("requirement", "associate_name", "expire_date")


def _norm_token(s: str) -> str:
    if s is None:
        return ""
    t = _ud.normalize("NFKC", str(s)).strip()
    if t.lower().startswith("unnamed:"):
        return t.lower()
    for l, r in [("(", ")"), ("[", "]"), ("{", "}")]:
        while l in t and r in t and t.index(l) < t.index(r):
            li, ri = t.index(l), t.index(r)
            t = (t[:li] + t[ri + 1 :]).strip()
    t = re.sub(r"[\s_]+", " ", t)
    return t.lower()


def _project_root(start: Path) -> Path:
    cur = start
    for _ in range(6):
        if (cur / "pyproject.toml").exists() or (cur / ".git").exists():
            return cur
        cur = cur.parent
    return start


def _ensure_str_list(x) -> Iterable[str]:
    if isinstance(x, (list, tuple, set)):
        return [str(i) if i is not None else "" for i in x]
    return [str(x) if x is not None else ""]


@lru_cache(maxsize=1)
def get_header_map() -> Dict[str, str]:
    """Load docs/field_map.yaml if present and build a reverse map of
    report headers -> canonical keys, including normalized variants.
    """
    base: Dict[str, Iterable[str]] = {
        "associate_name": ["Associate", "Associate Name", "Employee", "Employee Name", "Name"],
        "badge_id": ["Badge", "Badge ID", "Badge Number", "Associate ID"],
        "requirement": ["Requirement", "Requirement Name", "Course", "Course Name", "Training"],
        "course_id": ["Course ID", "Course Number"],
        "status": ["Current Status", "Status", "Requirement Status"],
        "expire_date": ["Expire Date", "Expiration Date", "Expiration", "Expires", "Due Date"],
        "completion_date": ["Completion Date", "Completed", "Completed On"],
    }

    here = Path(__file__).resolve()
    root = _project_root(here.parent.parent)
    yml = root / "docs" / "field_map.yaml"
    if yml.exists():
        data = yaml.safe_load(yml.read_text(encoding="utf-8")) or {}
        for canon, tokens in data.items():
            if not isinstance(tokens, list):
                continue
            base.setdefault(canon, [])
            base[canon] = list({*_ensure_str_list(base[canon]), *_ensure_str_list(tokens)})

    rev: Dict[str, str] = {}
    for canon, tokens in base.items():
        for tok in _ensure_str_list(tokens):
            if not tok:
                continue
            rev[tok] = canon
            rev[_norm_token(tok)] = canon
    return rev


__all__ = ["get_header_map", "REQUIRED_EXTERNAL_COLUMNS"]
