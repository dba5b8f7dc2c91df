from __future__ import annotations

import os
import sys
import uuid
from pathlib import Path
from typing import Iterable

DATA_ROOT_ENV = "TRAINING_DATA_ROOT"
DB_PATH_ENV = "TRAINING_DB_PATH"
DUCKDB_PATH_ENV = "TRAINING_DUCKDB_PATH"
_DEFAULT_DB_NAME = "training.sqlite"
_DEFAULT_DUCKDB_NAME = "snapshot.duckdb"


def _user_data_base() -> Path:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        if base:
            return Path(base) / "training-registry"
        return Path.home() / "AppData" / "Local" / "training-registry"
    data_home = os.getenv("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "training-registry"
    return Path.home() / ".local" / "share" / "training-registry"


def _uniquify(paths: Iterable[Path]) -> list[Path]:
    seen: set[Path] = set()
    ordered: list[Path] = []
    for p in paths:
        if p in seen:
            continue
        seen.add(p)
        ordered.append(p)
    return ordered


def _candidate_data_dirs() -> list[Path]:
    candidates: list[Path] = []

    exe = Path(sys.executable)
    try:
        exe_dir = exe.resolve().parent
    except OSError:
        exe_dir = exe.parent
    candidates.extend([exe_dir.parent / "data", exe_dir / "data"])

    try:
        repo_root = Path(__file__).resolve().parents[2]
    except IndexError:
        repo_root = Path(__file__).resolve().parent
    candidates.extend([Path.cwd() / "data", repo_root / "data"])

    candidates.append(_user_data_base() / "data")
    return _uniquify(candidates)


def _dir_is_writable(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    probe = path / f".permcheck-{uuid.uuid4().hex}"
    try:
        probe.write_bytes(b"")
        probe.unlink()
        return True
    except OSError:
        return False


def resolve_data_root(explicit: Path | str | None = None, *, ensure_exists: bool = True) -> Path:
    if explicit:
        resolved = Path(explicit).expanduser()
        if ensure_exists:
            resolved.mkdir(parents=True, exist_ok=True)
        return resolved

    env_root = os.getenv(DATA_ROOT_ENV)
    if env_root:
        resolved = Path(env_root).expanduser()
        if ensure_exists:
            resolved.mkdir(parents=True, exist_ok=True)
        return resolved

    candidates = _candidate_data_dirs()
    # Prefer a directory that already holds a database
    for candidate in candidates:
        if (candidate / _DEFAULT_DB_NAME).exists() and _dir_is_writable(candidate):
            return candidate

    for candidate in candidates:
        if candidate.exists() and _dir_is_writable(candidate):
            return candidate

    fallback = _user_data_base() / "data"
    if ensure_exists:
        fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def resolve_db_path(explicit: Path | str | None = None) -> Path:
    if explicit:
        path = Path(explicit).expanduser()
    else:
        env_path = os.getenv(DB_PATH_ENV)
        path = Path(env_path).expanduser() if env_path else resolve_data_root() / _DEFAULT_DB_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def resolve_duckdb_path(explicit: Path | str | None = None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.getenv(DUCKDB_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return resolve_data_root() / _DEFAULT_DUCKDB_NAME


def resolve_report_dir(explicit: Path | str | None = None) -> Path:
    base = Path(explicit).expanduser() if explicit else resolve_data_root() / "reports"
    base.mkdir(parents=True, exist_ok=True)
    return base


def resolve_log_path(filename: str = "app.log") -> Path:
    log_dir = resolve_data_root() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / filename


__all__ = [
    "resolve_data_root",
    "resolve_db_path",
    "resolve_duckdb_path",
    "resolve_report_dir",
    "resolve_log_path",
    "DATA_ROOT_ENV",
    "DB_PATH_ENV",
    "DUCKDB_PATH_ENV",
]
