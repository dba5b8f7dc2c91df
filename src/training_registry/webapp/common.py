from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from flask import current_app, request
from sqlalchemy.engine import Engine
from werkzeug.exceptions import BadRequest

from ..compliance import ComplianceConfig
from ..db import get_engine
from ..dates import parse_report_date


def engine() -> Engine:
    return get_engine(Path(current_app.config["TRAINING_DB_PATH"]))


def compliance_config() -> ComplianceConfig:
    return ComplianceConfig(expiring_window_days=int(current_app.config.get("TRAINING_EXPIRING_DAYS", 30)))


def payload() -> Dict[str, Any]:
    """JSON object body of the request; anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None and request.content_length:
        raise BadRequest("Invalid JSON payload")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BadRequest("Invalid JSON payload")
    return data


def as_of_arg() -> Optional[date]:
    raw = request.args.get("as_of")
    if not raw:
        return None
    parsed = parse_report_date(raw)
    if parsed is None:
        raise ValueError(f"Invalid as_of date: {raw}")
    return parsed


def int_arg(name: str, default: int, *, low: int = 1, high: int = 1000) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer") from None
    return max(low, min(value, high))


def flag_arg(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes", "on"}


def parse_id(value: str, label: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {label}: {value}") from None


def logger() -> Optional[Callable[[str], None]]:
    log = getattr(current_app, "logger", None)
    if log is None:
        return None

    def _log(message: str) -> None:
        log.info(message)

    return _log
