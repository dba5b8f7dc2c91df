from __future__ import annotations

import logging
import os
import subprocess
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from ..db import init_db
from ..errors import Conflict, NotFound
from ..paths import resolve_db_path, resolve_log_path
from .anomalies import anomalies_bp
from .catalog import catalog_bp
from .external import external_bp
from .roster import roster_bp
from .training import training_bp

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8766
BUILD_LABEL_ENV = "TRAINING_BUILD_LABEL"
EXPIRING_DAYS_ENV = "TRAINING_EXPIRING_DAYS"
LOG_FILE_ENV = "TRAINING_LOG_FILE"


def _resolve_build_label(project_root: Path) -> str:
    """Return a human-readable build label (package version + short commit)."""

    env_label = os.getenv(BUILD_LABEL_ENV)
    if env_label:
        return env_label

    try:
        pkg_ver = pkg_version("training-registry")
    except PackageNotFoundError:
        pkg_ver = "0.0.0"

    commit = os.getenv("TRAINING_BUILD_COMMIT")
    if not commit:
        try:
            commit = (
                subprocess.check_output(
                    ["git", "-C", str(project_root), "rev-parse", "--short", "HEAD"],
                    text=True,
                    stderr=subprocess.DEVNULL,
                )
                .strip()
            )
        except (OSError, subprocess.CalledProcessError):
            commit = None

    if commit:
        return f"{pkg_ver} ({commit})"
    return pkg_ver


def _expiring_days(explicit: int | None) -> int:
    if explicit is not None:
        return int(explicit)
    raw = os.getenv(EXPIRING_DAYS_ENV)
    if raw:
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"{EXPIRING_DAYS_ENV} must be an integer, got {raw!r}") from None
    return 30


def _attach_file_log(app: Flask) -> None:
    target = os.getenv(LOG_FILE_ENV)
    log_path = Path(target) if target else resolve_log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler.setLevel(logging.INFO)
    app.logger.addHandler(handler)
    app.logger.setLevel(logging.INFO)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(NotFound)
    def _not_found(exc: NotFound) -> Any:
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(Conflict)
    def _conflict(exc: Conflict) -> Any:
        return jsonify({"error": str(exc)}), 409

    @app.errorhandler(ValueError)
    def _bad_value(exc: ValueError) -> Any:
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(HTTPException)
    def _http(exc: HTTPException) -> Any:
        message = exc.description if exc.code == 400 else exc.name
        return jsonify({"error": message}), exc.code

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception) -> Any:
        app.logger.exception("Unhandled error", exc_info=exc)
        return jsonify({"error": "Internal server error"}), 500


def create_app(
    db_path: Path | str | None = None,
    *,
    expiring_window_days: int | None = None,
    log_to_file: bool = False,
) -> Flask:
    """Flask application factory for the training JSON API."""

    app = Flask(__name__)
    path = resolve_db_path(db_path)
    init_db(path)
    app.config["TRAINING_DB_PATH"] = str(path)
    app.config["TRAINING_EXPIRING_DAYS"] = _expiring_days(expiring_window_days)
    app.config["JSON_AS_ASCII"] = False
    project_root = Path(__file__).resolve().parents[3]
    build_label = _resolve_build_label(project_root)
    app.config["TRAINING_BUILD_LABEL"] = build_label

    if log_to_file or os.getenv(LOG_FILE_ENV):
        _attach_file_log(app)

    _register_error_handlers(app)
    app.register_blueprint(roster_bp, url_prefix="/api")
    app.register_blueprint(catalog_bp, url_prefix="/api")
    app.register_blueprint(training_bp, url_prefix="/api")
    app.register_blueprint(anomalies_bp, url_prefix="/api")
    app.register_blueprint(external_bp, url_prefix="/api")

    @app.route("/")
    def root() -> Any:
        return jsonify({"name": "training-registry", "build": build_label})

    return app


def run(
    *,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    db_path: Path | str | None = None,
    expiring_window_days: int | None = None,
) -> None:
    """Convenience helper to run the JSON API."""

    app = create_app(db_path, expiring_window_days=expiring_window_days, log_to_file=True)
    app.run(host=host, port=port, debug=False)


__all__ = ["create_app", "run", "DEFAULT_HOST", "DEFAULT_PORT"]
