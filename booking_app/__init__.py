"""Booking service package exposing the Flask application factory."""

from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException

from .blueprints import register_blueprints
from .cli import register_cli
from .extensions import init_extensions
from .services.auto_migrate import auto_upgrade
from .services.bootstrap import ensure_base_tables
from .services.database import StoreUnavailable
from .services.errors import record_exception
from .services.policy import utcnow

APP_HOST = "127.0.0.1"
APP_PORT = 8080


def _data_root(base_dir: Path, override: Path | None = None) -> Path:
    root = override if override else base_dir / "data"
    root.mkdir(parents=True, exist_ok=True)
    (root / "logs").mkdir(parents=True, exist_ok=True)
    return root


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def create_app() -> Flask:
    repo_root = Path(__file__).resolve().parent.parent
    db_override = os.getenv("BOOKING_DB_PATH")
    data_root = _data_root(repo_root, Path(db_override).parent if db_override else None)
    db_path = Path(db_override) if db_override else data_root / "booking.db"

    app = Flask(__name__)

    secret_key = os.getenv("BOOKING_SECRET_KEY")
    if not secret_key:
        secret_key = os.urandom(32)

    app.config.update(
        SECRET_KEY=secret_key,
        SESSION_COOKIE_NAME="booking_session",
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False}},
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        DATA_ROOT=str(data_root),
        BOOKING_DB=str(db_path),
        BOOKING_ERROR_LOG=os.getenv("BOOKING_ERROR_LOG", str(data_root / "logs" / "booking_errors.log")),
        BOOKING_DEFAULT_TIMEZONE=os.getenv("BOOKING_DEFAULT_TIMEZONE", "UTC"),
        BOOKING_MAX_HORIZON_DAYS=_env_int("BOOKING_MAX_HORIZON_DAYS", 90),
        BOOKING_MAX_DURATION_MINUTES=_env_int("BOOKING_MAX_DURATION_MINUTES", 240),
        BOOKING_DEFAULT_DURATION_MINUTES=_env_int("BOOKING_DEFAULT_DURATION_MINUTES", 30),
        BOOKING_SLOT_STEP_MINUTES=_env_int("BOOKING_SLOT_STEP_MINUTES", 30),
        BOOKING_PENDING_EXPIRY_MINUTES=_env_int("BOOKING_PENDING_EXPIRY_MINUTES", 30),
        BOOKING_LOCK_TIMEOUT_SECONDS=float(os.getenv("BOOKING_LOCK_TIMEOUT_SECONDS", "10")),
        BOOKING_BUSY_TIMEOUT_MS=_env_int("BOOKING_BUSY_TIMEOUT_MS", 5000),
        BOOKING_RATE_LIMIT=os.getenv("BOOKING_RATE_LIMIT", "30 per minute"),
        BOOKING_CLOCK=utcnow,
    )

    init_extensions(app)
    register_blueprints(app)
    auto_upgrade(app)
    ensure_base_tables(db_path)
    register_cli(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning("CSRF rejected: %s", e.description)
        return jsonify({"success": False, "errors": [f"CSRF validation failed: {e.description}"]}), 400

    @app.errorhandler(StoreUnavailable)
    def handle_store_unavailable(e):
        app.logger.error("Booking store unavailable: %s", e)
        return jsonify({"success": False, "error": "Booking service temporarily unavailable."}), 503

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"success": False, "error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        record_exception("request", e)
        return jsonify({"success": False, "error": "Internal server error"}), 500

    return app


__all__ = ["create_app", "APP_HOST", "APP_PORT"]
