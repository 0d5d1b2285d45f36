"""Application extensions: the booking store engine, CSRF and the rate limiter."""

from __future__ import annotations

import os
import sqlite3

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf import CSRFProtect
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


class SQLAlchemyEngine:
    """SQLite engine for the booking store.

    The reservation path works on raw DB-API connections (``BEGIN IMMEDIATE``
    needs one); audit rows outside a reservation go through engine connections.
    """

    def __init__(self) -> None:
        self._engine: Engine | None = None

    def init_app(self, app: Flask) -> None:
        if self._engine is not None:
            self._engine.dispose()
        uri = app.config["SQLALCHEMY_DATABASE_URI"]
        engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}))
        self._engine = create_engine(uri, future=True, **engine_options)
        app.extensions["db"] = self
        busy_timeout_ms = int(app.config.get("BOOKING_BUSY_TIMEOUT_MS", 5000))

        @event.listens_for(self._engine, "connect")
        def _set_pragmas(dbapi_connection, connection_record) -> None:  # type: ignore[override]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Booking store engine is not initialised")
        return self._engine

    def raw_connection(self) -> sqlite3.Connection:
        raw = self.engine.raw_connection()
        driver_conn = getattr(raw, "driver_connection", None) or raw.connection  # type: ignore[attr-defined]
        driver_conn.row_factory = sqlite3.Row
        return raw

    def dispose(self) -> None:
        """Close pooled connections, e.g. before the database file is removed."""

        if self._engine is not None:
            self._engine.dispose()


db = SQLAlchemyEngine()
csrf = CSRFProtect()
limiter = Limiter(
    get_remote_address,
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
    headers_enabled=True,
)


def init_extensions(app: Flask) -> None:
    db.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
