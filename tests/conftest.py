import os
import pathlib
import shutil
import sys
from datetime import datetime, timedelta, timezone

import pytest

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from booking_app import create_app
from booking_app.extensions import db as store
from booking_app.services.doctors import create_doctor

# Monday morning, before the default 09:00-17:00 window opens.
NOW = datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc)
DOCTOR_ID = "dr-ortiz"


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def at(day: int, hour: int, minute: int = 0) -> datetime:
    """UTC instant in March 2025."""
    return datetime(2025, 3, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def _template_db(tmp_path_factory):
    """Build a fully-migrated DB once per test session.

    Every function-scoped ``app`` fixture copies this file instead of
    running the Alembic migrations again.
    """
    db_path = tmp_path_factory.mktemp("template") / "booking.db"
    saved = {key: os.environ.get(key) for key in ("BOOKING_DB_PATH", "BOOKING_SECRET_KEY")}
    os.environ["BOOKING_DB_PATH"] = str(db_path)
    os.environ["BOOKING_SECRET_KEY"] = "test-secret"
    try:
        _app = create_app()
        with _app.app_context():
            pass
        store.dispose()
    finally:
        for key, value in saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
    return db_path


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def app(tmp_path, monkeypatch, _template_db, clock):
    db_path = tmp_path / "booking.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("BOOKING_DB_PATH", str(db_path))
    monkeypatch.setenv("BOOKING_SECRET_KEY", "test-secret")
    monkeypatch.setenv("BOOKING_AUTO_MIGRATE", "0")  # Already migrated
    monkeypatch.setenv("BOOKING_RATE_LIMIT", "1000 per minute")
    app = create_app()
    app.config.update(TESTING=True, WTF_CSRF_ENABLED=True, BOOKING_CLOCK=clock)
    yield app
    store.dispose()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def doctor(app_ctx):
    """A UTC doctor on the default Monday-Friday 09:00-17:00 template."""
    return create_doctor("Dr. Ana Ortiz", "UTC", doctor_id=DOCTOR_ID)


@pytest.fixture
def csrf_headers(client):
    token = client.get("/csrf-token").get_json()["csrf_token"]
    return {"X-CSRFToken": token}
