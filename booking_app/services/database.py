"""Database helpers backed by SQLAlchemy."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError

from booking_app.extensions import db as sa_db


class StoreUnavailable(RuntimeError):
    """The booking store failed. Retryable, and never a slot conflict."""


def db() -> sqlite3.Connection:
    """Return a raw sqlite3 connection with PRAGMAs applied."""

    return sa_db.raw_connection()


@contextmanager
def store_guard(context: str) -> Iterator[None]:
    """Translate driver failures into :class:`StoreUnavailable`."""

    try:
        yield
    except (sqlite3.Error, DBAPIError) as exc:
        raise StoreUnavailable(f"{context}: {exc}") from exc


@contextmanager
def immediate_transaction() -> Iterator[sqlite3.Connection]:
    """Yield a connection holding SQLite's write lock until commit or rollback.

    ``BEGIN IMMEDIATE`` takes the reserved lock up front, so reads made inside
    the block cannot be invalidated by another writer before the commit.
    """

    conn = db()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()
