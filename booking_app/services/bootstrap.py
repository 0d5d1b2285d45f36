"""Bootstrap helper to ensure the booking tables exist for first-time runs."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable


def _execute_statements(conn: sqlite3.Connection, statements: Iterable[str]) -> None:
    for stmt in statements:
        conn.execute(stmt)


def ensure_base_tables(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        _execute_statements(
            conn,
            [
                """
                CREATE TABLE IF NOT EXISTS doctors (
                    id TEXT PRIMARY KEY,
                    full_name TEXT NOT NULL,
                    timezone TEXT NOT NULL DEFAULT 'UTC',
                    created_at TEXT NOT NULL
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS weekly_templates (
                    doctor_id TEXT PRIMARY KEY,
                    schedule_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(doctor_id) REFERENCES doctors(id) ON DELETE CASCADE
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS blocked_dates (
                    id TEXT PRIMARY KEY,
                    doctor_id TEXT NOT NULL,
                    blocked_on TEXT NOT NULL,
                    start_time TEXT,
                    end_time TEXT,
                    reason TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(doctor_id) REFERENCES doctors(id) ON DELETE CASCADE,
                    CHECK((start_time IS NULL) = (end_time IS NULL))
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_blocked_dates_doctor_day
                ON blocked_dates(doctor_id, blocked_on)
                """,
                """
                CREATE TABLE IF NOT EXISTS appointments (
                    id TEXT PRIMARY KEY,
                    doctor_id TEXT NOT NULL,
                    patient_id TEXT NOT NULL,
                    starts_at TEXT NOT NULL,
                    duration_minutes INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(doctor_id) REFERENCES doctors(id) ON DELETE CASCADE,
                    CHECK(duration_minutes > 0),
                    CHECK(status IN ('pending','confirmed','completed','cancelled'))
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_appointments_doctor_start
                ON appointments(doctor_id, starts_at)
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_appointments_status
                ON appointments(status)
                """,
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    actor_id TEXT,
                    action TEXT NOT NULL,
                    entity TEXT,
                    entity_id TEXT,
                    ts TEXT NOT NULL,
                    result TEXT NOT NULL DEFAULT 'ok',
                    meta_json TEXT NOT NULL DEFAULT '{}'
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_audit_entity
                ON audit_log(entity_id, ts)
                """,
            ],
        )
        conn.commit()
    finally:
        conn.close()
