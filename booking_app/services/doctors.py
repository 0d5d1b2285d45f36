"""Doctor records, weekly templates and blocked dates."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import date, datetime
from typing import Any, Mapping

from flask import current_app

from booking_app.services.appointments import serialize_instant
from booking_app.services.audit import write_event
from booking_app.services.database import db, immediate_transaction, store_guard
from booking_app.services.policy import current_time
from booking_app.services.schedule import (
    BlockedDate,
    ScheduleError,
    TimeWindow,
    WeeklyTemplate,
    format_clock,
    parse_clock,
    resolve_zone,
)


class DoctorNotFound(LookupError):
    """Raised when a doctor id has no record."""


class DoctorExists(ValueError):
    """Raised when registering an id that is already taken."""


class BlockedDateNotFound(LookupError):
    """Raised when a blocked date cannot be located."""


def _default_timezone() -> str:
    return current_app.config.get("BOOKING_DEFAULT_TIMEZONE", "UTC")


def _doctor_row(conn: sqlite3.Connection, doctor_id: str) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM doctors WHERE id=?", (doctor_id,)).fetchone()
    if row is None:
        raise DoctorNotFound(doctor_id)
    return row


def _doctor_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "full_name": row["full_name"],
        "timezone": row["timezone"],
        "created_at": row["created_at"],
    }


def create_doctor(
    full_name: str,
    timezone_name: str | None = None,
    *,
    doctor_id: str | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Register a doctor together with the default weekly template."""

    full_name = (full_name or "").strip()
    if not full_name:
        raise ScheduleError("full_name_required")
    timezone_name = (timezone_name or "").strip() or _default_timezone()
    resolve_zone(timezone_name)
    doctor_id = doctor_id or str(uuid.uuid4())
    stamp = serialize_instant(current_time())
    template = WeeklyTemplate.default(doctor_id, timezone_name)

    with store_guard("create_doctor"):
        with immediate_transaction() as conn:
            if conn.execute("SELECT 1 FROM doctors WHERE id=?", (doctor_id,)).fetchone():
                raise DoctorExists(doctor_id)
            conn.execute(
                "INSERT INTO doctors(id, full_name, timezone, created_at) VALUES (?, ?, ?, ?)",
                (doctor_id, full_name, timezone_name, stamp),
            )
            conn.execute(
                "INSERT INTO weekly_templates(doctor_id, schedule_json, updated_at) VALUES (?, ?, ?)",
                (doctor_id, json.dumps(template.to_dict()), stamp),
            )
            write_event(actor_id, "doctor_registered", entity="doctor", entity_id=doctor_id, conn=conn)
    current_app.logger.info("Registered doctor %s (%s)", doctor_id, timezone_name)
    return {"id": doctor_id, "full_name": full_name, "timezone": timezone_name, "created_at": stamp}


def get_doctor(doctor_id: str) -> dict[str, Any]:
    conn = db()
    try:
        with store_guard("get_doctor"):
            return _doctor_dict(_doctor_row(conn, doctor_id))
    finally:
        conn.close()


def load_template(conn: sqlite3.Connection, doctor_id: str) -> WeeklyTemplate:
    doctor = _doctor_row(conn, doctor_id)
    row = conn.execute(
        "SELECT schedule_json FROM weekly_templates WHERE doctor_id=?",
        (doctor_id,),
    ).fetchone()
    if row is None:
        return WeeklyTemplate.default(doctor_id, doctor["timezone"])
    return WeeklyTemplate.from_dict(doctor_id, doctor["timezone"], json.loads(row["schedule_json"]))


def get_template(doctor_id: str) -> WeeklyTemplate:
    conn = db()
    try:
        with store_guard("get_template"):
            return load_template(conn, doctor_id)
    finally:
        conn.close()


def save_template(
    doctor_id: str,
    schedule: Mapping[str, Any],
    *,
    timezone_name: str | None = None,
    actor_id: str | None = None,
) -> WeeklyTemplate:
    """Replace a doctor's weekly template (and optionally their zone)."""

    stamp = serialize_instant(current_time())
    with store_guard("save_template"):
        with immediate_transaction() as conn:
            doctor = _doctor_row(conn, doctor_id)
            zone_name = (timezone_name or "").strip() or doctor["timezone"]
            template = WeeklyTemplate.from_dict(doctor_id, zone_name, schedule)
            if zone_name != doctor["timezone"]:
                conn.execute("UPDATE doctors SET timezone=? WHERE id=?", (zone_name, doctor_id))
            conn.execute(
                """
                INSERT INTO weekly_templates(doctor_id, schedule_json, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(doctor_id) DO UPDATE SET
                    schedule_json=excluded.schedule_json,
                    updated_at=excluded.updated_at
                """,
                (doctor_id, json.dumps(template.to_dict()), stamp),
            )
            write_event(
                actor_id,
                "availability_updated",
                entity="doctor",
                entity_id=doctor_id,
                meta={"timezone": zone_name},
                conn=conn,
            )
    return template


def _row_to_blocked(row: sqlite3.Row) -> BlockedDate:
    window = None
    if row["start_time"] and row["end_time"]:
        window = TimeWindow(parse_clock(row["start_time"]), parse_clock(row["end_time"]))
    return BlockedDate(
        id=row["id"],
        doctor_id=row["doctor_id"],
        day=date.fromisoformat(row["blocked_on"]),
        window=window,
        reason=row["reason"],
    )


def list_blocked_dates(
    conn: sqlite3.Connection,
    doctor_id: str,
    start_day: date | None = None,
    end_day: date | None = None,
) -> list[BlockedDate]:
    params: list[Any] = [doctor_id]
    sql = "SELECT * FROM blocked_dates WHERE doctor_id = ?"
    if start_day:
        sql += " AND blocked_on >= ?"
        params.append(start_day.isoformat())
    if end_day:
        sql += " AND blocked_on <= ?"
        params.append(end_day.isoformat())
    sql += " ORDER BY blocked_on ASC, start_time ASC"
    return [_row_to_blocked(row) for row in conn.execute(sql, params).fetchall()]


def get_blocked_dates(
    doctor_id: str,
    start_day: date | None = None,
    end_day: date | None = None,
) -> list[BlockedDate]:
    conn = db()
    try:
        with store_guard("get_blocked_dates"):
            _doctor_row(conn, doctor_id)
            return list_blocked_dates(conn, doctor_id, start_day, end_day)
    finally:
        conn.close()


def add_blocked_date(
    doctor_id: str,
    day: date,
    window: TimeWindow | None = None,
    *,
    reason: str | None = None,
    actor_id: str | None = None,
) -> BlockedDate:
    blocked = BlockedDate(
        id=str(uuid.uuid4()),
        doctor_id=doctor_id,
        day=day,
        window=window,
        reason=(reason or "").strip() or None,
    )
    created_at: datetime = current_time()
    with store_guard("add_blocked_date"):
        with immediate_transaction() as conn:
            _doctor_row(conn, doctor_id)
            conn.execute(
                """
                INSERT INTO blocked_dates(id, doctor_id, blocked_on, start_time, end_time, reason, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    blocked.id,
                    doctor_id,
                    day.isoformat(),
                    format_clock(window.start) if window else None,
                    format_clock(window.end) if window else None,
                    blocked.reason,
                    serialize_instant(created_at),
                ),
            )
            write_event(
                actor_id,
                "blocked_date_added",
                entity="doctor",
                entity_id=doctor_id,
                meta={"date": day.isoformat(), "window": window.to_dict() if window else None},
                conn=conn,
            )
    return blocked


def delete_blocked_date(doctor_id: str, blocked_id: str, *, actor_id: str | None = None) -> None:
    with store_guard("delete_blocked_date"):
        with immediate_transaction() as conn:
            cur = conn.execute(
                "DELETE FROM blocked_dates WHERE id=? AND doctor_id=?",
                (blocked_id, doctor_id),
            )
            if cur.rowcount == 0:
                raise BlockedDateNotFound(blocked_id)
            write_event(
                actor_id,
                "blocked_date_removed",
                entity="doctor",
                entity_id=doctor_id,
                meta={"blocked_id": blocked_id},
                conn=conn,
            )
