"""Appointment rows: store queries, inserts and status transitions."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from flask import current_app

from booking_app.services.audit import write_event
from booking_app.services.database import db, immediate_transaction, store_guard
from booking_app.services.policy import BookingPolicy, current_time, ensure_aware


ISO_FMT = "%Y-%m-%dT%H:%M:%S"

PENDING = "pending"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELLED = "cancelled"

STATUSES = (PENDING, CONFIRMED, COMPLETED, CANCELLED)
OCCUPYING_STATUSES = (PENDING, CONFIRMED)

_TRANSITIONS = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {COMPLETED, CANCELLED},
    COMPLETED: set(),
    CANCELLED: set(),
}


class AppointmentError(Exception):
    """Base exception for appointment operations."""


class AppointmentNotFound(AppointmentError):
    """Raised when an appointment cannot be located."""


class InvalidTransition(AppointmentError):
    """Raised when a status change would leave the state machine."""


def serialize_instant(value: datetime) -> str:
    return ensure_aware(value).strftime(ISO_FMT)


def parse_instant(text: str) -> datetime:
    return datetime.strptime(text, ISO_FMT).replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Appointment:
    id: str
    doctor_id: str
    patient_id: str
    starts_at: datetime
    duration_minutes: int
    status: str
    created_at: datetime
    updated_at: datetime

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)

    def is_expired_pending(self, cutoff: datetime) -> bool:
        return self.status == PENDING and self.created_at <= cutoff

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "doctor_id": self.doctor_id,
            "patient_id": self.patient_id,
            "starts_at": self.starts_at.isoformat(),
            "ends_at": self.ends_at.isoformat(),
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def _row_to_appointment(row: sqlite3.Row) -> Appointment:
    return Appointment(
        id=row["id"],
        doctor_id=row["doctor_id"],
        patient_id=row["patient_id"],
        starts_at=parse_instant(row["starts_at"]),
        duration_minutes=int(row["duration_minutes"]),
        status=row["status"],
        created_at=parse_instant(row["created_at"]),
        updated_at=parse_instant(row["updated_at"]),
    )


def query_appointments(
    conn: sqlite3.Connection,
    doctor_id: str,
    window_start: datetime,
    window_end: datetime,
    *,
    pending_cutoff: datetime | None = None,
    exclude_id: str | None = None,
) -> list[Appointment]:
    """Occupying appointments for a doctor whose start lies in ``[window_start, window_end)``.

    Pending rows created at or before ``pending_cutoff`` are treated as
    abandoned and left out.
    """

    params: list[Any] = [doctor_id, serialize_instant(window_start), serialize_instant(window_end)]
    sql = """
        SELECT *
        FROM appointments
        WHERE doctor_id = ?
          AND starts_at >= ?
          AND starts_at < ?
          AND status IN ('pending', 'confirmed')
    """
    if pending_cutoff is not None:
        sql += " AND NOT (status = 'pending' AND created_at <= ?)"
        params.append(serialize_instant(pending_cutoff))
    if exclude_id:
        sql += " AND id != ?"
        params.append(exclude_id)
    sql += " ORDER BY starts_at ASC"
    rows = conn.execute(sql, params).fetchall()
    return [_row_to_appointment(row) for row in rows]


def insert_appointment(
    conn: sqlite3.Connection,
    doctor_id: str,
    patient_id: str,
    starts_at: datetime,
    duration_minutes: int,
    *,
    now: datetime,
) -> Appointment:
    stamp = ensure_aware(now).replace(microsecond=0)
    appointment = Appointment(
        id=str(uuid.uuid4()),
        doctor_id=doctor_id,
        patient_id=patient_id,
        starts_at=ensure_aware(starts_at),
        duration_minutes=duration_minutes,
        status=PENDING,
        created_at=stamp,
        updated_at=stamp,
    )
    conn.execute(
        """
        INSERT INTO appointments(
            id, doctor_id, patient_id, starts_at, duration_minutes, status, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            appointment.id,
            doctor_id,
            patient_id,
            serialize_instant(appointment.starts_at),
            duration_minutes,
            PENDING,
            serialize_instant(stamp),
            serialize_instant(stamp),
        ),
    )
    return appointment


def update_start(conn: sqlite3.Connection, appt_id: str, starts_at: datetime, *, now: datetime) -> None:
    conn.execute(
        "UPDATE appointments SET starts_at=?, updated_at=? WHERE id=?",
        (serialize_instant(starts_at), serialize_instant(now), appt_id),
    )


def _set_status(conn: sqlite3.Connection, appt_id: str, status: str, *, now: datetime) -> None:
    conn.execute(
        "UPDATE appointments SET status=?, updated_at=? WHERE id=?",
        (status, serialize_instant(now), appt_id),
    )


def fetch_appointment(conn: sqlite3.Connection, appt_id: str) -> Appointment | None:
    row = conn.execute("SELECT * FROM appointments WHERE id=?", (appt_id,)).fetchone()
    return _row_to_appointment(row) if row else None


def get_appointment(appt_id: str) -> Appointment:
    conn = db()
    try:
        with store_guard("get_appointment"):
            appointment = fetch_appointment(conn, appt_id)
    finally:
        conn.close()
    if appointment is None:
        raise AppointmentNotFound(appt_id)
    return appointment


def list_appointments(
    *,
    doctor_id: str | None = None,
    patient_id: str | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 200,
) -> list[Appointment]:
    """Appointments matching every given filter, earliest start first.

    Stored statuses are returned as-is; an expired pending row still reads
    ``pending`` until the sweep cancels it.
    """

    if status is not None and status not in STATUSES:
        raise ValueError(f"unknown status: {status}")
    clauses: list[str] = []
    params: list[Any] = []
    if doctor_id:
        clauses.append("doctor_id = ?")
        params.append(doctor_id)
    if patient_id:
        clauses.append("patient_id = ?")
        params.append(patient_id)
    if status:
        clauses.append("status = ?")
        params.append(status)
    if start is not None:
        clauses.append("starts_at >= ?")
        params.append(serialize_instant(start))
    if end is not None:
        clauses.append("starts_at < ?")
        params.append(serialize_instant(end))
    sql = "SELECT * FROM appointments"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY starts_at ASC LIMIT ?"
    params.append(limit)

    conn = db()
    try:
        with store_guard("list_appointments"):
            rows = conn.execute(sql, params).fetchall()
    finally:
        conn.close()
    return [_row_to_appointment(row) for row in rows]


def transition_status(
    appt_id: str,
    status: str,
    *,
    now: datetime | None = None,
    actor_id: str | None = None,
) -> Appointment:
    """Move an appointment along ``pending -> confirmed -> completed`` or to ``cancelled``.

    Confirming a pending appointment whose hold has expired cancels it
    instead, because its slot may already have been given away.
    """

    if status not in STATUSES:
        raise InvalidTransition(f"unknown_status:{status}")
    policy = BookingPolicy.from_config()
    now = ensure_aware(now) if now else current_time()

    expired = False
    with store_guard("transition_status"):
        with immediate_transaction() as conn:
            current = fetch_appointment(conn, appt_id)
            if current is None:
                raise AppointmentNotFound(appt_id)
            if status not in _TRANSITIONS[current.status]:
                raise InvalidTransition(f"{current.status}->{status}")
            target = status
            if status == CONFIRMED and current.is_expired_pending(policy.pending_cutoff(now)):
                target = CANCELLED
                expired = True
            _set_status(conn, appt_id, target, now=now)
            write_event(
                actor_id,
                f"appointment_{target}",
                entity="appointment",
                entity_id=appt_id,
                result="expired" if expired else "ok",
                meta={"from": current.status, "requested": status},
                conn=conn,
            )
            updated = fetch_appointment(conn, appt_id)

    if expired:
        current_app.logger.info("Appointment %s expired before payment settled; cancelled", appt_id)
        raise InvalidTransition("pending_expired")
    current_app.logger.info("Appointment %s moved %s -> %s", appt_id, current.status, target)
    return updated  # type: ignore[return-value]


def sweep_appointments(*, now: datetime | None = None) -> dict[str, int]:
    """Cancel abandoned pending holds and complete confirmed visits that have ended."""

    policy = BookingPolicy.from_config()
    now = ensure_aware(now) if now else current_time()
    cutoff = policy.pending_cutoff(now)
    counts = {"cancelled": 0, "completed": 0}

    with store_guard("sweep_appointments"):
        with immediate_transaction() as conn:
            expired_rows = conn.execute(
                "SELECT id FROM appointments WHERE status = 'pending' AND created_at <= ?",
                (serialize_instant(cutoff),),
            ).fetchall()
            for row in expired_rows:
                _set_status(conn, row["id"], CANCELLED, now=now)
                counts["cancelled"] += 1

            # Only rows that have already started can have ended.
            started_rows = conn.execute(
                "SELECT * FROM appointments WHERE status = 'confirmed' AND starts_at <= ?",
                (serialize_instant(now),),
            ).fetchall()
            for row in started_rows:
                appointment = _row_to_appointment(row)
                if appointment.ends_at <= now:
                    _set_status(conn, appointment.id, COMPLETED, now=now)
                    counts["completed"] += 1

            if counts["cancelled"] or counts["completed"]:
                write_event(None, "appointments_swept", entity="appointment", meta=counts, conn=conn)

    current_app.logger.info(
        "Appointment sweep: %d pending cancelled, %d completed", counts["cancelled"], counts["completed"]
    )
    return counts
