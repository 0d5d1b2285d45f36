"""Booking validation and the slot reservation transaction.

``validate`` is read-only and may be called speculatively.  ``reserve`` and
``reschedule`` repeat the same checks inside a critical section made of a
per-doctor lock plus an immediate SQLite transaction, so two overlapping
requests for one doctor cannot both pass validation and commit.
"""

from __future__ import annotations

import sqlite3
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Mapping

from flask import current_app

from booking_app.services.appointments import (
    OCCUPYING_STATUSES,
    Appointment,
    AppointmentError,
    AppointmentNotFound,
    fetch_appointment,
    get_appointment,
    insert_appointment,
    update_start,
)
from booking_app.services.audit import write_event
from booking_app.services.availability import check_interval
from booking_app.services.conflicts import Interval, find_conflict
from booking_app.services.database import StoreUnavailable, db, immediate_transaction, store_guard
from booking_app.services.doctors import get_doctor, list_blocked_dates, load_template
from booking_app.services.policy import BookingPolicy, current_time, ensure_aware


class RejectionReason(str, Enum):
    INVALID_DURATION = "InvalidDuration"
    IN_THE_PAST = "InThePast"
    TOO_FAR_IN_FUTURE = "TooFarInFuture"
    OUTSIDE_AVAILABILITY = "OutsideAvailability"
    SLOT_TAKEN = "SlotTaken"


REJECTION_MESSAGES = {
    RejectionReason.INVALID_DURATION: "Appointment length is not allowed.",
    RejectionReason.IN_THE_PAST: "Cannot book appointments in the past.",
    RejectionReason.TOO_FAR_IN_FUTURE: "Cannot book appointments that far in advance.",
    RejectionReason.OUTSIDE_AVAILABILITY: "Doctor is not available at this time.",
    RejectionReason.SLOT_TAKEN: "This time was just booked. Please pick another slot.",
}


@dataclass(frozen=True)
class BookingDecision:
    accepted: bool
    reason: RejectionReason | None = None
    detail: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def accept(cls) -> "BookingDecision":
        return cls(True)

    @classmethod
    def reject(cls, reason: RejectionReason, **detail: Any) -> "BookingDecision":
        return cls(False, reason, detail)

    @property
    def message(self) -> str | None:
        if self.reason is None:
            return None
        if self.reason is RejectionReason.OUTSIDE_AVAILABILITY and self.detail.get("weekday"):
            weekday = str(self.detail["weekday"]).capitalize()
            if not self.detail.get("day_enabled"):
                return f"Doctor is not available on {weekday}s."
            if self.detail.get("blocked"):
                return f"Doctor is not available on {self.detail.get('date')}."
            return f"Doctor is not available on {weekday}s at this time."
        return REJECTION_MESSAGES[self.reason]

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "detail": dict(self.detail),
        }


class DoctorLocks:
    """One lock per doctor; different doctors never wait on each other.

    Locks are held weakly: an entry lives only while some caller holds or
    waits on it, so the registry never outgrows the doctors in flight.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()

    def for_doctor(self, doctor_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(doctor_id)
            if lock is None:
                lock = self._locks[doctor_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, doctor_id: str, timeout: float) -> Iterator[None]:
        lock = self.for_doctor(doctor_id)
        if not lock.acquire(timeout=timeout):
            raise StoreUnavailable(f"reservation lock timeout for doctor {doctor_id}")
        try:
            yield
        finally:
            lock.release()


doctor_locks = DoctorLocks()


def _normalize_start(starts_at: datetime) -> datetime:
    return ensure_aware(starts_at, "starts_at").replace(microsecond=0)


def _check_request(
    starts_at: datetime,
    duration_minutes: int,
    now: datetime,
    policy: BookingPolicy,
) -> BookingDecision | None:
    """Rules that need no store access, in rejection order."""

    if not 0 < duration_minutes <= policy.max_duration_minutes:
        return BookingDecision.reject(
            RejectionReason.INVALID_DURATION,
            max_duration_minutes=policy.max_duration_minutes,
        )
    if starts_at <= now:
        return BookingDecision.reject(RejectionReason.IN_THE_PAST)
    if starts_at > policy.latest_start(now):
        return BookingDecision.reject(
            RejectionReason.TOO_FAR_IN_FUTURE,
            max_horizon_days=policy.max_horizon.days,
        )
    return None


def _evaluate(
    conn: sqlite3.Connection,
    doctor_id: str,
    starts_at: datetime,
    duration_minutes: int,
    *,
    now: datetime,
    policy: BookingPolicy,
    exclude_id: str | None = None,
) -> BookingDecision:
    decision = _check_request(starts_at, duration_minutes, now, policy)
    if decision is not None:
        return decision

    template = load_template(conn, doctor_id)
    local_day = starts_at.astimezone(template.zone).date()
    blocked = list_blocked_dates(conn, doctor_id, local_day, local_day)
    availability = check_interval(template, blocked, starts_at, duration_minutes)
    if not availability.available:
        return BookingDecision.reject(RejectionReason.OUTSIDE_AVAILABILITY, **availability.to_detail())

    candidate = Interval.from_duration(starts_at, duration_minutes)
    clash = find_conflict(conn, doctor_id, candidate, now=now, policy=policy, exclude_id=exclude_id)
    if clash is not None:
        return BookingDecision.reject(RejectionReason.SLOT_TAKEN)
    return BookingDecision.accept()


def validate(
    doctor_id: str,
    starts_at: datetime,
    duration_minutes: int,
    *,
    now: datetime | None = None,
    exclude_appointment_id: str | None = None,
) -> BookingDecision:
    """Decide whether a booking would be accepted right now, without writing."""

    policy = BookingPolicy.from_config()
    now = ensure_aware(now) if now else current_time()
    starts_at = _normalize_start(starts_at)

    early = _check_request(starts_at, duration_minutes, now, policy)
    if early is not None:
        return early

    conn = db()
    try:
        with store_guard("validate"):
            return _evaluate(
                conn,
                doctor_id,
                starts_at,
                duration_minutes,
                now=now,
                policy=policy,
                exclude_id=exclude_appointment_id,
            )
    finally:
        conn.close()


def reserve_with_decision(
    doctor_id: str,
    patient_id: str,
    starts_at: datetime,
    duration_minutes: int,
    *,
    now: datetime | None = None,
    actor_id: str | None = None,
) -> Appointment | BookingDecision:
    """Like :func:`reserve`, but a rejection keeps its full :class:`BookingDecision`."""

    policy = BookingPolicy.from_config()
    starts_at = _normalize_start(starts_at)
    fixed_now = ensure_aware(now) if now else None

    early = _check_request(starts_at, duration_minutes, fixed_now or current_time(), policy)
    if early is not None:
        current_app.logger.info("Reservation for doctor %s rejected early: %s", doctor_id, early.reason.value)
        return early

    # Unknown ids never reach the lock registry.
    get_doctor(doctor_id)

    with doctor_locks.hold(doctor_id, policy.lock_timeout_seconds):
        with store_guard("reserve"):
            with immediate_transaction() as conn:
                moment = fixed_now or current_time()
                decision = _evaluate(conn, doctor_id, starts_at, duration_minutes, now=moment, policy=policy)
                if decision.accepted:
                    appointment = insert_appointment(
                        conn, doctor_id, patient_id, starts_at, duration_minutes, now=moment
                    )
                    write_event(
                        actor_id,
                        "appointment_reserved",
                        entity="appointment",
                        entity_id=appointment.id,
                        meta={
                            "doctor_id": doctor_id,
                            "starts_at": appointment.starts_at.isoformat(),
                            "duration_minutes": duration_minutes,
                        },
                        conn=conn,
                    )

    if not decision.accepted:
        current_app.logger.info("Reservation for doctor %s rejected: %s", doctor_id, decision.reason.value)
        return decision
    current_app.logger.info(
        "Reserved appointment %s for doctor %s at %s", appointment.id, doctor_id, appointment.starts_at.isoformat()
    )
    return appointment


def reserve(
    doctor_id: str,
    patient_id: str,
    starts_at: datetime,
    duration_minutes: int,
    *,
    now: datetime | None = None,
    actor_id: str | None = None,
) -> Appointment | RejectionReason:
    """Validate and insert a pending appointment as one atomic step.

    Returns the committed appointment, or the first rejection reason; on a
    rejection or an exception nothing is written.
    """

    result = reserve_with_decision(
        doctor_id, patient_id, starts_at, duration_minutes, now=now, actor_id=actor_id
    )
    if isinstance(result, BookingDecision):
        return result.reason  # type: ignore[return-value]
    return result


def reschedule_with_decision(
    appointment_id: str,
    new_start: datetime,
    *,
    now: datetime | None = None,
    actor_id: str | None = None,
) -> Appointment | BookingDecision:
    policy = BookingPolicy.from_config()
    new_start = _normalize_start(new_start)
    fixed_now = ensure_aware(now) if now else None
    existing = get_appointment(appointment_id)

    with doctor_locks.hold(existing.doctor_id, policy.lock_timeout_seconds):
        with store_guard("reschedule"):
            with immediate_transaction() as conn:
                moment = fixed_now or current_time()
                current = fetch_appointment(conn, appointment_id)
                if current is None:
                    raise AppointmentNotFound(appointment_id)
                if current.status not in OCCUPYING_STATUSES or current.is_expired_pending(
                    policy.pending_cutoff(moment)
                ):
                    raise AppointmentError("not_reschedulable")
                decision = _evaluate(
                    conn,
                    current.doctor_id,
                    new_start,
                    current.duration_minutes,
                    now=moment,
                    policy=policy,
                    exclude_id=current.id,
                )
                if decision.accepted:
                    update_start(conn, current.id, new_start, now=moment)
                    write_event(
                        actor_id,
                        "appointment_rescheduled",
                        entity="appointment",
                        entity_id=current.id,
                        meta={"old_start": current.starts_at.isoformat(), "new_start": new_start.isoformat()},
                        conn=conn,
                    )
                    updated = fetch_appointment(conn, current.id)

    if not decision.accepted:
        current_app.logger.info("Reschedule of %s rejected: %s", appointment_id, decision.reason.value)
        return decision
    return updated  # type: ignore[return-value]


def reschedule(
    appointment_id: str,
    new_start: datetime,
    *,
    now: datetime | None = None,
    actor_id: str | None = None,
) -> Appointment | RejectionReason:
    """Move an occupying appointment to a new start, keeping its duration."""

    result = reschedule_with_decision(appointment_id, new_start, now=now, actor_id=actor_id)
    if isinstance(result, BookingDecision):
        return result.reason  # type: ignore[return-value]
    return result


__all__ = [
    "BookingDecision",
    "DoctorLocks",
    "RejectionReason",
    "REJECTION_MESSAGES",
    "doctor_locks",
    "reserve",
    "reserve_with_decision",
    "reschedule",
    "reschedule_with_decision",
    "validate",
]
