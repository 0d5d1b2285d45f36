"""Half-open interval overlap tests against a doctor's booked appointments."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from booking_app.services.appointments import Appointment, query_appointments
from booking_app.services.policy import BookingPolicy, ensure_aware


@dataclass(frozen=True)
class Interval:
    """``[start, end)`` between two aware instants."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_aware(self.start, "start"))
        object.__setattr__(self, "end", ensure_aware(self.end, "end"))
        if self.end <= self.start:
            raise ValueError("interval end must be after start")

    @classmethod
    def from_duration(cls, start: datetime, minutes: int) -> "Interval":
        return cls(start, start + timedelta(minutes=minutes))

    @classmethod
    def of(cls, appointment: Appointment) -> "Interval":
        return cls(appointment.starts_at, appointment.ends_at)

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def overlaps(a: Interval, b: Interval) -> bool:
    # Back-to-back intervals (a.end == b.start) share no instant.
    return a.start < b.end and b.start < a.end


def first_overlap(candidate: Interval, booked: Iterable[Appointment]) -> Appointment | None:
    for appointment in booked:
        if overlaps(candidate, Interval.of(appointment)):
            return appointment
    return None


def conflict_window(candidate: Interval, policy: BookingPolicy) -> tuple[datetime, datetime]:
    """Start-time range that can hold an appointment overlapping ``candidate``."""

    return candidate.start - timedelta(minutes=policy.max_duration_minutes), candidate.end


def find_conflict(
    conn: sqlite3.Connection,
    doctor_id: str,
    candidate: Interval,
    *,
    now: datetime,
    policy: BookingPolicy,
    exclude_id: str | None = None,
) -> Appointment | None:
    window_start, window_end = conflict_window(candidate, policy)
    booked = query_appointments(
        conn,
        doctor_id,
        window_start,
        window_end,
        pending_cutoff=policy.pending_cutoff(now),
        exclude_id=exclude_id,
    )
    return first_overlap(candidate, booked)


def has_conflict(
    conn: sqlite3.Connection,
    doctor_id: str,
    candidate: Interval,
    *,
    now: datetime,
    policy: BookingPolicy,
    exclude_id: str | None = None,
) -> bool:
    return find_conflict(conn, doctor_id, candidate, now=now, policy=policy, exclude_id=exclude_id) is not None
