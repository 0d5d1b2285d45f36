"""Booking policy constants and the injectable clock."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from flask import current_app


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime, label: str = "instant") -> datetime:
    """Return ``value`` in UTC; naive datetimes are refused."""

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{label} must be timezone-aware")
    return value.astimezone(timezone.utc)


def current_time() -> datetime:
    clock = current_app.config.get("BOOKING_CLOCK") or utcnow
    return ensure_aware(clock(), "clock")


@dataclass(frozen=True)
class BookingPolicy:
    max_horizon: timedelta = timedelta(days=90)
    max_duration_minutes: int = 240
    default_duration_minutes: int = 30
    slot_step_minutes: int = 30
    pending_expiry: timedelta = timedelta(minutes=30)
    lock_timeout_seconds: float = 10.0

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> "BookingPolicy":
        config = current_app.config if config is None else config
        return cls(
            max_horizon=timedelta(days=int(config.get("BOOKING_MAX_HORIZON_DAYS", 90))),
            max_duration_minutes=int(config.get("BOOKING_MAX_DURATION_MINUTES", 240)),
            default_duration_minutes=int(config.get("BOOKING_DEFAULT_DURATION_MINUTES", 30)),
            slot_step_minutes=int(config.get("BOOKING_SLOT_STEP_MINUTES", 30)),
            pending_expiry=timedelta(minutes=int(config.get("BOOKING_PENDING_EXPIRY_MINUTES", 30))),
            lock_timeout_seconds=float(config.get("BOOKING_LOCK_TIMEOUT_SECONDS", 10)),
        )

    def pending_cutoff(self, now: datetime) -> datetime:
        """Pending rows created at or before this instant no longer hold their slot."""

        return now - self.pending_expiry

    def latest_start(self, now: datetime) -> datetime:
        return now + self.max_horizon
