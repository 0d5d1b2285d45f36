"""Availability resolution against a doctor's weekly template and overrides."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterator, Sequence

from booking_app.services.appointments import query_appointments
from booking_app.services.conflicts import Interval, first_overlap, overlaps
from booking_app.services.database import db, store_guard
from booking_app.services.doctors import list_blocked_dates, load_template
from booking_app.services.policy import BookingPolicy, current_time, ensure_aware
from booking_app.services.schedule import WEEKDAYS, BlockedDate, TimeWindow, WeeklyTemplate


@dataclass(frozen=True)
class AvailabilityCheck:
    weekday: str
    local_date: date
    day_enabled: bool
    window: TimeWindow | None
    blocked: BlockedDate | None = None

    @property
    def available(self) -> bool:
        return self.day_enabled and self.window is not None and self.blocked is None

    def to_detail(self) -> dict[str, Any]:
        return {
            "weekday": self.weekday,
            "date": self.local_date.isoformat(),
            "day_enabled": self.day_enabled,
            "window": self.window.to_dict() if self.window else None,
            "blocked": self.blocked is not None,
        }


def _wall_time(moment: datetime) -> time:
    return moment.time().replace(tzinfo=None)


def check_instant(
    template: WeeklyTemplate,
    blocked_dates: Sequence[BlockedDate],
    instant: datetime,
) -> AvailabilityCheck:
    """Resolve a single instant: open window, enabled day, no block."""

    local = ensure_aware(instant).astimezone(template.zone)
    weekday = WEEKDAYS[local.weekday()]
    schedule = template.day(weekday)
    moment = _wall_time(local)
    window = next((w for w in schedule.windows if w.contains(moment)), None)
    block = next(
        (b for b in blocked_dates if b.day == local.date() and b.blocks_moment(moment)),
        None,
    )
    return AvailabilityCheck(weekday, local.date(), schedule.enabled, window, block)


def _local_interval(day: date, window: TimeWindow, zone) -> Interval | None:
    """A time-of-day window on ``day`` as absolute instants in ``zone``.

    ``None`` when the window lies wholly inside a skipped DST hour.
    """

    start = datetime.combine(day, window.start, tzinfo=zone)
    end = datetime.combine(day, window.end, tzinfo=zone)
    if end.astimezone(timezone.utc) <= start.astimezone(timezone.utc):
        return None
    return Interval(start, end)


def _blocks(blocked: BlockedDate, local_day: date, candidate: Interval, zone) -> bool:
    if blocked.day != local_day:
        return False
    if blocked.full_day:
        return True
    span = _local_interval(local_day, blocked.window, zone)  # type: ignore[arg-type]
    return span is not None and overlaps(candidate, span)


def check_interval(
    template: WeeklyTemplate,
    blocked_dates: Sequence[BlockedDate],
    start: datetime,
    duration_minutes: int,
) -> AvailabilityCheck:
    """Resolve a whole appointment: it must fit inside one window on one local date.

    Windows and blocks are compared as instants, so wall-clock repeats on a
    DST fall-back day cannot hide a block.
    """

    zone = template.zone
    candidate = Interval.from_duration(ensure_aware(start), duration_minutes)
    local_day = candidate.start.astimezone(zone).date()
    weekday = WEEKDAYS[local_day.weekday()]
    schedule = template.day(weekday)

    window = None
    for option in schedule.windows:
        span = _local_interval(local_day, option, zone)
        if span is not None and span.start <= candidate.start and candidate.end <= span.end:
            window = option
            break
    block = next((b for b in blocked_dates if _blocks(b, local_day, candidate, zone)), None)
    return AvailabilityCheck(weekday, local_day, schedule.enabled, window, block)


def is_available(doctor_id: str, instant: datetime) -> bool:
    """Whether ``instant`` falls in one of the doctor's open, unblocked windows."""

    conn = db()
    try:
        with store_guard("is_available"):
            template = load_template(conn, doctor_id)
            local_day = ensure_aware(instant).astimezone(template.zone).date()
            blocked = list_blocked_dates(conn, doctor_id, local_day, local_day)
    finally:
        conn.close()
    return check_instant(template, blocked, instant).available


class AvailableSlots:
    """Bookable intervals for one doctor over a range of local dates.

    Iterating reads the template, overrides and booked appointments afresh,
    so the same object can be iterated again after bookings change.
    """

    def __init__(
        self,
        doctor_id: str,
        start_day: date,
        end_day: date,
        duration_minutes: int | None = None,
        *,
        now: datetime | None = None,
        policy: BookingPolicy | None = None,
    ) -> None:
        if end_day < start_day:
            raise ValueError("end_day must not be before start_day")
        self.doctor_id = doctor_id
        self.start_day = start_day
        self.end_day = end_day
        self.policy = policy or BookingPolicy.from_config()
        if duration_minutes is None:
            duration_minutes = self.policy.default_duration_minutes
        self.duration_minutes = duration_minutes
        if not 0 < self.duration_minutes <= self.policy.max_duration_minutes:
            raise ValueError("duration_minutes out of range")
        self._now = ensure_aware(now) if now else None

    def __iter__(self) -> Iterator[Interval]:
        return self._generate()

    def _generate(self) -> Iterator[Interval]:
        now = self._now or current_time()
        latest = self.policy.latest_start(now)
        conn = db()
        try:
            with store_guard("available_slots"):
                template = load_template(conn, self.doctor_id)
                blocked = list_blocked_dates(conn, self.doctor_id, self.start_day, self.end_day)
                zone = template.zone
                range_start = datetime.combine(self.start_day, time.min, tzinfo=zone).astimezone(timezone.utc)
                range_end = datetime.combine(self.end_day + timedelta(days=1), time.min, tzinfo=zone).astimezone(
                    timezone.utc
                )
                booked = query_appointments(
                    conn,
                    self.doctor_id,
                    range_start - timedelta(minutes=self.policy.max_duration_minutes),
                    range_end,
                    pending_cutoff=self.policy.pending_cutoff(now),
                )
        finally:
            conn.close()

        step = timedelta(minutes=self.policy.slot_step_minutes)
        length = timedelta(minutes=self.duration_minutes)
        day = self.start_day
        while day <= self.end_day:
            schedule = template.day(WEEKDAYS[day.weekday()])
            for window in schedule.windows:
                cursor = datetime.combine(day, window.start, tzinfo=zone)
                window_end = datetime.combine(day, window.end, tzinfo=zone)
                while cursor + length <= window_end:
                    start = cursor.astimezone(timezone.utc)
                    cursor += step
                    if start <= now or start > latest:
                        continue
                    if not check_interval(template, blocked, start, self.duration_minutes).available:
                        continue
                    candidate = Interval(start, start + length)
                    if first_overlap(candidate, booked) is None:
                        yield candidate
            day += timedelta(days=1)


def available_slots(
    doctor_id: str,
    start_day: date,
    end_day: date,
    duration_minutes: int | None = None,
    *,
    now: datetime | None = None,
) -> AvailableSlots:
    return AvailableSlots(doctor_id, start_day, end_day, duration_minutes, now=now)
