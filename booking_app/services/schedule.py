"""Weekly availability templates and blocked-date overrides.

A doctor's week is a static template: each weekday is either closed or open
for an ordered list of non-overlapping time-of-day windows, interpreted in the
doctor's own IANA zone.  Blocked dates only ever subtract from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


# Indexed by ``date.weekday()`` (Monday == 0).
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
CLOCK_FMT = "%H:%M"

DEFAULT_OPEN = (time(9, 0), time(17, 0))
DEFAULT_OPEN_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")


class ScheduleError(ValueError):
    """Raised when a template, window or blocked date is malformed."""


def parse_clock(value: Any) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    text = str(value or "").strip()
    try:
        hour, minute = text.split(":")
        return time(int(hour), int(minute))
    except ValueError as exc:
        raise ScheduleError(f"invalid_time:{text or '-'}") from exc


def format_clock(value: time) -> str:
    return value.strftime(CLOCK_FMT)


def resolve_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ScheduleError(f"invalid_timezone:{name}") from exc


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time-of-day range ``[start, end)``."""

    start: time
    end: time

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ScheduleError(f"window_start_after_end:{format_clock(self.start)}-{format_clock(self.end)}")

    def contains(self, moment: time) -> bool:
        return self.start <= moment < self.end

    def covers(self, start: time, end: time) -> bool:
        return self.start <= start and end <= self.end

    def overlaps(self, start: time, end: time) -> bool:
        return self.start < end and start < self.end

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TimeWindow":
        if not isinstance(payload, Mapping):
            raise ScheduleError("invalid_window")
        return cls(parse_clock(payload.get("start")), parse_clock(payload.get("end")))

    def to_dict(self) -> dict[str, str]:
        return {"start": format_clock(self.start), "end": format_clock(self.end)}


@dataclass(frozen=True)
class DaySchedule:
    enabled: bool
    windows: tuple[TimeWindow, ...] = ()

    def __post_init__(self) -> None:
        if not self.enabled and self.windows:
            raise ScheduleError("disabled_day_has_windows")
        for earlier, later in zip(self.windows, self.windows[1:]):
            if later.start < earlier.end:
                raise ScheduleError("windows_overlap_or_unsorted")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "DaySchedule":
        if not payload:
            return CLOSED_DAY
        if not isinstance(payload, Mapping):
            raise ScheduleError("invalid_day")
        enabled = bool(payload.get("enabled"))
        raw_windows = payload.get("slots") or []
        if not isinstance(raw_windows, (list, tuple)):
            raise ScheduleError("invalid_slots")
        windows = sorted((TimeWindow.from_dict(item) for item in raw_windows), key=lambda w: w.start)
        # A closed day keeps no windows, whatever the client sent.
        if not enabled:
            windows = []
        return cls(enabled, tuple(windows))

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "slots": [w.to_dict() for w in self.windows]}


CLOSED_DAY = DaySchedule(False)


@dataclass(frozen=True)
class WeeklyTemplate:
    doctor_id: str
    timezone: str
    days: Mapping[str, DaySchedule] = field(default_factory=dict)

    def __post_init__(self) -> None:
        resolve_zone(self.timezone)
        unknown = set(self.days) - set(WEEKDAYS)
        if unknown:
            raise ScheduleError(f"unknown_weekday:{sorted(unknown)[0]}")
        normalized = {name: self.days.get(name, CLOSED_DAY) for name in WEEKDAYS}
        object.__setattr__(self, "days", normalized)

    @property
    def zone(self) -> ZoneInfo:
        return resolve_zone(self.timezone)

    def day(self, weekday: str) -> DaySchedule:
        return self.days[weekday]

    @classmethod
    def default(cls, doctor_id: str, timezone: str = "UTC") -> "WeeklyTemplate":
        open_day = DaySchedule(True, (TimeWindow(*DEFAULT_OPEN),))
        return cls(doctor_id, timezone, {name: open_day for name in DEFAULT_OPEN_DAYS})

    @classmethod
    def from_dict(cls, doctor_id: str, timezone: str, payload: Mapping[str, Any]) -> "WeeklyTemplate":
        if not isinstance(payload, Mapping):
            raise ScheduleError("invalid_schedule")
        days = {str(name).lower(): DaySchedule.from_dict(day) for name, day in payload.items()}
        return cls(doctor_id, timezone, days)

    def to_dict(self) -> dict[str, Any]:
        return {name: self.days[name].to_dict() for name in WEEKDAYS}


@dataclass(frozen=True)
class BlockedDate:
    """A calendar date (in the doctor's zone) removed from availability."""

    id: str
    doctor_id: str
    day: date
    window: TimeWindow | None = None
    reason: str | None = None

    @property
    def full_day(self) -> bool:
        return self.window is None

    def blocks_moment(self, moment: time) -> bool:
        return self.full_day or self.window.contains(moment)  # type: ignore[union-attr]

    def blocks_range(self, start: time, end: time) -> bool:
        return self.full_day or self.window.overlaps(start, end)  # type: ignore[union-attr]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "doctor_id": self.doctor_id,
            "date": self.day.isoformat(),
            "window": self.window.to_dict() if self.window else None,
            "reason": self.reason,
        }
