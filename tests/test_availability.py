from datetime import date, datetime, time, timezone

import pytest

from booking_app.services.availability import (
    available_slots,
    check_instant,
    check_interval,
    is_available,
)
from booking_app.services.booking import reserve
from booking_app.services.doctors import DoctorNotFound, add_blocked_date, create_doctor, save_template
from booking_app.services.schedule import BlockedDate, TimeWindow, WeeklyTemplate

from conftest import DOCTOR_ID, at


def test_instant_inside_window_is_available():
    template = WeeklyTemplate.default("dr-1")
    assert check_instant(template, [], at(3, 9)).available
    assert check_instant(template, [], at(3, 16, 59)).available


def test_window_end_is_exclusive():
    template = WeeklyTemplate.default("dr-1")
    result = check_instant(template, [], at(3, 17))
    assert not result.available
    assert result.day_enabled


def test_disabled_weekday_is_unavailable():
    template = WeeklyTemplate.default("dr-1")
    result = check_instant(template, [], at(8, 10))  # Saturday
    assert result.weekday == "saturday"
    assert not result.day_enabled
    assert not result.available


def test_instant_is_read_in_doctor_zone():
    template = WeeklyTemplate.default("dr-ny", "America/New_York")
    # EST (UTC-5) on Friday 7 March, EDT (UTC-4) from Sunday 9 March.
    assert not check_instant(template, [], at(7, 13, 30)).available
    assert check_instant(template, [], at(7, 14)).available
    assert check_instant(template, [], at(10, 13)).available
    assert not check_instant(template, [], at(10, 21)).available


def test_full_day_block_wins_over_open_window():
    template = WeeklyTemplate.default("dr-1")
    blocked = [BlockedDate("b1", "dr-1", date(2025, 3, 4))]
    result = check_instant(template, blocked, at(4, 11))
    assert result.blocked is blocked[0]
    assert not result.available


def test_interval_must_fit_a_single_window():
    template = WeeklyTemplate.default("dr-1")
    assert check_interval(template, [], at(3, 16, 30), 30).available
    assert not check_interval(template, [], at(3, 16, 31), 30).available
    assert not check_interval(template, [], at(3, 8, 45), 30).available


def test_interval_touching_windowed_block_is_available():
    template = WeeklyTemplate.default("dr-1")
    lunch = [BlockedDate("b1", "dr-1", date(2025, 3, 3), TimeWindow(time(12), time(13)))]
    assert check_interval(template, lunch, at(3, 11, 30), 30).available
    assert not check_interval(template, lunch, at(3, 11, 45), 30).available
    assert check_interval(template, lunch, at(3, 13), 30).available


def test_interval_split_across_windows_is_rejected():
    template = WeeklyTemplate.from_dict(
        "dr-1",
        "UTC",
        {"monday": {"enabled": True, "slots": [{"start": "09:00", "end": "12:00"}, {"start": "12:00", "end": "15:00"}]}},
    )
    assert check_interval(template, [], at(3, 11, 30), 30).available
    assert not check_interval(template, [], at(3, 11, 45), 30).available


def test_is_available_loads_template(doctor):
    assert is_available(DOCTOR_ID, at(3, 9))
    assert not is_available(DOCTOR_ID, at(9, 9))  # Sunday


def test_is_available_unknown_doctor(app_ctx):
    with pytest.raises(DoctorNotFound):
        is_available("nobody", at(3, 9))


def test_slots_cover_the_default_day(doctor):
    slots = list(available_slots(DOCTOR_ID, date(2025, 3, 3), date(2025, 3, 3)))
    assert len(slots) == 16
    assert slots[0].start == at(3, 9)
    assert slots[-1].end == at(3, 17)


def test_slots_skip_weekend_and_past(doctor, clock):
    clock.now = at(3, 12, 10)
    slots = list(available_slots(DOCTOR_ID, date(2025, 3, 3), date(2025, 3, 9)))
    monday = [s for s in slots if s.start.date() == date(2025, 3, 3)]
    assert monday[0].start == at(3, 12, 30)
    assert not [s for s in slots if s.start.weekday() >= 5]
    assert len(slots) == 9 + 16 * 4


def test_slots_respect_duration(doctor):
    slots = list(available_slots(DOCTOR_ID, date(2025, 3, 3), date(2025, 3, 3), 60))
    assert len(slots) == 15
    assert all(s.duration_minutes == 60 for s in slots)


def test_slots_iteration_is_restartable_and_fresh(doctor):
    slots = available_slots(DOCTOR_ID, date(2025, 3, 3), date(2025, 3, 3))
    first = list(slots)
    assert list(slots) == first

    reserve(DOCTOR_ID, "patient-1", at(3, 10), 30)
    after = list(slots)
    assert len(after) == len(first) - 1
    assert at(3, 10) not in {s.start for s in after}


def test_slots_drop_blocked_time(doctor):
    add_blocked_date(DOCTOR_ID, date(2025, 3, 3), TimeWindow(time(12), time(13)))
    add_blocked_date(DOCTOR_ID, date(2025, 3, 4))
    slots = list(available_slots(DOCTOR_ID, date(2025, 3, 3), date(2025, 3, 4)))
    starts = {s.start for s in slots}
    assert len(slots) == 14
    assert at(3, 11, 30) in starts
    assert at(3, 12) not in starts and at(3, 12, 30) not in starts
    assert at(3, 13) in starts


def test_slots_follow_dst_change(app_ctx):
    create_doctor("Dr. Lee", "America/New_York", doctor_id="dr-ny")
    friday = list(available_slots("dr-ny", date(2025, 3, 7), date(2025, 3, 7)))
    monday = list(available_slots("dr-ny", date(2025, 3, 10), date(2025, 3, 10)))
    assert friday[0].start == datetime(2025, 3, 7, 14, 0, tzinfo=timezone.utc)
    assert monday[0].start == datetime(2025, 3, 10, 13, 0, tzinfo=timezone.utc)


def test_slots_reflect_updated_template(doctor):
    save_template(DOCTOR_ID, {"saturday": {"enabled": True, "slots": [{"start": "10:00", "end": "11:00"}]}})
    monday = list(available_slots(DOCTOR_ID, date(2025, 3, 3), date(2025, 3, 3)))
    saturday = list(available_slots(DOCTOR_ID, date(2025, 3, 8), date(2025, 3, 8)))
    assert monday == []
    assert [s.start for s in saturday] == [at(8, 10), at(8, 10, 30)]


def test_slot_range_arguments_are_checked(doctor):
    with pytest.raises(ValueError):
        available_slots(DOCTOR_ID, date(2025, 3, 4), date(2025, 3, 3))
    with pytest.raises(ValueError):
        available_slots(DOCTOR_ID, date(2025, 3, 3), date(2025, 3, 3), 500)


def test_block_on_repeated_fall_back_hour_covers_both_passes():
    # 2 November 2025: New York clocks go from 02:00 EDT back to 01:00 EST.
    template = WeeklyTemplate.from_dict(
        "dr-ny",
        "America/New_York",
        {"sunday": {"enabled": True, "slots": [{"start": "00:00", "end": "04:00"}]}},
    )
    blocked = [BlockedDate("b1", "dr-ny", date(2025, 11, 2), TimeWindow(time(1), time(2)))]

    first_pass = check_interval(template, blocked, datetime(2025, 11, 2, 5, 30, tzinfo=timezone.utc), 30)
    assert first_pass.blocked is blocked[0]
    assert not first_pass.available

    second_pass = check_interval(template, blocked, datetime(2025, 11, 2, 6, 30, tzinfo=timezone.utc), 30)
    assert not second_pass.available

    # 03:00 EST, after the block.
    assert check_interval(template, blocked, datetime(2025, 11, 2, 8, 0, tzinfo=timezone.utc), 30).available


def test_zero_duration_slots_are_refused(doctor):
    with pytest.raises(ValueError):
        available_slots(DOCTOR_ID, date(2025, 3, 3), date(2025, 3, 3), 0)
