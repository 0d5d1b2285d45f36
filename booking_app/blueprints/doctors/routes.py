"""Doctor registration, weekly availability and calendar slots."""

from __future__ import annotations

from datetime import date, timedelta

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import BadRequest

from booking_app.forms.booking import BlockedDateForm, DoctorForm
from booking_app.services.availability import available_slots
from booking_app.services.doctors import (
    BlockedDateNotFound,
    DoctorExists,
    DoctorNotFound,
    add_blocked_date,
    create_doctor,
    delete_blocked_date,
    get_blocked_dates,
    get_doctor,
    get_template,
    save_template,
)
from booking_app.services.schedule import ScheduleError, TimeWindow, parse_clock

bp = Blueprint("doctors", __name__, url_prefix="/doctors")

MAX_SLOT_RANGE_DAYS = 31


def _actor_id() -> str | None:
    return request.headers.get("X-Actor-Id") or None


def _doctor_missing():
    return jsonify({"success": False, "error": "Doctor not found."}), 404


def _availability_payload(doctor_id: str) -> dict:
    template = get_template(doctor_id)
    return {
        "doctor_id": doctor_id,
        "timezone": template.timezone,
        "schedule": template.to_dict(),
        "blocked_dates": [b.to_dict() for b in get_blocked_dates(doctor_id)],
    }


@bp.route("", methods=["POST"])
def register():
    form = DoctorForm()
    if not form.validate_on_submit():
        return jsonify({"success": False, "errors": form.errors}), 400
    try:
        doctor = create_doctor(form.full_name.data, form.timezone.data, actor_id=_actor_id())
    except DoctorExists:
        return jsonify({"success": False, "error": "Doctor already exists."}), 409
    except ScheduleError as exc:
        return jsonify({"success": False, "error": str(exc)}), 400
    return jsonify({"success": True, "doctor": doctor}), 201


@bp.route("/<doctor_id>", methods=["GET"])
def detail(doctor_id: str):
    try:
        return jsonify({"success": True, "doctor": get_doctor(doctor_id)})
    except DoctorNotFound:
        return _doctor_missing()


@bp.route("/<doctor_id>/availability", methods=["GET"])
def availability(doctor_id: str):
    try:
        return jsonify({"success": True, "availability": _availability_payload(doctor_id)})
    except DoctorNotFound:
        return _doctor_missing()


@bp.route("/<doctor_id>/availability", methods=["PUT"])
def update_availability(doctor_id: str):
    payload = request.get_json(silent=True) or {}
    schedule = payload.get("schedule")
    if not isinstance(schedule, dict):
        raise BadRequest("Missing required field: schedule")
    try:
        save_template(doctor_id, schedule, timezone_name=payload.get("timezone"), actor_id=_actor_id())
        return jsonify({"success": True, "availability": _availability_payload(doctor_id)})
    except DoctorNotFound:
        return _doctor_missing()
    except ScheduleError as exc:
        return jsonify({"success": False, "error": str(exc)}), 400


@bp.route("/<doctor_id>/blocked-dates", methods=["POST"])
def block_date(doctor_id: str):
    form = BlockedDateForm()
    if not form.validate_on_submit():
        return jsonify({"success": False, "errors": form.errors}), 400
    try:
        window = None
        if form.start_time.data:
            window = TimeWindow(parse_clock(form.start_time.data), parse_clock(form.end_time.data))
        blocked = add_blocked_date(doctor_id, form.day, window, reason=form.reason.data, actor_id=_actor_id())
    except DoctorNotFound:
        return _doctor_missing()
    except ScheduleError as exc:
        return jsonify({"success": False, "error": str(exc)}), 400
    return jsonify({"success": True, "blocked_date": blocked.to_dict()}), 201


@bp.route("/<doctor_id>/blocked-dates/<blocked_id>", methods=["DELETE"])
def unblock_date(doctor_id: str, blocked_id: str):
    try:
        delete_blocked_date(doctor_id, blocked_id, actor_id=_actor_id())
    except BlockedDateNotFound:
        return jsonify({"success": False, "error": "Blocked date not found."}), 404
    return jsonify({"success": True})


def _parse_day(name: str, fallback: date | None = None) -> date:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        if fallback is None:
            raise BadRequest(f"Missing query parameter: {name}")
        return fallback
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise BadRequest(f"{name} must be YYYY-MM-DD") from exc


@bp.route("/<doctor_id>/slots", methods=["GET"])
def slots(doctor_id: str):
    start_day = _parse_day("start")
    end_day = _parse_day("end", fallback=start_day)
    if end_day < start_day or (end_day - start_day) > timedelta(days=MAX_SLOT_RANGE_DAYS):
        raise BadRequest(f"Date range must be 0-{MAX_SLOT_RANGE_DAYS} days")
    duration = request.args.get("duration", type=int)
    try:
        intervals = available_slots(doctor_id, start_day, end_day, duration)
        return jsonify({"success": True, "slots": [slot.to_dict() for slot in intervals]})
    except DoctorNotFound:
        return _doctor_missing()
    except ValueError as exc:
        raise BadRequest(str(exc)) from exc
