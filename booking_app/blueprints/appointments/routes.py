from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import BadRequest

from booking_app.extensions import limiter
from booking_app.forms.booking import BookingForm, RescheduleForm, ValidateForm
from booking_app.services.appointments import (
    CANCELLED,
    CONFIRMED,
    AppointmentError,
    AppointmentNotFound,
    InvalidTransition,
    get_appointment,
    list_appointments,
    transition_status,
)
from booking_app.services.audit import recent_events, write_event
from booking_app.services.booking import (
    BookingDecision,
    RejectionReason,
    reschedule_with_decision,
    reserve_with_decision,
    validate,
)
from booking_app.services.doctors import DoctorNotFound
from booking_app.services.policy import BookingPolicy

bp = Blueprint("appointments", __name__, url_prefix="/appointments")


def _actor_id() -> str | None:
    # Set by the authenticating gateway in front of this service.
    return request.headers.get("X-Actor-Id") or None


def _rate_limit() -> str:
    return current_app.config.get("BOOKING_RATE_LIMIT", "30 per minute")


def _duration(field) -> int:
    if field.data is None:
        return BookingPolicy.from_config().default_duration_minutes
    return int(field.data)


def _rejection(decision: BookingDecision):
    status = 409 if decision.reason is RejectionReason.SLOT_TAKEN else 422
    return (
        jsonify(
            {
                "success": False,
                "reason": decision.reason.value,  # type: ignore[union-attr]
                "error": decision.message,
                "detail": dict(decision.detail),
            }
        ),
        status,
    )


def _not_found(what: str):
    return jsonify({"success": False, "error": f"{what} not found."}), 404


@bp.route("/validate", methods=["POST"])
def validate_booking():
    form = ValidateForm()
    if not form.validate_on_submit():
        return jsonify({"success": False, "errors": form.errors}), 400
    try:
        decision = validate(
            form.doctor_id.data,
            form.starts_at.instant,
            _duration(form.duration_minutes),
            exclude_appointment_id=form.exclude_appointment_id.data or None,
        )
    except DoctorNotFound:
        return _not_found("Doctor")
    return jsonify({"success": True, "decision": decision.to_dict()})


@bp.route("", methods=["POST"])
@limiter.limit(_rate_limit)
def create():
    form = BookingForm()
    if not form.validate_on_submit():
        return jsonify({"success": False, "errors": form.errors}), 400
    actor = _actor_id()
    try:
        result = reserve_with_decision(
            form.doctor_id.data,
            form.patient_id.data,
            form.starts_at.instant,
            _duration(form.duration_minutes),
            actor_id=actor,
        )
    except DoctorNotFound:
        return _not_found("Doctor")

    if isinstance(result, BookingDecision):
        write_event(
            actor,
            "appointment_reserve",
            entity="doctor",
            entity_id=form.doctor_id.data,
            result="rejected",
            meta={"reason": result.reason.value, "starts_at": form.starts_at.data},
        )
        return _rejection(result)
    return jsonify({"success": True, "appointment": result.to_dict()}), 201


def _instant_arg(name: str) -> datetime | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise BadRequest(f"{name} must be an ISO-8601 timestamp") from exc
    if value.tzinfo is None:
        raise BadRequest(f"{name} must include a UTC offset")
    return value


@bp.route("", methods=["GET"])
def index():
    """List appointments filtered by doctor, patient, status and start range."""
    try:
        appointments = list_appointments(
            doctor_id=request.args.get("doctor_id") or None,
            patient_id=request.args.get("patient_id") or None,
            status=request.args.get("status") or None,
            start=_instant_arg("from"),
            end=_instant_arg("to"),
        )
    except ValueError as exc:
        raise BadRequest(str(exc)) from exc
    return jsonify({"success": True, "appointments": [a.to_dict() for a in appointments]})


@bp.route("/<appt_id>", methods=["GET"])
def detail(appt_id: str):
    try:
        appointment = get_appointment(appt_id)
    except AppointmentNotFound:
        return _not_found("Appointment")
    return jsonify({"success": True, "appointment": appointment.to_dict()})


@bp.route("/<appt_id>/history", methods=["GET"])
def history(appt_id: str):
    try:
        get_appointment(appt_id)
    except AppointmentNotFound:
        return _not_found("Appointment")
    return jsonify({"success": True, "events": recent_events(appt_id)})


@bp.route("/<appt_id>/reschedule", methods=["POST"])
def reschedule_appointment(appt_id: str):
    form = RescheduleForm()
    if not form.validate_on_submit():
        return jsonify({"success": False, "errors": form.errors}), 400
    try:
        result = reschedule_with_decision(appt_id, form.starts_at.instant, actor_id=_actor_id())
    except AppointmentNotFound:
        return _not_found("Appointment")
    except AppointmentError as exc:
        return jsonify({"success": False, "error": str(exc)}), 400
    if isinstance(result, BookingDecision):
        return _rejection(result)
    return jsonify({"success": True, "appointment": result.to_dict()})


def _transition(appt_id: str, status: str):
    try:
        appointment = transition_status(appt_id, status, actor_id=_actor_id())
    except AppointmentNotFound:
        return _not_found("Appointment")
    except InvalidTransition as exc:
        if str(exc) == "pending_expired":
            return (
                jsonify({"success": False, "error": "The booking hold expired before payment settled."}),
                409,
            )
        return jsonify({"success": False, "error": f"invalid_transition:{exc}"}), 400
    return jsonify({"success": True, "appointment": appointment.to_dict()})


@bp.route("/<appt_id>/cancel", methods=["POST"])
def cancel(appt_id: str):
    return _transition(appt_id, CANCELLED)


@bp.route("/<appt_id>/confirm", methods=["POST"])
def confirm(appt_id: str):
    """Payment settlement notification: the hold becomes a confirmed booking."""
    return _transition(appt_id, CONFIRMED)
