"""Request forms for booking and doctor availability endpoints.

The API accepts JSON bodies; Flask-WTF feeds them to these forms the same
way it feeds HTML form posts.
"""

from __future__ import annotations

from datetime import date, datetime

from flask_wtf import FlaskForm
from wtforms import IntegerField, StringField
from wtforms.validators import DataRequired, Length, Optional, ValidationError


class InstantField(StringField):
    """ISO-8601 timestamp that must carry a UTC offset."""

    instant: datetime | None = None

    def process_formdata(self, valuelist):
        super().process_formdata(valuelist)
        self.instant = None
        if not self.data:
            return
        try:
            value = datetime.fromisoformat(str(self.data).strip().replace("Z", "+00:00"))
        except ValueError:
            value = None
        if value is None or value.tzinfo is None:
            raise ValueError("Use an ISO-8601 timestamp with a UTC offset, e.g. 2025-03-03T09:00:00+00:00.")
        self.instant = value


class BookingForm(FlaskForm):
    doctor_id = StringField("Doctor", validators=[DataRequired(), Length(max=64)])
    patient_id = StringField("Patient", validators=[DataRequired(), Length(max=64)])
    starts_at = InstantField("Start", validators=[DataRequired()])
    duration_minutes = IntegerField("Duration (minutes)", validators=[Optional()])


class ValidateForm(FlaskForm):
    doctor_id = StringField("Doctor", validators=[DataRequired(), Length(max=64)])
    starts_at = InstantField("Start", validators=[DataRequired()])
    duration_minutes = IntegerField("Duration (minutes)", validators=[Optional()])
    exclude_appointment_id = StringField("Appointment being edited", validators=[Optional(), Length(max=64)])


class RescheduleForm(FlaskForm):
    starts_at = InstantField("New start", validators=[DataRequired()])


class DoctorForm(FlaskForm):
    full_name = StringField("Full name", validators=[DataRequired(), Length(max=200)])
    timezone = StringField("Time zone", validators=[Optional(), Length(max=64)])


class BlockedDateForm(FlaskForm):
    date = StringField("Date", validators=[DataRequired()])
    start_time = StringField("From", validators=[Optional(), Length(max=5)])
    end_time = StringField("Until", validators=[Optional(), Length(max=5)])
    reason = StringField("Reason", validators=[Optional(), Length(max=200)])

    day: date | None = None

    def validate_date(self, field):
        try:
            self.day = date.fromisoformat(str(field.data).strip())
        except ValueError as exc:
            raise ValidationError("Use YYYY-MM-DD.") from exc

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators=extra_validators):
            return False
        if bool(self.start_time.data) != bool(self.end_time.data):
            self.end_time.errors.append("Give both start_time and end_time, or neither.")
            return False
        return True
