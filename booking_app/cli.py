"""Flask CLI commands for migrations, doctor seeding and the status sweep."""

from __future__ import annotations

import json
from datetime import datetime

import click
from alembic import command
from flask import current_app
from flask.cli import AppGroup, with_appcontext

from booking_app.services.auto_migrate import alembic_config
from booking_app.services.appointments import sweep_appointments
from booking_app.services.doctors import DoctorExists, create_doctor
from booking_app.services.schedule import ScheduleError


def register_cli(app) -> None:
    db_group = AppGroup("db")

    @db_group.command("upgrade")
    @with_appcontext
    def upgrade() -> None:
        cfg = alembic_config(current_app)
        if cfg is None:
            raise click.ClickException("alembic.ini or migrations/ not found next to the package.")
        command.upgrade(cfg, "head")

    app.cli.add_command(db_group)

    @app.cli.command("seed-doctor")
    @click.option("--name", "full_name", required=True, help="Doctor's display name")
    @click.option("--timezone", "timezone_name", default=None, help="IANA zone, e.g. America/New_York")
    @click.option("--id", "doctor_id", default=None, help="Fixed id (defaults to a new UUID)")
    @with_appcontext
    def seed_doctor(full_name: str, timezone_name: str | None, doctor_id: str | None) -> None:
        try:
            doctor = create_doctor(full_name, timezone_name, doctor_id=doctor_id)
        except DoctorExists:
            raise click.ClickException(f"Doctor '{doctor_id}' already exists.")
        except ScheduleError as exc:
            raise click.ClickException(str(exc))
        click.echo(json.dumps(doctor))

    @app.cli.command("sweep-appointments")
    @click.option(
        "--now",
        "now_text",
        default=None,
        help="Evaluate as of this ISO-8601 instant (with offset) instead of the clock.",
    )
    @with_appcontext
    def sweep(now_text: str | None) -> None:
        """Cancel expired pending holds and complete confirmed visits that ended."""
        now = None
        if now_text:
            try:
                now = datetime.fromisoformat(now_text)
            except ValueError:
                raise click.BadParameter("expected ISO-8601", param_hint="--now")
            if now.tzinfo is None:
                raise click.BadParameter("must include a UTC offset", param_hint="--now")
        counts = sweep_appointments(now=now)
        click.echo(f"Cancelled {counts['cancelled']} expired pending, completed {counts['completed']}.")
