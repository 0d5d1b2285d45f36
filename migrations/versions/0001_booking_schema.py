"""Doctors, weekly templates, blocked dates, appointments and audit log."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "0001_booking_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    existing = set(sa.inspect(bind).get_table_names())

    if "doctors" not in existing:
        op.create_table(
            "doctors",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("full_name", sa.Text(), nullable=False),
            sa.Column("timezone", sa.Text(), server_default="UTC", nullable=False),
            sa.Column("created_at", sa.Text(), nullable=False),
        )

    if "weekly_templates" not in existing:
        op.create_table(
            "weekly_templates",
            sa.Column("doctor_id", sa.Text(), primary_key=True),
            sa.Column("schedule_json", sa.Text(), nullable=False),
            sa.Column("updated_at", sa.Text(), nullable=False),
            sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
        )

    if "blocked_dates" not in existing:
        op.create_table(
            "blocked_dates",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("doctor_id", sa.Text(), nullable=False),
            sa.Column("blocked_on", sa.Text(), nullable=False),
            sa.Column("start_time", sa.Text(), nullable=True),
            sa.Column("end_time", sa.Text(), nullable=True),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("created_at", sa.Text(), nullable=False),
            sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
            sa.CheckConstraint(
                "(start_time IS NULL) = (end_time IS NULL)",
                name="ck_blocked_dates_window",
            ),
        )
        op.create_index("idx_blocked_dates_doctor_day", "blocked_dates", ["doctor_id", "blocked_on"])

    if "appointments" not in existing:
        op.create_table(
            "appointments",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("doctor_id", sa.Text(), nullable=False),
            sa.Column("patient_id", sa.Text(), nullable=False),
            sa.Column("starts_at", sa.Text(), nullable=False),
            sa.Column("duration_minutes", sa.Integer(), nullable=False),
            sa.Column("status", sa.Text(), server_default="pending", nullable=False),
            sa.Column("created_at", sa.Text(), nullable=False),
            sa.Column("updated_at", sa.Text(), nullable=False),
            sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
            sa.CheckConstraint("duration_minutes > 0", name="ck_appointments_duration"),
            sa.CheckConstraint(
                "status IN ('pending','confirmed','completed','cancelled')",
                name="ck_appointments_status",
            ),
        )
        # Not unique: overlap is enforced by the reservation transaction, not the index.
        op.create_index("idx_appointments_doctor_start", "appointments", ["doctor_id", "starts_at"])
        op.create_index("idx_appointments_status", "appointments", ["status"])

    if "audit_log" not in existing:
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("actor_id", sa.Text(), nullable=True),
            sa.Column("action", sa.Text(), nullable=False),
            sa.Column("entity", sa.Text(), nullable=True),
            sa.Column("entity_id", sa.Text(), nullable=True),
            sa.Column("ts", sa.Text(), nullable=False),
            sa.Column("result", sa.Text(), server_default="ok", nullable=False),
            sa.Column("meta_json", sa.Text(), server_default="{}", nullable=False),
        )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_index("idx_appointments_status", "appointments")
    op.drop_index("idx_appointments_doctor_start", "appointments")
    op.drop_table("appointments")
    op.drop_index("idx_blocked_dates_doctor_day", "blocked_dates")
    op.drop_table("blocked_dates")
    op.drop_table("weekly_templates")
    op.drop_table("doctors")
