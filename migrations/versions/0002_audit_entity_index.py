"""Index audit rows by entity for appointment history lookups."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "0002_audit_entity_index"
down_revision = "0001_booking_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if "audit_log" not in inspector.get_table_names():
        return
    existing_indices = {idx["name"] for idx in inspector.get_indexes("audit_log")}
    if "idx_audit_entity" not in existing_indices:
        op.create_index("idx_audit_entity", "audit_log", ["entity_id", "ts"])


def downgrade() -> None:
    op.drop_index("idx_audit_entity", "audit_log")
