"""Append-only audit logging for booking events."""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Mapping

import sqlalchemy as sa

from booking_app.extensions import db
from booking_app.services.policy import current_time

SENSITIVE_KEYS = {"notes", "note", "reason_text", "patient_email"}

_INSERT_SQL = """
    INSERT INTO audit_log(actor_id, action, entity, entity_id, ts, result, meta_json)
    VALUES (:actor_id, :action, :entity, :entity_id, :ts, :result, :meta)
"""


def _sanitize_meta(meta: Mapping[str, Any] | None) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    if not meta:
        return cleaned
    for key, value in meta.items():
        if key.lower() in SENSITIVE_KEYS:
            cleaned[key] = "[redacted]"
        else:
            cleaned[key] = value
    return cleaned


def write_event(
    actor_id: str | None,
    action: str,
    *,
    entity: str | None = None,
    entity_id: str | None = None,
    result: str = "ok",
    meta: Mapping[str, Any] | None = None,
    conn: sqlite3.Connection | None = None,
) -> None:
    """Record an audit row.

    Pass ``conn`` to write inside a caller's open transaction so the event
    commits or rolls back together with the change it describes.
    """

    params = {
        "actor_id": actor_id,
        "action": action,
        "entity": entity,
        "entity_id": entity_id,
        "ts": current_time().isoformat(),
        "result": result,
        "meta": json.dumps(_sanitize_meta(meta), ensure_ascii=False, default=str),
    }
    if conn is not None:
        conn.execute(_INSERT_SQL, params)
        return

    with db.engine.begin() as connection:
        connection.execute(sa.text(_INSERT_SQL), params)


def recent_events(entity_id: str, limit: int = 50) -> list[dict[str, Any]]:
    with db.engine.connect() as connection:
        rows = connection.execute(
            sa.text(
                """
                SELECT actor_id, action, entity, entity_id, ts, result, meta_json
                FROM audit_log
                WHERE entity_id = :entity_id
                ORDER BY id DESC
                LIMIT :limit
                """
            ),
            {"entity_id": entity_id, "limit": limit},
        ).mappings().all()
    return [{**dict(row), "meta": json.loads(row["meta_json"] or "{}")} for row in rows]
