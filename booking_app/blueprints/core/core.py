"""Service-level endpoints: CSRF token issue and health check."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_wtf.csrf import generate_csrf

from booking_app.services.database import StoreUnavailable, db, store_guard

bp = Blueprint("core", __name__)


@bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Issue a token for the ``X-CSRFToken`` header of state-changing calls."""
    return jsonify({"csrf_token": generate_csrf()})


@bp.route("/healthz", methods=["GET"])
def healthz():
    conn = None
    try:
        with store_guard("healthz"):
            conn = db()
            conn.execute("SELECT 1").fetchone()
    except StoreUnavailable:
        return jsonify({"ok": False, "store": "unavailable"}), 503
    finally:
        if conn is not None:
            conn.close()
    return jsonify({"ok": True})
