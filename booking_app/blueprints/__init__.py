"""Blueprint registration."""

from __future__ import annotations

from flask import Flask

from .appointments.routes import bp as appointments_bp
from .core.core import bp as core_bp
from .doctors.routes import bp as doctors_bp


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(core_bp)
    app.register_blueprint(doctors_bp)
    app.register_blueprint(appointments_bp)
