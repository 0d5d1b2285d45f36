"""Error logging for unexpected failures inside request handlers."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import traceback

from flask import current_app, request


def record_exception(context: str, exc: BaseException) -> None:
    """Log ``exc`` through the app logger and append it to ``BOOKING_ERROR_LOG`` when set."""

    current_app.logger.error("%s failed: %s", context, exc, exc_info=exc)
    log_file = current_app.config.get("BOOKING_ERROR_LOG")
    if not log_file:
        return
    try:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{datetime.now(timezone.utc).isoformat()}] {context} {request.method} {request.path}\n")
            handle.write("".join(traceback.format_exception(exc)))
            handle.write("\n")
    except OSError as log_exc:
        current_app.logger.warning("Could not write error log %s: %s", log_file, log_exc)
