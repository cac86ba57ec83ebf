"""
Application logging setup.

Configures Flask's ``app.logger`` from the monitoring config: JSON or text
formatting, an optional rotating file handler, and an optional console
handler. Values passed through ``extra=`` (``importer_log_id`` and friends)
are carried into JSON output.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import has_request_context, request

_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys() | {"message", "asctime"}
)

TEXT_FORMAT = "[%(asctime)s] %(levelname)s in %(module)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request"] = {"method": request.method, "path": request.path}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(log_format: str) -> logging.Formatter:
    if (log_format or "").lower() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(app) -> None:
    """Attach handlers to ``app.logger`` according to configuration."""

    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(app.config.get("LOG_FORMAT", "text"))

    # Re-running setup (tests reconfigure per app) must not stack handlers.
    for handler in list(app.logger.handlers):
        if getattr(handler, "_civic_handler", False):
            app.logger.removeHandler(handler)
            handler.close()

    app.logger.setLevel(level)

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(level)
        console_handler._civic_handler = True  # type: ignore[attr-defined]
        app.logger.addHandler(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, "application.log"),
                maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
            )
        except OSError as exc:
            app.logger.warning("File logging disabled; could not open %s: %s", log_dir, exc)
        else:
            file_handler.setFormatter(formatter)
            file_handler.setLevel(level)
            file_handler._civic_handler = True  # type: ignore[attr-defined]
            app.logger.addHandler(file_handler)

    # Keep SQLAlchemy quiet unless echo was requested explicitly.
    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
