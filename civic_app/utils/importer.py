"""
Utility helpers for importer feature flag checks.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_importer_enabled(app=None) -> bool:
    """Return True when the importer feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_ENABLED", False))


def is_worker_enabled(app=None) -> bool:
    """Return True when imports should be dispatched to the Celery worker."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_WORKER_ENABLED", False))


def get_row_timeout(app=None) -> float | None:
    """Seconds allowed for resolving one row, or ``None`` to run rows inline."""
    config = _get_config(app)
    value = config.get("IMPORTER_ROW_TIMEOUT_SECONDS")
    if value in (None, "", 0):
        return None
    return float(value)
