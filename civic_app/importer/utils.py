"""
Importer-specific utilities for handling uploaded workbooks and cleanup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable
from uuid import uuid4

from flask import current_app
from werkzeug.utils import secure_filename

from civic_app.importer.adapters import XLSX_EXTENSIONS

DEFAULT_UPLOAD_SUBDIR = "import_uploads"
XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _normalize_upload_dir(
    configured_path: str | None,
    instance_path: str,
    *,
    default_subdir: str,
) -> Path:
    if not configured_path:
        return Path(instance_path) / default_subdir

    candidate = Path(configured_path)
    if candidate.is_absolute():
        return candidate

    return Path(instance_path) / candidate


def resolve_upload_directory(app) -> Path:
    """
    Determine and create (if necessary) the importer upload directory.
    """

    upload_dir = _normalize_upload_dir(
        app.config.get("IMPORTER_UPLOAD_DIR"),
        app.instance_path,
        default_subdir=DEFAULT_UPLOAD_SUBDIR,
    )
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


def allowed_file(filename: str, allowed_extensions: Iterable[str] = XLSX_EXTENSIONS) -> bool:
    """
    Validate the uploaded filename extension against the allowed set.
    """

    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in {ext.lower() for ext in allowed_extensions}


def _target_path(app, filename: str | None) -> Path:
    upload_dir = resolve_upload_directory(app)
    original_name = secure_filename(filename or "")
    extension = Path(original_name).suffix if original_name else ""
    if not extension:
        extension = ".xlsx"
    return upload_dir / f"{uuid4().hex}{extension}"


def persist_bytes(content: bytes, app, *, filename: str | None = None) -> Path:
    """Write raw workbook bytes to the upload directory (CLI and service callers)."""

    target_path = _target_path(app, filename)
    target_path.write_bytes(content)
    current_app.logger.debug("Importer upload persisted to %s", target_path)
    return target_path


def cleanup_upload(path: Path) -> None:
    """
    Remove a stored upload, logging but ignoring filesystem errors.
    """

    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        current_app.logger.warning("Failed to remove importer upload %s: %s", path, exc)
