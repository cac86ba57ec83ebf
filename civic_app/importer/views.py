"""
Importer blueprint: JSON endpoints for politician imports, import logs, and
position history.
"""

from __future__ import annotations

import time
from datetime import date
from http import HTTPStatus
from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file
from sqlalchemy.exc import NoResultFound

from config.monitoring import ImporterMonitoring
from civic_app.importer.errors import (
    ConstraintViolation,
    FieldValidationError,
    MalformedFile,
    TransientStoreError,
)
from civic_app.importer.pipeline.import_log import ImportLogFilters
from civic_app.importer.pipeline.position_history import AssignPositionRequest, coerce_ended_reason
from civic_app.importer.pipeline.service import ImportService
from civic_app.importer.utils import XLSX_MIMETYPE, allowed_file
from civic_app.models import Jurisdiction
from civic_app.utils.importer import is_importer_enabled

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")

_service = ImportService()


def _json_error(message: str, status: HTTPStatus, **extra):
    payload = {"error": message}
    payload.update(extra)
    return jsonify(payload), status


def _ensure_importer_enabled_api():
    if not is_importer_enabled(current_app):
        return _json_error("Importer is disabled.", HTTPStatus.NOT_FOUND)
    return None


def _read_upload():
    """Return ``(filename, content)`` from the multipart ``file`` field or an error response."""

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return None, _json_error("No file uploaded.", HTTPStatus.BAD_REQUEST)
    if not allowed_file(upload.filename):
        return None, _json_error("Invalid file type. Please upload an Excel (.xlsx) file.", HTTPStatus.BAD_REQUEST)
    content = upload.read()
    max_bytes = int(current_app.config.get("IMPORTER_MAX_UPLOAD_MB", 25)) * 1024 * 1024
    if len(content) > max_bytes:
        return None, _json_error("Uploaded file is too large.", HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
    return (upload.filename, content), None


def _optional_int(value, field: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise FieldValidationError(f"{field} must be an integer", field=field, value=value) from exc


def _coerce_flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _field_error(exc: FieldValidationError):
    return _json_error(exc.message, HTTPStatus.BAD_REQUEST, field=exc.field)


def _store_error(exc: Exception):
    if isinstance(exc, FieldValidationError):
        return _field_error(exc)
    if isinstance(exc, NoResultFound):
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)
    if isinstance(exc, ConstraintViolation):
        return _json_error(str(exc), HTTPStatus.CONFLICT)
    if isinstance(exc, TransientStoreError):
        return _json_error(str(exc), HTTPStatus.SERVICE_UNAVAILABLE)
    raise exc


@importer_blueprint.get("/health")
def importer_healthcheck():
    """
    Lightweight health endpoint proving the importer blueprint mounted correctly.
    """
    state = current_app.extensions.get("importer", {})
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": state.get("enabled", False),
                "worker_enabled": state.get("worker_enabled", False),
            }
        ),
        HTTPStatus.OK,
    )


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


@importer_blueprint.post("/imports/validate")
def importer_validate_upload():
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    upload, error_response = _read_upload()
    if error_response:
        ImporterMonitoring.record_validate(duration_seconds=0.0, status="invalid_request")
        return error_response

    start_time = time.perf_counter()
    try:
        result = _service.validate_import(upload[1])
    except MalformedFile as exc:
        ImporterMonitoring.record_validate(duration_seconds=time.perf_counter() - start_time, status="malformed")
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST, missing_columns=list(exc.missing_columns))

    duration = time.perf_counter() - start_time
    ImporterMonitoring.record_validate(duration_seconds=duration, status="success")
    current_app.logger.info(
        "Import file validated",
        extra={
            "importer_filename": upload[0],
            "importer_total_rows": result.total_rows,
            "importer_invalid_rows": result.invalid_rows,
            "importer_response_time_ms": round(duration * 1000, 2),
        },
    )
    return jsonify(result.as_dict()), HTTPStatus.OK


@importer_blueprint.post("/imports")
def importer_start_import():
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    upload, error_response = _read_upload()
    if error_response:
        return error_response

    try:
        election_id = _optional_int(request.form.get("election_id"), "election_id")
        uploaded_by = _optional_int(request.form.get("uploaded_by"), "uploaded_by")
    except FieldValidationError as exc:
        return _field_error(exc)

    try:
        started = _service.start_import(
            upload[1],
            upload[0],
            election_id=election_id,
            validate_only=_coerce_flag(request.form.get("validate_only")),
            uploaded_by=uploaded_by,
        )
    except NoResultFound as exc:
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)
    except RuntimeError as exc:
        return _json_error(str(exc), HTTPStatus.SERVICE_UNAVAILABLE)

    payload = started.to_dict()
    payload["import_log"] = _service.recorder.summarize(started.log).to_dict()
    status = HTTPStatus.ACCEPTED if started.queued else HTTPStatus.CREATED
    return jsonify(payload), status


@importer_blueprint.get("/imports")
def importer_list_imports():
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    try:
        filters = ImportLogFilters.coerce(
            page=request.args.get("page"),
            page_size=request.args.get("page_size"),
            statuses=request.args.getlist("status"),
            election_id=request.args.get("election_id"),
            search=request.args.get("search"),
            include_dry_runs=request.args.get("include_dry_runs"),
            default_page_size=int(current_app.config.get("IMPORTER_LOGS_PAGE_SIZE_DEFAULT", 20)),
        )
    except ValueError as exc:
        ImporterMonitoring.record_logs_list(duration_seconds=0.0, status="invalid_request")
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    start_time = time.perf_counter()
    result = _service.list_import_logs(filters)
    ImporterMonitoring.record_logs_list(duration_seconds=time.perf_counter() - start_time, status="success")
    return jsonify(result.to_dict()), HTTPStatus.OK


@importer_blueprint.get("/imports/template")
def importer_download_template():
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    return send_file(
        BytesIO(_service.generate_template()),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name="politician_import_template.xlsx",
    )


@importer_blueprint.get("/imports/<int:import_log_id>")
def importer_import_detail(import_log_id: int):
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    start_time = time.perf_counter()
    try:
        log = _service.get_import_log(import_log_id)
    except NoResultFound as exc:
        ImporterMonitoring.record_log_detail(duration_seconds=time.perf_counter() - start_time, status="not_found")
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)

    payload = _service.recorder.summarize(log).to_dict()
    payload["errors"] = list(log.validation_errors or [])
    ImporterMonitoring.record_log_detail(duration_seconds=time.perf_counter() - start_time, status="success")
    return jsonify(payload), HTTPStatus.OK


@importer_blueprint.post("/imports/<int:import_log_id>/cancel")
def importer_cancel_import(import_log_id: int):
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    try:
        log = _service.cancel_import(import_log_id)
    except NoResultFound as exc:
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)
    if log.status.is_terminal:
        return _json_error(f"Import {import_log_id} is already {log.status.value}.", HTTPStatus.CONFLICT)
    return jsonify(_service.recorder.summarize(log).to_dict()), HTTPStatus.ACCEPTED


@importer_blueprint.get("/imports/<int:import_log_id>/error-report")
def importer_error_report(import_log_id: int):
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    start_time = time.perf_counter()
    try:
        log = _service.get_import_log(import_log_id)
        content = _service.export_error_report(import_log_id)
    except NoResultFound as exc:
        ImporterMonitoring.record_error_report(
            duration_seconds=time.perf_counter() - start_time, status="not_found", row_count=0
        )
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)

    ImporterMonitoring.record_error_report(
        duration_seconds=time.perf_counter() - start_time,
        status="success",
        row_count=len(log.validation_errors or []),
    )
    return send_file(
        BytesIO(content),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=f"import_{import_log_id}_errors.xlsx",
    )


# ---------------------------------------------------------------------------
# Position history
# ---------------------------------------------------------------------------


@importer_blueprint.post("/positions/assign")
def positions_assign():
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    payload = request.get_json(silent=True) or {}
    try:
        outcome = _service.assign_position(AssignPositionRequest.coerce(payload))
    except (FieldValidationError, NoResultFound, ConstraintViolation, TransientStoreError) as exc:
        return _store_error(exc)

    body = {
        "entry": outcome.entry.to_dict(),
        "created": outcome.created,
        "superseded": outcome.superseded.to_dict() if outcome.superseded is not None else None,
    }
    return jsonify(body), HTTPStatus.CREATED if outcome.created else HTTPStatus.OK


@importer_blueprint.post("/positions/entries/<int:entry_id>/end")
def positions_end_term(entry_id: int):
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    payload = request.get_json(silent=True) or {}
    try:
        raw_end = payload.get("end_date")
        if not raw_end:
            raise FieldValidationError("end_date is required", field="end_date")
        try:
            end_date = date.fromisoformat(str(raw_end))
        except ValueError as exc:
            raise FieldValidationError(
                f"Invalid date '{raw_end}' for end_date. Expected YYYY-MM-DD", field="end_date", value=raw_end
            ) from exc
        reason = coerce_ended_reason(payload.get("ended_reason"))
        entry = _service.end_term(entry_id, end_date, reason)
    except (FieldValidationError, NoResultFound, ConstraintViolation, TransientStoreError) as exc:
        return _store_error(exc)
    return jsonify({"entry": entry.to_dict()}), HTTPStatus.OK


@importer_blueprint.get("/positions/<int:position_id>/current")
def positions_current_holder(position_id: int):
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    key = request.args.get("jurisdiction", "national")
    try:
        jurisdiction = Jurisdiction.from_key(key)
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST, field="jurisdiction")

    entry = _service.get_current_holder(position_id, jurisdiction)
    return (
        jsonify(
            {
                "position_id": position_id,
                "jurisdiction": jurisdiction.as_dict(),
                "entry": entry.to_dict() if entry is not None else None,
            }
        ),
        HTTPStatus.OK,
    )


@importer_blueprint.get("/politicians/<int:politician_id>/timeline")
def politician_timeline(politician_id: int):
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    try:
        timeline = _service.get_timeline(politician_id)
    except NoResultFound as exc:
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)
    return jsonify(timeline.to_dict()), HTTPStatus.OK
