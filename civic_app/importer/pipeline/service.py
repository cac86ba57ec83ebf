"""
Facade exposing the politician importer and position history operations.

Views, CLI commands, and Celery tasks talk to ``ImportService`` only; it
wires the reader, validator, store, and recorder together and decides
whether a run goes to the Celery worker or executes inline.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Mapping

from flask import Flask, current_app
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from civic_app.importer.celery_app import get_celery_app
from civic_app.importer.pipeline.import_log import ImportLogFilters, ImportLogListResult, ImportLogRecorder
from civic_app.importer.pipeline.import_pipeline import ImportPipeline, ImportRunResult
from civic_app.importer.pipeline.position_history import (
    AssignmentOutcome,
    AssignPositionRequest,
    PoliticianPositionTimeline,
    PositionHistoryStore,
)
from civic_app.importer.pipeline.progress import LoggingProgressSink, ProgressSink, fan_out
from civic_app.importer.pipeline.reports import generate_template
from civic_app.importer.pipeline.validation import ImportValidationResult
from civic_app.importer.utils import cleanup_upload, persist_bytes
from civic_app.models import ElectionEvent, EndedReason, ImportLog, Jurisdiction, PositionHistoryEntry, db
from civic_app.utils.importer import is_worker_enabled

INGEST_TASK_NAME = "importer.pipeline.ingest_positions"


@dataclass(slots=True)
class StartImportResult:
    """Returned by ``start_import``; ``task_id`` is set when queued on the worker."""

    log: ImportLog
    queued: bool
    task_id: str | None = None
    run: ImportRunResult | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "import_log_id": self.log.id,
            "status": self.log.status.value,
            "queued": self.queued,
            "task_id": self.task_id,
        }
        if self.run is not None:
            payload["result"] = self.run.to_dict()
        return payload


class ImportService:
    """Entry point for imports, import logs, and position history operations."""

    def __init__(self, session: Session | None = None, *, app: Flask | None = None) -> None:
        self.session: Session = session or db.session
        self._explicit_session = session
        self._app = app
        self.store = PositionHistoryStore(self.session)
        self.recorder = ImportLogRecorder(self.session)

    @property
    def app(self) -> Flask:
        return self._app or current_app._get_current_object()  # type: ignore[attr-defined]

    def pipeline(self) -> ImportPipeline:
        return ImportPipeline.from_app(self.app, session=self._explicit_session)

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def validate_import(self, content: bytes) -> ImportValidationResult:
        """Validate a workbook without creating a log or touching position data."""

        return self.pipeline().validate(content)

    def start_import(
        self,
        content: bytes,
        filename: str,
        *,
        election_id: int | None = None,
        validate_only: bool = False,
        uploaded_by: int | None = None,
        inline: bool | None = None,
        progress: ProgressSink | None = None,
    ) -> StartImportResult:
        """
        Create an ``ImportLog`` and run (or queue) the import.

        The run goes to the Celery worker when ``IMPORTER_WORKER_ENABLED`` is
        set and ``inline`` is not requested; otherwise it executes before this
        method returns.

        Raises:
            NoResultFound: when ``election_id`` does not exist.
        """
        if election_id is not None and self.session.get(ElectionEvent, election_id) is None:
            raise NoResultFound(f"Election {election_id} not found.")

        app = self.app
        path = persist_bytes(content, app, filename=filename)
        run_inline = (not is_worker_enabled(app)) if inline is None else inline
        log = self.recorder.create(
            filename,
            election_id=election_id,
            uploaded_by=uploaded_by,
            dry_run=validate_only,
            ingest_params={
                "file_path": str(path),
                "validate_only": validate_only,
                "election_id": election_id,
                "keep_file": False,
            },
        )

        if not run_inline:
            celery_app = get_celery_app(app)
            if celery_app is None:
                self.recorder.fail(log.id, "Importer worker is not configured.")
                cleanup_upload(path)
                raise RuntimeError("Importer worker is not configured; cannot enqueue import.")
            try:
                async_result = celery_app.send_task(
                    INGEST_TASK_NAME,
                    kwargs={
                        "import_log_id": log.id,
                        "file_path": str(path),
                        "validate_only": validate_only,
                        "keep_file": False,
                    },
                )
            except Exception as exc:
                self.recorder.fail(log.id, f"Failed to enqueue import: {exc}")
                raise
            app.logger.info(
                "Import %s queued",
                log.id,
                extra={"importer_log_id": log.id, "importer_task_id": async_result.id},
            )
            return StartImportResult(log=log, queued=True, task_id=async_result.id)

        run = self.run_import(log.id, path, validate_only=validate_only, keep_file=False, progress=progress)
        return StartImportResult(log=self.recorder.get(log.id), queued=False, run=run)

    def run_import(
        self,
        import_log_id: int,
        file_path: str | Path,
        *,
        validate_only: bool = False,
        keep_file: bool = False,
        progress: ProgressSink | None = None,
    ) -> ImportRunResult:
        """Execute a logged run against a stored upload (used inline and by the worker)."""

        log = self.recorder.get(import_log_id)
        path = Path(file_path)
        sink = fan_out(progress, LoggingProgressSink(self.app.logger))
        try:
            if not path.exists():
                self.recorder.fail(import_log_id, f"Import file not found: {path}")
                raise FileNotFoundError(f"Import file not found: {path}")
            return self.pipeline().run(log, path, validate_only=validate_only, progress=sink)
        finally:
            if not keep_file:
                cleanup_upload(path)

    def get_import_log(self, import_log_id: int) -> ImportLog:
        return self.recorder.get(import_log_id)

    def list_import_logs(self, filters: ImportLogFilters) -> ImportLogListResult:
        return self.recorder.list_logs(filters)

    def cancel_import(self, import_log_id: int) -> ImportLog:
        return self.recorder.request_cancel(import_log_id)

    def export_error_report(self, import_log_id: int) -> bytes:
        return self.recorder.export_error_report(import_log_id)

    def generate_template(self) -> bytes:
        return generate_template(self.session)

    # ------------------------------------------------------------------
    # Position history
    # ------------------------------------------------------------------

    def assign_position(self, request: AssignPositionRequest | Mapping[str, Any]) -> AssignmentOutcome:
        if not isinstance(request, AssignPositionRequest):
            request = AssignPositionRequest.coerce(request)
        return self.store.assign_position(request, commit=True)

    def end_term(
        self,
        entry_id: int,
        end_date: date,
        ended_reason: EndedReason | str | None = EndedReason.TERM_EXPIRED,
    ) -> PositionHistoryEntry:
        return self.store.end_term(entry_id, end_date, ended_reason, commit=True)

    def get_current_holder(self, position_id: int, jurisdiction: Jurisdiction) -> PositionHistoryEntry | None:
        return self.store.get_current_holder(position_id, jurisdiction)

    def get_timeline(self, politician_id: int) -> PoliticianPositionTimeline:
        return self.store.get_timeline(politician_id)
