"""
Politician import pipeline.

Two modes share the same reader and validator:

* validate-only: every row goes through ``RowValidator``; nothing is written
  except (optionally) the ``ImportLog`` describing the dry run.
* commit: rows are processed one at a time. Invalid rows record their errors
  and the batch continues; valid rows find or create the politician and call
  ``PositionHistoryStore.assign_position`` inside a transaction covering only
  that row. Counters are persisted and a progress update is emitted after
  each row, and the cancellation check runs between rows.

Only ``MalformedFile`` (raised before the row loop) fails a run.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Sequence

from flask import Flask, current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError
from sqlalchemy.orm import Session

from civic_app.importer.adapters import ImportRow, read_import_rows
from civic_app.importer.errors import ConstraintViolation, MalformedFile, RowTimeout, TransientStoreError
from civic_app.importer.metrics import (
    record_import_row,
    record_resolution_failure,
    record_row_retry,
)
from civic_app.importer.pipeline.import_log import ImportCounters, ImportLogRecorder
from civic_app.importer.pipeline.position_history import AssignPositionRequest, PositionHistoryStore
from civic_app.importer.pipeline.progress import (
    CancellationCheck,
    ImportProgressUpdate,
    ProgressSink,
)
from civic_app.importer.pipeline.validation import (
    ROW_FIELD,
    ImportValidationResult,
    RowValidator,
    ValidatedRow,
    ValidationError,
)
from civic_app.models import ElectionEvent, EndedReason, ImportLog, ImportLogStatus, Politician, db
from civic_app.utils.importer import get_row_timeout
from civic_app.utils.text import generate_slug

Source = bytes | bytearray | IO[bytes] | str | Path


class RowWorker:
    """Single validation thread for timed rows, replaced whenever a row overruns."""

    def __init__(self) -> None:
        self._executor: ThreadPoolExecutor | None = None

    def get(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="row-import")
        return self._executor

    def discard(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


@dataclass
class RowCommitResult:
    politician_id: int
    politician_created: bool
    entry_id: int
    archived: bool


@dataclass
class ImportRunResult:
    """Outcome of a pipeline run."""

    import_log_id: int | None
    status: ImportLogStatus
    validate_only: bool
    counters: ImportCounters = field(default_factory=ImportCounters)
    total_rows: int = 0
    errors: list[ValidationError] = field(default_factory=list)
    cancelled: bool = False
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "import_log_id": self.import_log_id,
            "status": self.status.value,
            "validate_only": self.validate_only,
            "total_rows": self.total_rows,
            "processed_rows": self.counters.processed_rows,
            "successful_imports": self.counters.successful_imports,
            "failed_imports": self.counters.failed_imports,
            "politicians_created": self.counters.politicians_created,
            "politicians_updated": self.counters.politicians_updated,
            "positions_archived": self.counters.positions_archived,
            "cancelled": self.cancelled,
            "error_message": self.error_message,
            "errors": [error.as_dict() for error in self.errors],
        }


class ImportPipeline:
    """Orchestrates validation and per-row commits for one spreadsheet."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        validator: RowValidator | None = None,
        store: PositionHistoryStore | None = None,
        recorder: ImportLogRecorder | None = None,
        app: Flask | None = None,
        row_timeout: float | None = None,
        max_workers: int = 1,
        transient_retries: int = 1,
    ) -> None:
        self.session: Session = session or db.session
        self.validator = validator or RowValidator(session=session)
        self.store = store or PositionHistoryStore(self.session)
        self.recorder = recorder or ImportLogRecorder(self.session)
        self.app = app
        self.row_timeout = row_timeout
        self.max_workers = max(1, max_workers)
        self.transient_retries = max(0, transient_retries)

    @classmethod
    def from_app(cls, app: Flask | None = None, *, session: Session | None = None) -> "ImportPipeline":
        app = app or current_app._get_current_object()  # type: ignore[attr-defined]
        config = app.config
        return cls(
            session,
            validator=RowValidator.from_config(config, session=session),
            app=app,
            row_timeout=get_row_timeout(app),
            max_workers=int(config.get("IMPORTER_VALIDATION_WORKERS", 1) or 1),
            transient_retries=int(config.get("IMPORTER_TRANSIENT_RETRIES", 1) or 0),
        )

    # ------------------------------------------------------------------
    # Validate mode
    # ------------------------------------------------------------------

    def validate(self, source: Source) -> ImportValidationResult:
        """Validate every row of ``source`` without writing anything."""

        rows, _ = read_import_rows(source)
        return self.validate_rows(rows)

    def validate_rows(self, rows: Sequence[ImportRow]) -> ImportValidationResult:
        return self.validator.validate_rows(
            rows,
            max_workers=self.max_workers,
            timeout=self.row_timeout,
            app=self.app,
        )

    # ------------------------------------------------------------------
    # Logged runs
    # ------------------------------------------------------------------

    def run(
        self,
        log: ImportLog,
        source: Source,
        *,
        validate_only: bool = False,
        progress: ProgressSink | None = None,
        is_cancelled: CancellationCheck | None = None,
    ) -> ImportRunResult:
        """
        Process ``source`` for an existing ``ImportLog``.

        Args:
            log: Log created by ``ImportLogRecorder.create``.
            source: Workbook bytes, file object, or path.
            validate_only: Validate and record errors without touching position data.
            progress: Callable receiving an ``ImportProgressUpdate`` after each row.
            is_cancelled: Callable polled between rows; defaults to the log's
                ``cancel_requested`` flag.

        Returns:
            ImportRunResult mirroring the finalized log.

        Raises:
            Exception: unexpected failures mark the log failed and propagate.
        """
        log_id = log.id
        result = ImportRunResult(import_log_id=log_id, status=ImportLogStatus.PROCESSING, validate_only=validate_only)

        try:
            rows, headers = read_import_rows(source)
        except MalformedFile as exc:
            self.recorder.fail(log_id, str(exc))
            result.status = ImportLogStatus.FAILED
            result.error_message = str(exc)
            return result

        try:
            self.recorder.mark_processing(log, total_rows=len(rows), source_headers=headers)
            result.total_rows = len(rows)
            self._info(log_id, "Import %s processing %s rows (validate_only=%s)", log_id, len(rows), validate_only)
            if validate_only:
                self._run_validation(log_id, rows, result, progress)
            else:
                self._run_commit(log_id, rows, result, progress, is_cancelled)
        except Exception as exc:
            self.recorder.fail(log_id, str(exc))
            raise

        final_log = self.recorder.finalize(self.recorder.get(log_id), cancelled=result.cancelled)
        result.status = final_log.status
        return result

    def _run_validation(
        self,
        log_id: int,
        rows: Sequence[ImportRow],
        result: ImportRunResult,
        progress: ProgressSink | None,
    ) -> None:
        validation = self.validate_rows(rows)
        log = self.recorder.get(log_id)
        counters = result.counters
        for validated in validation.rows:
            counters.processed_rows += 1
            if validated.is_valid:
                counters.successful_imports += 1
            else:
                counters.failed_imports += 1
                self._record_failure(log, validated.source, validated.errors)
            result.errors.extend(validated.errors)
            self._emit(progress, log_id, result, validated.source, self._row_message(validated.source, validated.errors))
        self.recorder.record_progress(log, counters)

    def _run_commit(
        self,
        log_id: int,
        rows: Sequence[ImportRow],
        result: ImportRunResult,
        progress: ProgressSink | None,
        is_cancelled: CancellationCheck | None,
    ) -> None:
        cancel_check = is_cancelled or (lambda: self.recorder.is_cancel_requested(log_id))
        log = self.recorder.get(log_id)
        election = self.session.get(ElectionEvent, log.election_id) if log.election_id else None
        election_id = election.id if election is not None else None
        counters = result.counters

        self.validator.warm()
        executor = None
        if self.row_timeout is not None and self.app is not None and self.validator.session is None:
            executor = RowWorker()
        try:
            for row in rows:
                if cancel_check():
                    result.cancelled = True
                    self._info(
                        log_id,
                        "Import %s cancelled after %s of %s rows",
                        log_id,
                        counters.processed_rows,
                        len(rows),
                    )
                    break

                errors, committed = self._process_row(log_id, row, election_id, executor)
                log = self.recorder.get(log_id)
                counters.processed_rows += 1
                if errors:
                    counters.failed_imports += 1
                    self._record_failure(log, row, errors)
                    result.errors.extend(errors)
                else:
                    counters.successful_imports += 1
                    record_import_row("success")
                    if committed.politician_created:
                        counters.politicians_created += 1
                    else:
                        counters.politicians_updated += 1
                    if committed.archived:
                        counters.positions_archived += 1
                self.recorder.record_progress(log, counters)
                self._emit(progress, log_id, result, row, self._row_message(row, errors))
        finally:
            if executor is not None:
                executor.discard()

        if result.cancelled:
            self._emit(progress, log_id, result, None, f"Import cancelled after {counters.processed_rows} rows")

    # ------------------------------------------------------------------
    # Single row
    # ------------------------------------------------------------------

    def _process_row(
        self,
        log_id: int,
        row: ImportRow,
        election_id: int | None,
        executor: RowWorker | None,
    ) -> tuple[list[ValidationError], RowCommitResult | None]:
        attempt = 0
        while True:
            try:
                validated = self.validator.validate_with_timeout(
                    row,
                    timeout=self.row_timeout,
                    executor=executor.get() if executor is not None else None,
                    app=self.app,
                )
                if not validated.is_valid:
                    return validated.errors, None
                return [], self._commit_row(log_id, validated, election_id)
            except TransientStoreError as exc:
                if isinstance(exc, RowTimeout) and executor is not None:
                    executor.discard()
                self.session.rollback()
                if attempt < self.transient_retries:
                    attempt += 1
                    record_row_retry()
                    self._warning(log_id, "Retrying row %s after transient error: %s", row.row_number, exc)
                    continue
                return [ValidationError(row=row.row_number, field=ROW_FIELD, message=str(exc))], None
            except (ConstraintViolation, NoResultFound) as exc:
                self.session.rollback()
                return [ValidationError(row=row.row_number, field=ROW_FIELD, message=str(exc))], None

    def _commit_row(self, log_id: int, validated: ValidatedRow, election_id: int | None) -> RowCommitResult:
        try:
            politician, created = self._find_or_create_politician(validated)
        except IntegrityError as exc:
            raise TransientStoreError(f"Politician '{validated.name}' was written concurrently") from exc
        except OperationalError as exc:
            raise TransientStoreError(str(exc.orig)) from exc

        request = AssignPositionRequest(
            politician_id=politician.id,
            position_id=validated.position.id,
            jurisdiction=validated.jurisdiction.jurisdiction,
            term_start=validated.term_start,
            party_id=validated.party.id if validated.party else None,
            term_end=validated.term_end,
            election_id=election_id,
            with_history=election_id is not None,
            import_log_id=log_id,
        )
        outcome = self.store.assign_position(request, commit=True)
        archived = outcome.superseded is not None and outcome.superseded.ended_reason is EndedReason.ELECTION
        return RowCommitResult(
            politician_id=politician.id,
            politician_created=created,
            entry_id=outcome.entry.id,
            archived=archived,
        )

    def _find_or_create_politician(self, validated: ValidatedRow) -> tuple[Politician, bool]:
        slug = generate_slug(validated.name, fallback="politician")
        politician = self.session.execute(select(Politician).where(Politician.slug == slug)).scalars().first()
        created = politician is None
        if created:
            politician = Politician(name=validated.name, slug=slug)
            self.session.add(politician)
        if validated.photo_url:
            politician.photo_url = validated.photo_url
        if validated.short_bio:
            politician.short_bio = validated.short_bio
        if validated.birth_date:
            politician.birth_date = validated.birth_date
        self.session.flush()
        return politician, created

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_failure(self, log: ImportLog, row: ImportRow, errors: Sequence[ValidationError]) -> None:
        record_import_row("failed")
        for error in errors:
            record_resolution_failure(error.field)
        self.recorder.record_row_errors(
            log,
            [error.as_dict() for error in errors],
            row_number=row.row_number,
            raw_row=row.raw,
        )

    @staticmethod
    def _row_message(row: ImportRow, errors: Sequence[ValidationError]) -> str:
        if not errors:
            return f"Row {row.row_number}: ok"
        return f"Row {row.row_number}: {errors[0].message}"

    @staticmethod
    def _emit(
        progress: ProgressSink | None,
        log_id: int,
        result: ImportRunResult,
        row: ImportRow | None,
        message: str,
    ) -> None:
        if progress is None:
            return
        counters = result.counters
        progress(
            ImportProgressUpdate(
                import_log_id=log_id,
                processed_rows=counters.processed_rows,
                total_rows=result.total_rows,
                successful=counters.successful_imports,
                failed=counters.failed_imports,
                current_row=row.row_number if row is not None else None,
                message=message,
            )
        )

    @staticmethod
    def _info(log_id: int, message: str, *args: object) -> None:
        if has_app_context():
            current_app.logger.info(message, *args, extra={"importer_log_id": log_id})

    @staticmethod
    def _warning(log_id: int, message: str, *args: object) -> None:
        if has_app_context():
            current_app.logger.warning(message, *args, extra={"importer_log_id": log_id})
