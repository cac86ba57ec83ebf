"""
Import log recording and querying.

``ImportLogRecorder`` owns the lifecycle of ``ImportLog`` rows
(pending -> processing -> completed | failed): it creates the log before any
row is touched, persists running counters and row errors as the pipeline
reports them, and finalizes the run. It also provides the paginated listing
and summaries used by the HTTP and CLI surfaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Iterable, Mapping, Sequence

from flask import current_app, has_app_context
from sqlalchemy import func, or_, select
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from civic_app.importer.metrics import record_import_run
from civic_app.models import ImportLog, ImportLogStatus, db

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_ERROR_LOG_LENGTH = 4000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ImportLogFilters:
    """Canonical filter options for import log listings."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    statuses: tuple[ImportLogStatus, ...] = field(default_factory=tuple)
    election_id: int | None = None
    search: str | None = None
    include_dry_runs: bool = True

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        statuses: Iterable[str] | None = None,
        election_id: int | str | None = None,
        search: str | None = None,
        include_dry_runs: str | bool | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
    ) -> "ImportLogFilters":
        """
        Coerce mixed user input into a validated ``ImportLogFilters`` instance.
        """

        resolved_page = _coerce_positive_int(page, fallback=DEFAULT_PAGE)
        resolved_size = min(_coerce_positive_int(page_size, fallback=default_page_size), MAX_PAGE_SIZE)

        resolved_statuses: list[ImportLogStatus] = []
        for value in statuses or ():
            if value is None or value == "":
                continue
            resolved_statuses.append(_coerce_status(value))

        resolved_election = None
        if election_id not in (None, ""):
            resolved_election = _coerce_positive_int(election_id, fallback=0)

        resolved_search = search.strip() if isinstance(search, str) and search.strip() else None

        return cls(
            page=resolved_page,
            page_size=resolved_size,
            statuses=tuple(resolved_statuses),
            election_id=resolved_election,
            search=resolved_search,
            include_dry_runs=_coerce_bool(include_dry_runs, default=True),
        )


@dataclass(slots=True)
class ImportLogSummary:
    """Serializable view of an import log."""

    id: int
    filename: str
    status: str
    dry_run: bool
    election_id: int | None
    uploaded_by: int | None
    total_rows: int
    processed_rows: int
    successful_imports: int
    failed_imports: int
    politicians_created: int
    politicians_updated: int
    positions_archived: int
    error_count: int
    error_log: str | None
    cancel_requested: bool
    cancelled: bool
    started_at: datetime | None
    completed_at: datetime | None
    duration_seconds: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "status": self.status,
            "dry_run": self.dry_run,
            "election_id": self.election_id,
            "uploaded_by": self.uploaded_by,
            "total_rows": self.total_rows,
            "processed_rows": self.processed_rows,
            "successful_imports": self.successful_imports,
            "failed_imports": self.failed_imports,
            "politicians_created": self.politicians_created,
            "politicians_updated": self.politicians_updated,
            "positions_archived": self.positions_archived,
            "error_count": self.error_count,
            "error_log": self.error_log,
            "cancel_requested": self.cancel_requested,
            "cancelled": self.cancelled,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(slots=True)
class ImportLogListResult:
    """Paginated result set for import logs."""

    items: list[ImportLogSummary]
    total: int
    page: int
    page_size: int
    total_pages: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


@dataclass
class ImportCounters:
    """Running totals for one import run."""

    processed_rows: int = 0
    successful_imports: int = 0
    failed_imports: int = 0
    politicians_created: int = 0
    politicians_updated: int = 0
    positions_archived: int = 0


class ImportLogRecorder:
    """Create, update, finalize, and query ``ImportLog`` rows."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        filename: str,
        *,
        election_id: int | None = None,
        uploaded_by: int | None = None,
        dry_run: bool = False,
        ingest_params: Mapping[str, Any] | None = None,
    ) -> ImportLog:
        log = ImportLog(
            filename=filename or "upload.xlsx",
            election_id=election_id,
            uploaded_by=uploaded_by,
            status=ImportLogStatus.PENDING,
            dry_run=dry_run,
            ingest_params_json=dict(ingest_params or {}),
        )
        self.session.add(log)
        self.session.commit()
        self._log(log, "Import log %s created for %s", log.id, log.filename)
        return log

    def mark_processing(
        self,
        log: ImportLog,
        *,
        total_rows: int = 0,
        source_headers: Sequence[str] | None = None,
    ) -> ImportLog:
        log.status = ImportLogStatus.PROCESSING
        log.started_at = log.started_at or _utcnow()
        log.total_rows = total_rows
        if source_headers is not None:
            log.source_headers_json = list(source_headers)
        self.session.commit()
        return log

    def record_progress(self, log: ImportLog, counters: ImportCounters, *, commit: bool = True) -> ImportLog:
        log.processed_rows = counters.processed_rows
        log.successful_imports = counters.successful_imports
        log.failed_imports = counters.failed_imports
        log.politicians_created = counters.politicians_created
        log.politicians_updated = counters.politicians_updated
        log.positions_archived = counters.positions_archived
        if commit:
            self.session.commit()
        return log

    def record_row_errors(
        self,
        log: ImportLog,
        errors: Sequence[Mapping[str, Any]],
        *,
        row_number: int | None = None,
        raw_row: Mapping[str, Any] | None = None,
    ) -> ImportLog:
        """Append row errors (and the failing input row) to the log without committing."""

        if errors:
            log.validation_errors = list(log.validation_errors or []) + [dict(error) for error in errors]
        if raw_row is not None:
            failed_rows = list(log.failed_rows_json or [])
            failed_rows.append({"row": row_number, "values": _json_safe(raw_row)})
            log.failed_rows_json = failed_rows
        return log

    def finalize(self, log: ImportLog, *, cancelled: bool = False) -> ImportLog:
        now = _utcnow()
        log.status = ImportLogStatus.COMPLETED
        log.completed_at = now
        if cancelled:
            log.cancelled_at = now
        self.session.commit()
        record_import_run(
            mode="validate" if log.dry_run else "commit",
            status="cancelled" if cancelled else log.status.value,
            duration_seconds=log.duration_seconds,
        )
        self._log(
            log,
            "Import log %s completed: %s ok, %s failed%s",
            log.id,
            log.successful_imports,
            log.failed_imports,
            " (cancelled)" if cancelled else "",
        )
        return log

    def fail(self, log_id: int, message: str) -> ImportLog | None:
        """Mark a run failed after a fatal error; safe to call after a failed flush."""

        self.session.rollback()
        log = self.session.get(ImportLog, log_id)
        if log is None:
            return None
        log.status = ImportLogStatus.FAILED
        log.error_log = (message or "")[:MAX_ERROR_LOG_LENGTH]
        log.started_at = log.started_at or _utcnow()
        log.completed_at = _utcnow()
        self.session.commit()
        record_import_run(
            mode="validate" if log.dry_run else "commit",
            status=ImportLogStatus.FAILED.value,
            duration_seconds=log.duration_seconds,
        )
        if has_app_context():
            current_app.logger.error(
                "Import log %s failed: %s", log.id, log.error_log, extra={"importer_log_id": log.id}
            )
        return log

    def request_cancel(self, log_id: int) -> ImportLog:
        """Flag a run for cancellation; the pipeline stops at the next row boundary."""

        log = self.get(log_id)
        if log.status.is_terminal:
            return log
        log.cancel_requested = True
        self.session.commit()
        self._log(log, "Cancellation requested for import log %s", log.id)
        return log

    def is_cancel_requested(self, log_id: int) -> bool:
        value = self.session.execute(select(ImportLog.cancel_requested).where(ImportLog.id == log_id)).scalar()
        return bool(value)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, log_id: int) -> ImportLog:
        log = self.session.get(ImportLog, log_id)
        if log is None:
            raise NoResultFound(f"Import log {log_id} not found.")
        return log

    def get_summary(self, log_id: int) -> ImportLogSummary:
        return self.summarize(self.get(log_id))

    def list_logs(self, filters: ImportLogFilters) -> ImportLogListResult:
        statement = select(ImportLog)
        if filters.statuses:
            statement = statement.where(ImportLog.status.in_(filters.statuses))
        if filters.election_id is not None:
            statement = statement.where(ImportLog.election_id == filters.election_id)
        if not filters.include_dry_runs:
            statement = statement.where(ImportLog.dry_run.is_(False))
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            predicates = [func.lower(ImportLog.filename).like(pattern)]
            if filters.search.isdigit():
                predicates.append(ImportLog.id == int(filters.search))
            statement = statement.where(or_(*predicates))

        total = self.session.execute(select(func.count()).select_from(statement.subquery())).scalar_one()
        if total == 0:
            return ImportLogListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        rows = self.session.execute(
            statement.order_by(ImportLog.created_at.desc(), ImportLog.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
        ).scalars()
        total_pages = (total + filters.page_size - 1) // filters.page_size
        return ImportLogListResult(
            items=[self.summarize(log) for log in rows],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=total_pages,
        )

    @staticmethod
    def summarize(log: ImportLog) -> ImportLogSummary:
        return ImportLogSummary(
            id=log.id,
            filename=log.filename,
            status=log.status.value if isinstance(log.status, ImportLogStatus) else str(log.status),
            dry_run=bool(log.dry_run),
            election_id=log.election_id,
            uploaded_by=log.uploaded_by,
            total_rows=log.total_rows or 0,
            processed_rows=log.processed_rows or 0,
            successful_imports=log.successful_imports or 0,
            failed_imports=log.failed_imports or 0,
            politicians_created=log.politicians_created or 0,
            politicians_updated=log.politicians_updated or 0,
            positions_archived=log.positions_archived or 0,
            error_count=len(log.validation_errors or []),
            error_log=log.error_log,
            cancel_requested=bool(log.cancel_requested),
            cancelled=log.was_cancelled,
            started_at=log.started_at,
            completed_at=log.completed_at,
            duration_seconds=log.duration_seconds,
        )

    def export_error_report(self, log_id: int) -> bytes:
        from civic_app.importer.pipeline.reports import build_error_report

        return build_error_report(self.get(log_id))

    @staticmethod
    def _log(log: ImportLog, message: str, *args: object) -> None:
        if has_app_context():
            current_app.logger.info(message, *args, extra={"importer_log_id": log.id})


# -------------------------------------------------------------------------
# Helper functions
# -------------------------------------------------------------------------


def _json_safe(values: Mapping[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, datetime):
            payload[str(key)] = value.date().isoformat() if value.time() == time.min else value.isoformat()
        elif hasattr(value, "isoformat"):
            payload[str(key)] = value.isoformat()
        elif value is None or isinstance(value, (str, int, float, bool)):
            payload[str(key)] = value
        else:
            payload[str(key)] = str(value)
    return payload


def _coerce_positive_int(candidate: int | str | None, *, fallback: int) -> int:
    if candidate in (None, ""):
        return fallback
    if isinstance(candidate, int):
        return max(1, candidate)
    if isinstance(candidate, str) and candidate.strip().isdigit():
        return max(1, int(candidate.strip()))
    raise ValueError(f"Expected positive integer, received '{candidate}'.")


def _coerce_status(value: str | ImportLogStatus) -> ImportLogStatus:
    if isinstance(value, ImportLogStatus):
        return value
    normalized = str(value).strip().lower()
    try:
        return ImportLogStatus(normalized)
    except ValueError:
        raise ValueError(f"Unsupported status filter '{value}'.") from None


def _coerce_bool(candidate: str | bool | None, *, default: bool) -> bool:
    if candidate is None:
        return default
    if isinstance(candidate, bool):
        return candidate
    normalized = candidate.strip().lower()
    if normalized in ("1", "true", "yes", "y", "on"):
        return True
    if normalized in ("0", "false", "no", "n", "off"):
        return False
    return default
