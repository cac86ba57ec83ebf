"""
SQLAlchemy models for politician import runs.

One ``ImportLog`` row is written per pipeline run. It is created before any
row is processed so long-running imports are observable immediately, then
updated with running counters and finalized once the run leaves
``processing``.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImportLogStatus(str, enum.Enum):
    """Lifecycle states for an import log."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportLogStatus.COMPLETED, ImportLogStatus.FAILED)


class ImportLog(BaseModel):
    """Metadata, counters, and errors for a single politician import."""

    __tablename__ = "politician_import_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    filename: Mapped[str] = mapped_column(db.String(255), nullable=False)
    election_id: Mapped[int | None] = mapped_column(ForeignKey("election_events.id"), nullable=True, index=True)
    uploaded_by: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    status: Mapped[ImportLogStatus] = mapped_column(
        Enum(ImportLogStatus, name="import_log_status_enum"),
        nullable=False,
        default=ImportLogStatus.PENDING,
        index=True,
    )
    dry_run: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    total_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    successful_imports: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    failed_imports: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    politicians_created: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    politicians_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    positions_archived: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    validation_errors: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    failed_rows_json: Mapped[list | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Raw input rows that failed, kept so the error report mirrors the uploaded sheet.",
    )
    source_headers_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    ingest_params_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Stored parameters for the run (file_path, validate_only, election_id, keep_file)",
    )
    error_log: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))

    election = relationship("ElectionEvent")

    __table_args__ = (
        Index("idx_import_logs_status_started", "status", "started_at"),
        CheckConstraint("successful_imports >= 0 AND failed_imports >= 0", name="ck_import_logs_counts"),
    )

    def __repr__(self) -> str:
        return f"<ImportLog {self.id} {self.filename} {self.status.value if self.status else None}>"

    @property
    def was_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def duration_seconds(self) -> float | None:
        start, end = self.started_at, self.completed_at
        if not start or not end:
            return None
        # SQLite hands back naive datetimes
        if (start.tzinfo is None) != (end.tzinfo is None):
            start, end = start.replace(tzinfo=None), end.replace(tzinfo=None)
        return max((end - start).total_seconds(), 0.0)
