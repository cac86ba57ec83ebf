"""
Row validation for politician position imports.

``RowValidator`` composes the jurisdiction, position, and party resolvers
with structural checks (required fields, date formats, level compatibility)
and always collects every error on a row instead of stopping at the first.
Resolution is read-only, so ``validate_rows`` may fan rows out to a bounded
thread pool; a row that does not finish within the configured timeout fails
with a transient error instead of stalling the batch.
"""

from __future__ import annotations

import re
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Sequence
from urllib.parse import urlparse

from flask import Flask
from sqlalchemy.orm import Session

from civic_app.importer.adapters import ImportRow
from civic_app.importer.errors import RowScopedError, RowTimeout
from civic_app.importer.pipeline.fuzzy import DEFAULT_LIMIT, DEFAULT_MIN_SCORE, rank_suggestions, suggestion_labels
from civic_app.importer.pipeline.resolvers import (
    JurisdictionMatch,
    JurisdictionResolver,
    PartyResolver,
    PositionResolver,
    ResolvedParty,
    ResolvedPosition,
)
from civic_app.models import JurisdictionKind, PositionLevel
from civic_app.utils.text import collapse_whitespace

DATE_FORMAT = "%Y-%m-%d"
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ROW_FIELD = "row"

LEVEL_COMPATIBILITY: Mapping[PositionLevel, tuple[JurisdictionKind, ...]] = {
    PositionLevel.NATIONAL: (JurisdictionKind.NATIONAL, JurisdictionKind.DISTRICT),
    PositionLevel.REGIONAL: (JurisdictionKind.REGION,),
    PositionLevel.PROVINCIAL: (JurisdictionKind.PROVINCE,),
    PositionLevel.CITY: (JurisdictionKind.CITY,),
    PositionLevel.MUNICIPAL: (JurisdictionKind.CITY,),
    PositionLevel.BARANGAY: (JurisdictionKind.BARANGAY,),
}


def compatible_kinds(level: PositionLevel) -> tuple[JurisdictionKind, ...]:
    return LEVEL_COMPATIBILITY.get(level, ())


def compatible_levels(kind: JurisdictionKind) -> tuple[PositionLevel, ...]:
    return tuple(level for level, kinds in LEVEL_COMPATIBILITY.items() if kind in kinds)


def _display_value(value: object | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value)
    return text if text.strip() else None


@dataclass(frozen=True)
class ValidationError:
    """A single row-scoped problem, attributed to one input field."""

    row: int
    field: str
    message: str
    value: str | None = None
    suggestions: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "field": self.field,
            "error": self.message,
            "value": self.value,
            "suggestions": list(self.suggestions),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ValidationError":
        return cls(
            row=int(payload.get("row") or 0),
            field=str(payload.get("field") or ""),
            message=str(payload.get("error") or payload.get("message") or ""),
            value=payload.get("value"),
            suggestions=tuple(payload.get("suggestions") or ()),
        )

    @classmethod
    def from_exception(cls, row: int, exc: RowScopedError, *, default_field: str = ROW_FIELD) -> "ValidationError":
        return cls(
            row=row,
            field=exc.field or default_field,
            message=exc.message,
            value=_display_value(exc.value),
            suggestions=exc.suggestions,
        )


@dataclass
class ValidatedRow:
    """An import row with references resolved and dates parsed."""

    source: ImportRow
    errors: list[ValidationError] = field(default_factory=list)
    name: str | None = None
    position: ResolvedPosition | None = None
    party: ResolvedParty | None = None
    jurisdiction: JurisdictionMatch | None = None
    term_start: date | None = None
    term_end: date | None = None
    birth_date: date | None = None
    photo_url: str | None = None
    short_bio: str | None = None

    @property
    def row_number(self) -> int:
        return self.source.row_number

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(
        self,
        field_name: str,
        message: str,
        value: object | None = None,
        suggestions: Iterable[str] = (),
    ) -> None:
        self.errors.append(
            ValidationError(
                row=self.row_number,
                field=field_name,
                message=message,
                value=_display_value(value),
                suggestions=tuple(suggestions),
            )
        )

    def add_exception(self, exc: RowScopedError) -> None:
        self.errors.append(ValidationError.from_exception(self.row_number, exc))


@dataclass
class ImportValidationResult:
    """Batch-level validation outcome."""

    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    errors: list[ValidationError] = field(default_factory=list)
    rows: list[ValidatedRow] = field(default_factory=list)

    @classmethod
    def from_rows(cls, rows: Sequence[ValidatedRow]) -> "ImportValidationResult":
        valid = sum(1 for row in rows if row.is_valid)
        errors = [error for row in rows for error in row.errors]
        return cls(
            total_rows=len(rows),
            valid_rows=valid,
            invalid_rows=len(rows) - valid,
            errors=errors,
            rows=list(rows),
        )

    @property
    def is_valid(self) -> bool:
        return self.invalid_rows == 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "invalid_rows": self.invalid_rows,
            "errors": [error.as_dict() for error in self.errors],
        }


def parse_import_date(value: object | None, *, field_name: str, label: str) -> date | None:
    """
    Parse an import date cell.

    Spreadsheet date cells arrive as ``date``/``datetime``; text must be
    ``YYYY-MM-DD``. Blank values return ``None``.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    if _DATE_PATTERN.match(text):
        try:
            return datetime.strptime(text, DATE_FORMAT).date()
        except ValueError:
            pass
    raise _DateFormatError(field_name, f"Invalid date format '{text}' for {label}. Expected YYYY-MM-DD", value)


class _DateFormatError(Exception):
    def __init__(self, field_name: str, message: str, value: object | None) -> None:
        super().__init__(message)
        self.field_name = field_name
        self.message = message
        self.value = value


class RowValidator:
    """Validate import rows against reference data."""

    def __init__(
        self,
        *,
        session: Session | None = None,
        jurisdiction_resolver: JurisdictionResolver | None = None,
        position_resolver: PositionResolver | None = None,
        party_resolver: PartyResolver | None = None,
        min_score: float = DEFAULT_MIN_SCORE,
        limit: int = DEFAULT_LIMIT,
    ) -> None:
        self.session = session
        self.min_score = min_score
        self.limit = limit
        self.jurisdictions = jurisdiction_resolver or JurisdictionResolver(session, min_score=min_score, limit=limit)
        self.positions = position_resolver or PositionResolver(session, min_score=min_score, limit=limit)
        self.parties = party_resolver or PartyResolver(session, min_score=min_score, limit=limit)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, session: Session | None = None) -> "RowValidator":
        return cls(
            session=session,
            min_score=float(config.get("IMPORTER_FUZZY_MIN_SCORE", DEFAULT_MIN_SCORE)),
            limit=int(config.get("IMPORTER_FUZZY_SUGGESTION_LIMIT", DEFAULT_LIMIT)),
        )

    # ------------------------------------------------------------------
    # Single row
    # ------------------------------------------------------------------

    def validate(self, row: ImportRow) -> ValidatedRow:
        validated = ValidatedRow(source=row)

        name = collapse_whitespace(row.name)
        if not name:
            validated.add_error("name", "Name is required", row.name)
        else:
            validated.name = name

        try:
            validated.position = self.positions.resolve(row.position)
        except RowScopedError as exc:
            validated.add_exception(exc)

        try:
            validated.jurisdiction = self.jurisdictions.resolve(
                row.jurisdiction_type,
                row.jurisdiction_name,
                row.jurisdiction_parent,
            )
        except RowScopedError as exc:
            validated.add_exception(exc)

        try:
            validated.party = self.parties.resolve(row.party)
        except RowScopedError as exc:
            validated.add_exception(exc)

        self._validate_dates(row, validated)
        self._validate_optional_fields(row, validated)
        self._check_level_compatibility(row, validated)
        return validated

    def _validate_dates(self, row: ImportRow, validated: ValidatedRow) -> None:
        if _display_value(row.term_start) is None:
            validated.add_error("term_start", "Term start date is required", row.term_start)
        else:
            validated.term_start = self._parse(validated, row.term_start, "term_start", "term start")

        validated.term_end = self._parse(validated, row.term_end, "term_end", "term end")
        if validated.term_start and validated.term_end and validated.term_end < validated.term_start:
            validated.add_error("term_end", "Term end must be after term start", row.term_end)

        validated.birth_date = self._parse(validated, row.birth_date, "birth_date", "birth date")
        if validated.birth_date and validated.term_start and validated.birth_date >= validated.term_start:
            validated.add_error("birth_date", "Birth date must be before term start", row.birth_date)

    @staticmethod
    def _parse(validated: ValidatedRow, value: object | None, field_name: str, label: str) -> date | None:
        try:
            return parse_import_date(value, field_name=field_name, label=label)
        except _DateFormatError as exc:
            validated.add_error(exc.field_name, exc.message, exc.value)
            return None

    @staticmethod
    def _validate_optional_fields(row: ImportRow, validated: ValidatedRow) -> None:
        photo_url = collapse_whitespace(row.photo_url)
        if photo_url:
            parsed = urlparse(photo_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                validated.add_error("photo_url", f"Invalid photo URL '{photo_url}'. Expected an http(s) URL", photo_url)
            else:
                validated.photo_url = photo_url
        bio = (row.short_bio or "").strip() if isinstance(row.short_bio, str) else row.short_bio
        validated.short_bio = bio or None

    def _check_level_compatibility(self, row: ImportRow, validated: ValidatedRow) -> None:
        position = validated.position
        match = validated.jurisdiction
        if position is None or match is None:
            return
        kind = match.jurisdiction.kind
        allowed = compatible_kinds(position.level)
        if kind in allowed:
            return

        alternatives = self.positions.with_levels(compatible_levels(kind))
        ranked = rank_suggestions(
            position.name,
            [(record.id, record.name) for record in alternatives],
            limit=self.limit,
            min_score=self.min_score,
        )
        if ranked:
            validated.add_error(
                "position",
                f"Position '{position.name}' ({position.level.value}) cannot be held in a {kind.value} jurisdiction",
                row.position,
                suggestion_labels(ranked),
            )
        else:
            validated.add_error(
                "jurisdiction_type",
                f"Jurisdiction type '{kind.value}' is not valid for position '{position.name}' "
                f"({position.level.value} level)",
                row.jurisdiction_type,
                [allowed_kind.value for allowed_kind in allowed],
            )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def warm(self) -> None:
        """Load position and party snapshots before rows fan out to threads."""

        self.positions.records()
        self.parties.records()

    def validate_with_timeout(
        self,
        row: ImportRow,
        *,
        timeout: float | None,
        executor: ThreadPoolExecutor | None,
        app: Flask | None,
    ) -> ValidatedRow:
        """
        Validate one row, raising ``RowTimeout`` when it exceeds ``timeout``.

        A timed-out row keeps its worker busy; callers must stop submitting to
        ``executor`` once this raises.
        """

        if timeout is None or executor is None or app is None:
            return self.validate(row)
        future = executor.submit(self._validate_in_context, app, row)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise RowTimeout(f"Row {row.row_number} validation timed out after {timeout:g} seconds") from exc

    def _validate_in_context(self, app: Flask, row: ImportRow) -> ValidatedRow:
        with app.app_context():
            return self.validate(row)

    def _validate_timed(self, app: Flask, row: ImportRow, started: dict[int, float], index: int) -> ValidatedRow:
        started[index] = time.monotonic()
        return self._validate_in_context(app, row)

    def validate_rows(
        self,
        rows: Sequence[ImportRow],
        *,
        max_workers: int = 1,
        timeout: float | None = None,
        app: Flask | None = None,
    ) -> ImportValidationResult:
        """
        Validate every row, preserving input order.

        Rows are fanned out to ``max_workers`` threads only when an application
        is supplied (each worker pushes its own app context and session) and
        the validator was not bound to an explicit session. A row's deadline
        runs from the moment a worker picks it up. When a row overruns, the
        rows still queued behind it move to a fresh pool.
        """

        self.warm()
        parallel = app is not None and self.session is None and (max_workers > 1 or timeout is not None)
        if not parallel:
            return ImportValidationResult.from_rows([self.validate(row) for row in rows])

        results: dict[int, ValidatedRow] = {}
        pending = list(range(len(rows)))
        while pending:
            executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="row-validate")
            try:
                pending = self._drain(executor, app, rows, pending, results, timeout)
            finally:
                executor.shutdown(wait=False, cancel_futures=True)
        return ImportValidationResult.from_rows([results[index] for index in range(len(rows))])

    def _drain(
        self,
        executor: ThreadPoolExecutor,
        app: Flask,
        rows: Sequence[ImportRow],
        indexes: Sequence[int],
        results: dict[int, ValidatedRow],
        timeout: float | None,
    ) -> list[int]:
        """Run ``indexes`` on ``executor``; return rows that never started because a worker stalled."""

        started: dict[int, float] = {}
        futures: dict[Future, int] = {
            executor.submit(self._validate_timed, app, rows[index], started, index): index for index in indexes
        }
        waiting = set(futures)
        requeue: list[int] = []
        while waiting:
            done, waiting = wait(waiting, timeout=self._next_deadline(waiting, futures, started, timeout))
            for future in done:
                results[futures[future]] = future.result()
            if timeout is None:
                continue
            now = time.monotonic()
            overrun = {future for future in waiting if now - started.get(futures[future], now) >= timeout}
            if not overrun:
                continue
            for future in overrun:
                row = rows[futures[future]]
                timed_out = ValidatedRow(source=row)
                timed_out.add_error(ROW_FIELD, f"Row validation timed out after {timeout:g} seconds")
                results[futures[future]] = timed_out
            waiting -= overrun
            queued = {future for future in waiting if future.cancel()}
            requeue.extend(futures[future] for future in queued)
            waiting -= queued
        return sorted(requeue)

    @staticmethod
    def _next_deadline(
        waiting: Iterable[Future],
        futures: Mapping[Future, int],
        started: Mapping[int, float],
        timeout: float | None,
    ) -> float | None:
        if timeout is None:
            return None
        now = time.monotonic()
        remaining = [started[futures[future]] + timeout - now for future in waiting if futures[future] in started]
        if not remaining:
            return timeout
        return max(0.0, min(remaining))
