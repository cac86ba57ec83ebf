"""
Error taxonomy for position history and the politician importer.

Row-scoped errors (field, resolution, constraint, transient) are collected
against the offending row and never abort a batch; ``MalformedFile`` is the
only batch-fatal error.
"""

from __future__ import annotations

from typing import Sequence


class ImporterError(Exception):
    """Base exception for importer and position history failures."""


class RowScopedError(ImporterError):
    """An error attributable to a single field of a single input row."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: object | None = None,
        suggestions: Sequence[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value
        self.suggestions = tuple(suggestions or ())


class FieldValidationError(RowScopedError):
    """Malformed or missing value."""


class ResolutionNotFound(RowScopedError):
    """Free text did not resolve to a canonical record; carries suggestions."""


class ResolutionAmbiguous(RowScopedError):
    """Free text matched more than one canonical record."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: object | None = None,
        candidates: Sequence[str] | None = None,
    ) -> None:
        super().__init__(message, field=field, value=value, suggestions=candidates)

    @property
    def candidates(self) -> tuple[str, ...]:
        return self.suggestions


class ConstraintViolation(ImporterError):
    """The store refused a write that would break a position history invariant."""


class TransientStoreError(ImporterError):
    """Retryable storage or lookup failure (lock timeout, dropped connection, row timeout)."""


class RowTimeout(TransientStoreError):
    """A row overran ``IMPORTER_ROW_TIMEOUT_SECONDS``; the worker running it is still busy."""


class MalformedFile(ImporterError):
    """The uploaded file cannot be read as an import sheet."""

    def __init__(self, message: str, *, missing_columns: Sequence[str] | None = None) -> None:
        super().__init__(message)
        self.missing_columns = tuple(missing_columns or ())
