"""Importer pipeline helpers."""

from __future__ import annotations

from .fuzzy import Suggestion, rank_suggestions
from .import_log import ImportCounters, ImportLogFilters, ImportLogRecorder, ImportLogSummary
from .import_pipeline import ImportPipeline, ImportRunResult
from .position_history import (
    AssignmentOutcome,
    AssignPositionRequest,
    PoliticianPositionTimeline,
    PositionHistoryStore,
)
from .progress import ImportProgressUpdate, ListProgressSink, LoggingProgressSink
from .resolvers import JurisdictionResolver, PartyResolver, PositionResolver
from .validation import ImportValidationResult, RowValidator, ValidatedRow, ValidationError

__all__ = [
    "AssignPositionRequest",
    "AssignmentOutcome",
    "ImportCounters",
    "ImportLogFilters",
    "ImportLogRecorder",
    "ImportLogSummary",
    "ImportPipeline",
    "ImportProgressUpdate",
    "ImportRunResult",
    "ImportValidationResult",
    "JurisdictionResolver",
    "ListProgressSink",
    "LoggingProgressSink",
    "PartyResolver",
    "PoliticianPositionTimeline",
    "PositionHistoryStore",
    "PositionResolver",
    "RowValidator",
    "Suggestion",
    "ValidatedRow",
    "ValidationError",
    "rank_suggestions",
]
