"""Prometheus metrics helpers for the politician importer and position history store."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_importer_enabled_gauge = Gauge(
    "politician_importer_enabled",
    "Whether the politician importer is enabled (1) or disabled (0).",
)
_import_runs_counter = Counter(
    "politician_import_runs_total",
    "Politician import runs by mode and final status.",
    ["mode", "status"],
)
_import_run_duration = Histogram(
    "politician_import_run_duration_seconds",
    "Duration of politician import runs in seconds.",
    ["mode"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)
_import_rows_counter = Counter(
    "politician_import_rows_total",
    "Import rows processed by outcome.",
    ["outcome"],
)
_row_retry_counter = Counter(
    "politician_import_row_retries_total",
    "Rows retried after a transient store error.",
)
_assignment_counter = Counter(
    "position_history_assignments_total",
    "Position assignments by outcome.",
    ["outcome"],
)
_resolution_failures = Counter(
    "politician_import_resolution_failures_total",
    "Row validation errors by field.",
    ["field"],
)


def record_importer_enabled(enabled: bool) -> None:
    """Set the importer enabled gauge."""

    _importer_enabled_gauge.set(1 if enabled else 0)


def record_import_run(
    *,
    mode: Literal["validate", "commit"],
    status: str,
    duration_seconds: float | None = None,
) -> None:
    """Capture run-level metrics once an import leaves ``processing``."""

    _import_runs_counter.labels(mode=mode, status=status).inc()
    if duration_seconds is not None:
        _import_run_duration.labels(mode=mode).observe(max(duration_seconds, 0.0))


def record_import_row(outcome: Literal["success", "failed", "skipped"]) -> None:
    _import_rows_counter.labels(outcome=outcome).inc()


def record_row_retry() -> None:
    _row_retry_counter.inc()


def record_assignment(outcome: Literal["created", "updated", "superseded", "conflict"]) -> None:
    """Increment the position assignment counter."""

    _assignment_counter.labels(outcome=outcome).inc()


def record_resolution_failure(field: str, count: int = 1) -> None:
    if count <= 0:
        return
    _resolution_failures.labels(field=field or "row").inc(count)
