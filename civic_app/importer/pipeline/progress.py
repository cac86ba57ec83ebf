"""
Progress reporting for import runs.

The pipeline emits one ``ImportProgressUpdate`` per processed row to whatever
sink the caller hands it: any callable taking the update. Sinks never see
ORM objects, so they are safe to forward over a queue or socket.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, List

ProgressSink = Callable[["ImportProgressUpdate"], None]
CancellationCheck = Callable[[], bool]


@dataclass(frozen=True)
class ImportProgressUpdate:
    """Snapshot emitted after each row."""

    import_log_id: int | None
    processed_rows: int
    total_rows: int
    successful: int
    failed: int
    current_row: int | None = None
    message: str = ""

    @property
    def percent_complete(self) -> float:
        if self.total_rows <= 0:
            return 100.0
        return round(100.0 * self.processed_rows / self.total_rows, 1)

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["percent_complete"] = self.percent_complete
        return payload


class ListProgressSink:
    """Collects updates in memory (tests, synchronous callers)."""

    def __init__(self) -> None:
        self.updates: List[ImportProgressUpdate] = []

    def __call__(self, update: ImportProgressUpdate) -> None:
        self.updates.append(update)

    @property
    def last(self) -> ImportProgressUpdate | None:
        return self.updates[-1] if self.updates else None


class LoggingProgressSink:
    """Logs every ``every``-th update and the final one."""

    def __init__(self, logger: logging.Logger, *, every: int = 25) -> None:
        self.logger = logger
        self.every = max(1, every)

    def __call__(self, update: ImportProgressUpdate) -> None:
        final = update.processed_rows >= update.total_rows
        if not final and update.processed_rows % self.every:
            return
        self.logger.info(
            "Import %s progress: %s/%s rows (%s ok, %s failed)",
            update.import_log_id,
            update.processed_rows,
            update.total_rows,
            update.successful,
            update.failed,
            extra={"importer_log_id": update.import_log_id, "importer_progress": update.as_dict()},
        )


def fan_out(*sinks: ProgressSink | None) -> ProgressSink:
    """Combine several sinks into one; ``None`` entries are ignored."""

    active = [sink for sink in sinks if sink is not None]

    def _emit(update: ImportProgressUpdate) -> None:
        for sink in active:
            sink(update)

    return _emit
