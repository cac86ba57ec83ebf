"""Importer adapter implementations."""

from __future__ import annotations

from .xlsx_positions import (
    XLSX_EXTENSIONS,
    HeaderValidationResult,
    ImportRow,
    PositionWorkbookAdapter,
    WorkbookStatistics,
    read_import_rows,
)

__all__ = [
    "XLSX_EXTENSIONS",
    "HeaderValidationResult",
    "ImportRow",
    "PositionWorkbookAdapter",
    "WorkbookStatistics",
    "read_import_rows",
]
