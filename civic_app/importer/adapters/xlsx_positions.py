"""Spreadsheet adapter for politician position imports.

Reads the first worksheet of an xlsx upload with openpyxl, validates the
header row against the position contract, and yields typed ``ImportRow``
values. Anything that prevents reading rows at all is a ``MalformedFile``;
everything else is left for the row validator.
"""

from __future__ import annotations

import zipfile
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import IO, Iterator, Mapping, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from civic_app.importer.contracts import (
    FieldSpec,
    get_position_alias_map,
    get_position_field_specs,
    get_position_header_labels,
    get_position_required_headers,
)
from civic_app.importer.contracts.position_row import normalize_header
from civic_app.importer.errors import MalformedFile

XLSX_EXTENSIONS: tuple[str, ...] = ("xlsx", "xlsm")


@dataclass(frozen=True)
class ImportRow:
    """Raw parsed spreadsheet row (header is row 1, so data starts at row 2)."""

    row_number: int
    name: str | None = None
    position: str | None = None
    jurisdiction_type: str | None = None
    jurisdiction_name: str | None = None
    jurisdiction_parent: str | None = None
    party: str | None = None
    term_start: object | None = None
    term_end: object | None = None
    photo_url: str | None = None
    short_bio: str | None = None
    birth_date: object | None = None
    raw: Mapping[str, object | None] = field(default_factory=dict, compare=False)

    @classmethod
    def from_mapping(
        cls,
        row_number: int,
        values: Mapping[str, object | None],
        *,
        raw: Mapping[str, object | None] | None = None,
    ) -> "ImportRow":
        known = {f.name for f in fields(cls)} - {"row_number", "raw"}
        payload = {key: value for key, value in values.items() if key in known}
        return cls(row_number=row_number, raw=dict(raw if raw is not None else values), **payload)

    def get(self, field_name: str) -> object | None:
        return getattr(self, field_name, None)

    def as_dict(self) -> dict[str, object | None]:
        """Canonical, JSON-friendly payload (dates rendered ISO-8601)."""

        payload: dict[str, object | None] = {}
        for spec in get_position_field_specs():
            value = self.get(spec.name)
            if isinstance(value, datetime):
                value = value.date().isoformat()
            elif isinstance(value, date):
                value = value.isoformat()
            payload[spec.name] = value
        return payload


@dataclass(frozen=True)
class HeaderValidationResult:
    raw_headers: tuple[str, ...]
    canonical_headers: tuple[str | None, ...]
    unexpected: tuple[str, ...] = ()


@dataclass
class WorkbookStatistics:
    """Accumulated statistics from sheet parsing."""

    rows_processed: int = 0
    rows_skipped_blank: int = 0


def _sanitize_header(header: object | None) -> str:
    token = "" if header is None else str(header).strip()
    return token.lstrip("\ufeff")


def _validate_headers(raw_headers: Sequence[object | None]) -> HeaderValidationResult:
    sanitized = tuple(_sanitize_header(header) for header in raw_headers)
    alias_map = get_position_alias_map()
    labels = get_position_header_labels()
    seen: set[str] = set()
    duplicates: list[str] = []
    unexpected: list[str] = []
    canonical: list[str | None] = []

    for header in sanitized:
        if not header:
            canonical.append(None)
            continue
        key = alias_map.get(normalize_header(header))
        if key is None:
            unexpected.append(header)
            canonical.append(None)
            continue
        if key in seen:
            duplicates.append(labels[key])
            canonical.append(None)
            continue
        seen.add(key)
        canonical.append(key)

    missing = [labels[key] for key in get_position_required_headers() if key not in seen]
    if missing:
        raise MalformedFile(
            f"Missing required columns: {', '.join(missing)}.",
            missing_columns=missing,
        )
    if duplicates:
        raise MalformedFile(f"Duplicate columns detected: {', '.join(sorted(set(duplicates)))}.")

    return HeaderValidationResult(
        raw_headers=sanitized,
        canonical_headers=tuple(canonical),
        unexpected=tuple(unexpected),
    )


def _row_is_blank(values: Sequence[object | None]) -> bool:
    return all(value is None or (isinstance(value, str) and value.strip() == "") for value in values)


def _open_source(source: bytes | bytearray | IO[bytes] | str | Path) -> IO[bytes] | str:
    if isinstance(source, (bytes, bytearray)):
        if not source:
            raise MalformedFile("Uploaded file is empty.")
        return BytesIO(bytes(source))
    if isinstance(source, Path):
        return str(source)
    return source


class PositionWorkbookAdapter:
    """Workbook reader that enforces the position import contract."""

    def __init__(
        self,
        source: bytes | bytearray | IO[bytes] | str | Path,
        *,
        skip_blank_rows: bool = True,
    ) -> None:
        self._source = source
        self.skip_blank_rows = skip_blank_rows
        self._header_result: HeaderValidationResult | None = None
        self.statistics = WorkbookStatistics()
        self._field_specs: dict[str, FieldSpec] = {spec.name: spec for spec in get_position_field_specs()}

    @property
    def header(self) -> HeaderValidationResult | None:
        return self._header_result

    def _load_rows(self) -> list[tuple[object | None, ...]]:
        try:
            workbook = load_workbook(_open_source(self._source), read_only=True, data_only=True)
        except MalformedFile:
            raise
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
            raise MalformedFile(f"Failed to read Excel file: {exc}") from exc

        try:
            if not workbook.worksheets:
                raise MalformedFile("Workbook does not contain any sheets.")
            sheet = workbook.worksheets[0]
            return [tuple(row) for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()

    def iter_rows(self) -> Iterator[ImportRow]:
        rows = self._load_rows()
        if len(rows) < 2:
            raise MalformedFile("Excel file must have at least a header row and one data row.")

        header_result = _validate_headers(rows[0])
        self._header_result = header_result

        for row_number, cells in enumerate(rows[1:], start=2):
            if self.skip_blank_rows and _row_is_blank(cells):
                self.statistics.rows_skipped_blank += 1
                continue

            raw: dict[str, object | None] = {}
            values: dict[str, object | None] = {}
            for index, header in enumerate(header_result.raw_headers):
                if not header:
                    continue
                cell = cells[index] if index < len(cells) else None
                raw[header] = cell
                key = header_result.canonical_headers[index]
                if key is not None:
                    values[key] = self._normalize(key, cell)

            self.statistics.rows_processed += 1
            yield ImportRow.from_mapping(row_number, values, raw=raw)

    def read_rows(self) -> list[ImportRow]:
        """Read every data row, failing when the sheet holds no data at all."""

        rows = list(self.iter_rows())
        if not rows:
            raise MalformedFile("No valid data rows found.")
        return rows

    def _normalize(self, key: str, value: object | None) -> object | None:
        spec = self._field_specs.get(key)
        if spec is None or spec.normalizer is None:
            return value
        return spec.normalizer(value)


def read_import_rows(source: bytes | bytearray | IO[bytes] | str | Path) -> tuple[list[ImportRow], tuple[str, ...]]:
    """Convenience wrapper returning rows plus the uploaded header order."""

    adapter = PositionWorkbookAdapter(source)
    rows = adapter.read_rows()
    headers = tuple(header for header in adapter.header.raw_headers if header) if adapter.header else ()
    return rows, headers
