"""
Spreadsheet outputs for the politician importer.

* ``build_error_report`` turns a finished ``ImportLog`` into a workbook whose
  first sheet has the same columns as the uploaded file plus ``Errors`` and
  ``Suggestions``, so users can fix the failed rows and upload them again.
* ``parse_error_report`` reads the "Error Details" sheet back.
* ``generate_template`` builds a blank upload template with the currently
  valid positions and parties listed on reference sheets.
"""

from __future__ import annotations

import zipfile
from collections import OrderedDict
from io import BytesIO
from typing import Any, Iterable, Mapping, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy import select
from sqlalchemy.orm import Session

from civic_app.importer.contracts import get_position_display_headers, get_position_field_specs
from civic_app.importer.errors import MalformedFile
from civic_app.importer.pipeline.validation import ValidationError
from civic_app.models import GovernmentPosition, ImportLog, PoliticalParty, db

ERRORS_SHEET = "Import Errors"
DETAILS_SHEET = "Error Details"
SUMMARY_SHEET = "Summary"
TEMPLATE_SHEET = "Politicians"
POSITIONS_SHEET = "Valid Positions"
PARTIES_SHEET = "Valid Parties"
INSTRUCTIONS_SHEET = "Instructions"

DETAIL_HEADERS: tuple[str, ...] = ("Row", "Field", "Error", "Value", "Suggestions")
SUGGESTION_SEPARATOR = "; "

_HEADER_FONT = Font(bold=True, color="FFFFFF")
_HEADER_FILL = PatternFill("solid", fgColor="1F4E78")
_ERROR_FILL = PatternFill("solid", fgColor="FCE4D6")


def _write_header(sheet, headers: Sequence[str]) -> None:
    sheet.append(list(headers))
    for cell in sheet[1]:
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
    sheet.freeze_panes = "A2"


def _autosize(sheet, *, maximum: int = 60) -> None:
    widths: dict[int, int] = {}
    for row in sheet.iter_rows():
        for cell in row:
            if cell.value is None:
                continue
            widths[cell.column] = max(widths.get(cell.column, 0), len(str(cell.value)))
    for column, width in widths.items():
        sheet.column_dimensions[get_column_letter(column)].width = min(max(width + 2, 10), maximum)


def _to_bytes(workbook: Workbook) -> bytes:
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _group_errors(errors: Iterable[Mapping[str, Any]]) -> "OrderedDict[int, list[ValidationError]]":
    grouped: OrderedDict[int, list[ValidationError]] = OrderedDict()
    for payload in errors:
        error = ValidationError.from_dict(payload)
        grouped.setdefault(error.row, []).append(error)
    return grouped


def _format_errors(errors: Sequence[ValidationError]) -> str:
    return "\n".join(f"{error.field}: {error.message}" for error in errors)


def _format_suggestions(errors: Sequence[ValidationError]) -> str:
    parts = [
        f"{error.field}: {', '.join(error.suggestions)}"
        for error in errors
        if error.suggestions
    ]
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Error report
# ---------------------------------------------------------------------------


def build_error_report(log: ImportLog) -> bytes:
    """Render the accumulated row errors of ``log`` as an xlsx workbook."""

    grouped = _group_errors(log.validation_errors or [])
    failed_rows = {
        int(item.get("row") or 0): dict(item.get("values") or {})
        for item in (log.failed_rows_json or [])
    }
    headers = list(log.source_headers_json or get_position_display_headers())

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = ERRORS_SHEET
    _write_header(sheet, [*headers, "Errors", "Suggestions"])
    wrap = Alignment(wrap_text=True, vertical="top")
    for row_number, errors in grouped.items():
        values = failed_rows.get(row_number, {})
        sheet.append(
            [values.get(header) for header in headers]
            + [_format_errors(errors), _format_suggestions(errors)]
        )
        for cell in sheet[sheet.max_row][len(headers):]:
            cell.alignment = wrap
            cell.fill = _ERROR_FILL
    _autosize(sheet)

    details = workbook.create_sheet(DETAILS_SHEET)
    _write_header(details, DETAIL_HEADERS)
    for errors in grouped.values():
        for error in errors:
            details.append(
                [
                    error.row,
                    error.field,
                    error.message,
                    error.value,
                    SUGGESTION_SEPARATOR.join(error.suggestions),
                ]
            )
    _autosize(details)

    summary = workbook.create_sheet(SUMMARY_SHEET)
    _write_header(summary, ("Metric", "Value"))
    for label, value in (
        ("Import ID", log.id),
        ("Filename", log.filename),
        ("Status", log.status.value if log.status else None),
        ("Validate Only", "yes" if log.dry_run else "no"),
        ("Total Rows", log.total_rows),
        ("Successful Imports", log.successful_imports),
        ("Failed Imports", log.failed_imports),
        ("Politicians Created", log.politicians_created),
        ("Politicians Updated", log.politicians_updated),
        ("Positions Archived", log.positions_archived),
        ("Cancelled", "yes" if log.was_cancelled else "no"),
        ("Started At", log.started_at.isoformat() if log.started_at else None),
        ("Completed At", log.completed_at.isoformat() if log.completed_at else None),
        ("Error", log.error_log),
    ):
        summary.append([label, value])
    _autosize(summary)

    return _to_bytes(workbook)


def parse_error_report(content: bytes) -> list[ValidationError]:
    """Read the "Error Details" sheet of a report produced by ``build_error_report``."""

    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, OSError, KeyError, ValueError) as exc:
        raise MalformedFile(f"Failed to read error report: {exc}") from exc

    try:
        if DETAILS_SHEET not in workbook.sheetnames:
            raise MalformedFile(f"Error report is missing the '{DETAILS_SHEET}' sheet.")
        rows = list(workbook[DETAILS_SHEET].iter_rows(values_only=True))
    finally:
        workbook.close()

    errors: list[ValidationError] = []
    for values in rows[1:]:
        if not values or values[0] is None:
            continue
        row, field_name, message, value, suggestions = (list(values) + [None] * 5)[:5]
        errors.append(
            ValidationError(
                row=int(row),
                field=str(field_name or ""),
                message=str(message or ""),
                value=None if value is None else str(value),
                suggestions=tuple(
                    part for part in str(suggestions or "").split(SUGGESTION_SEPARATOR) if part
                ),
            )
        )
    return errors


# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------


def generate_template(session: Session | None = None) -> bytes:
    """Build the upload template with reference sheets for positions and parties."""

    session = session or db.session
    specs = get_position_field_specs()

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = TEMPLATE_SHEET
    _write_header(sheet, [spec.header for spec in specs])
    sheet.append([spec.example or None for spec in specs])
    _autosize(sheet)

    positions = workbook.create_sheet(POSITIONS_SHEET)
    _write_header(positions, ("Position", "Level", "Branch", "Term (years)"))
    for position in session.execute(
        select(GovernmentPosition).order_by(GovernmentPosition.display_order, GovernmentPosition.name)
    ).scalars():
        positions.append(
            [
                position.name,
                position.level.value if position.level else None,
                position.branch.value if position.branch else None,
                position.term_years,
            ]
        )
    _autosize(positions)

    parties = workbook.create_sheet(PARTIES_SHEET)
    _write_header(parties, ("Party", "Abbreviation"))
    for party in session.execute(
        select(PoliticalParty).where(PoliticalParty.is_active.is_(True)).order_by(PoliticalParty.name)
    ).scalars():
        parties.append([party.name, party.abbreviation])
    _autosize(parties)

    instructions = workbook.create_sheet(INSTRUCTIONS_SHEET)
    _write_header(instructions, ("Column", "Required", "Description", "Example"))
    for spec in specs:
        instructions.append([spec.header, "yes" if spec.required else "no", spec.description, spec.example or None])
    instructions.append([])
    instructions.append(["Dates use the YYYY-MM-DD format. Leave Party blank for independent candidates."])
    instructions.append(["Delete the example row before uploading."])
    _autosize(instructions, maximum=80)

    return _to_bytes(workbook)
