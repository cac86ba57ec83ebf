"""Canonical politician position import contract.

Single source of truth for the spreadsheet columns accepted by the importer:
the display header used in templates and error reports, the canonical key
used in code, and the aliases tolerated on upload.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Mapping, Tuple

Normalizer = Callable[[object | None], object | None]


def _strip_string(value: object | None) -> object | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _cell_to_text(value: object | None) -> object | None:
    """Spreadsheet cells arrive typed; keep dates, stringify numbers, strip text."""

    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return _strip_string(str(value))


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a canonical import column."""

    name: str
    header: str
    description: str
    required: bool = False
    aliases: Tuple[str, ...] = ()
    example: str = ""
    normalizer: Normalizer | None = _cell_to_text

    def headers(self) -> Tuple[str, ...]:
        """Return the canonical key, display header, and aliases for validation."""

        return (self.name, self.header, *self.aliases)


POSITION_ROW_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="name",
        header="Name",
        description="Full name of the politician.",
        required=True,
        aliases=("full_name", "politician", "politician_name"),
        example="Juan Dela Cruz",
    ),
    FieldSpec(
        name="position",
        header="Position",
        description="Government position title (see the Valid Positions sheet).",
        required=True,
        aliases=("position_title", "title", "office"),
        example="Governor",
    ),
    FieldSpec(
        name="jurisdiction_type",
        header="Jurisdiction Type",
        description="One of national, region, province, city, barangay, district.",
        required=True,
        aliases=("jurisdiction_level", "level"),
        example="province",
    ),
    FieldSpec(
        name="jurisdiction_name",
        header="Jurisdiction Name",
        description="Name of the region, province, city, barangay, or district.",
        required=True,
        aliases=("jurisdiction", "location"),
        example="Cebu",
    ),
    FieldSpec(
        name="jurisdiction_parent",
        header="Jurisdiction Parent",
        description="Optional parent (region, province, or city) to disambiguate duplicate names.",
        aliases=("parent", "parent_jurisdiction"),
        example="Central Visayas",
    ),
    FieldSpec(
        name="party",
        header="Party",
        description="Political party name or abbreviation. Leave blank for independents.",
        aliases=("political_party", "party_name"),
        example="Nacionalista Party",
    ),
    FieldSpec(
        name="term_start",
        header="Term Start",
        description="Start of term (YYYY-MM-DD).",
        required=True,
        aliases=("start_date", "term_start_date"),
        example="2022-06-30",
    ),
    FieldSpec(
        name="term_end",
        header="Term End",
        description="End of term (YYYY-MM-DD).",
        aliases=("end_date", "term_end_date"),
        example="2025-06-30",
    ),
    FieldSpec(
        name="photo_url",
        header="Photo URL",
        description="Public http(s) URL of a portrait.",
        aliases=("photo", "image_url"),
    ),
    FieldSpec(
        name="short_bio",
        header="Short Bio",
        description="One or two sentence biography.",
        aliases=("bio", "biography"),
    ),
    FieldSpec(
        name="birth_date",
        header="Birth Date",
        description="Date of birth (YYYY-MM-DD).",
        aliases=("dob", "date_of_birth", "birthdate"),
    ),
)


def get_position_field_specs() -> Tuple[FieldSpec, ...]:
    """Return the canonical position row field specifications."""

    return POSITION_ROW_FIELDS


def get_position_required_headers() -> Tuple[str, ...]:
    """Canonical keys that must be present in every sheet."""

    return tuple(field.name for field in POSITION_ROW_FIELDS if field.required)


def get_position_display_headers() -> Tuple[str, ...]:
    """Display headers in template order."""

    return tuple(field.header for field in POSITION_ROW_FIELDS)


def get_position_header_labels() -> Mapping[str, str]:
    """Map canonical keys to display headers."""

    return {field.name: field.header for field in POSITION_ROW_FIELDS}


def get_position_alias_map() -> Mapping[str, str]:
    """Map normalized header tokens to canonical names (includes aliases)."""

    mapping: dict[str, str] = {}
    for field in POSITION_ROW_FIELDS:
        for header in field.headers():
            mapping[normalize_header(header)] = field.name
    return mapping


def normalize_header(header: object | None) -> str:
    """Normalize a header for comparison (case/space/underscore agnostic)."""

    token = str(header or "").strip().lstrip("\ufeff").lower()
    for char in (" ", "-", "."):
        token = token.replace(char, "_")
    while "__" in token:
        token = token.replace("__", "_")
    return token
