"""Canonical import contract helpers for importer adapters."""

from __future__ import annotations

from .position_row import (
    POSITION_ROW_FIELDS,
    FieldSpec,
    get_position_alias_map,
    get_position_display_headers,
    get_position_field_specs,
    get_position_header_labels,
    get_position_required_headers,
    normalize_header,
)

__all__ = [
    "FieldSpec",
    "POSITION_ROW_FIELDS",
    "get_position_field_specs",
    "get_position_required_headers",
    "get_position_display_headers",
    "get_position_header_labels",
    "get_position_alias_map",
    "normalize_header",
]
