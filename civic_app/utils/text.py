"""
Small text helpers shared by models and the importer.
"""

from __future__ import annotations

import re
import unicodedata


def generate_slug(name: str | None, *, fallback: str = "item") -> str:
    """Generate a URL-friendly slug from a name."""
    text = unicodedata.normalize("NFKD", name or "").encode("ascii", "ignore").decode("ascii")
    slug = text.lower()
    # Replace spaces and underscores with hyphens
    slug = re.sub(r"[_\s]+", "-", slug)
    # Remove all non-alphanumeric characters except hyphens
    slug = re.sub(r"[^a-z0-9\-]", "", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")
    return slug or fallback


def collapse_whitespace(value: object | None) -> str:
    """Return ``value`` as a stripped string with internal whitespace collapsed."""
    if value is None:
        return ""
    return " ".join(str(value).split())
