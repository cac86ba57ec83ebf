"""
Resolvers turning free-text spreadsheet values into canonical references.

* ``JurisdictionResolver``: jurisdiction type + name (+ optional parent hint)
  to a ``Jurisdiction`` variant. Never picks the first of several matches.
* ``PositionResolver``: exact, then normalized, then fuzzy suggestions.
* ``PartyResolver``: same strategy, blank means independent.

Resolvers only read. Position and party lists are snapshotted on first use so
batch validation can fan rows out to worker threads without sharing ORM
objects between sessions.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from civic_app.importer.errors import FieldValidationError, ResolutionAmbiguous, ResolutionNotFound
from civic_app.importer.pipeline.fuzzy import (
    DEFAULT_LIMIT,
    DEFAULT_MIN_SCORE,
    compact_label,
    rank_suggestions,
    suggestion_labels,
)
from civic_app.models import (
    Barangay,
    CityMunicipality,
    CongressionalDistrict,
    GovernmentPosition,
    Jurisdiction,
    JurisdictionKind,
    PoliticalParty,
    PositionLevel,
    Province,
    Region,
    db,
)
from civic_app.utils.text import collapse_whitespace

INDEPENDENT_PARTY_TOKENS = frozenset({"independent", "ind", "none", "n/a", "na", "-"})
NATIONAL_LABEL = "National"


@dataclass(frozen=True)
class ResolvedPosition:
    id: int
    name: str
    slug: str
    level: PositionLevel


@dataclass(frozen=True)
class ResolvedParty:
    id: int
    name: str
    abbreviation: str | None


@dataclass(frozen=True)
class JurisdictionMatch:
    jurisdiction: Jurisdiction
    name: str
    parent_name: str | None = None

    @property
    def label(self) -> str:
        return _format_label(self.name, self.parent_name)


def _format_label(name: str, parent_name: str | None) -> str:
    return f"{name} ({parent_name})" if parent_name else name


def _same_label(left: str | None, right: str | None) -> bool:
    return bool(left) and bool(right) and compact_label(left) == compact_label(right)


# ---------------------------------------------------------------------------
# Jurisdictions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _JurisdictionSource:
    model: type
    parent_of: Callable[[object], str | None]
    label: str


def _district_parent(district: CongressionalDistrict) -> str | None:
    if district.city_municipality is not None:
        return district.city_municipality.name
    if district.province is not None:
        return district.province.name
    return None


JURISDICTION_SOURCES: dict[JurisdictionKind, _JurisdictionSource] = {
    JurisdictionKind.REGION: _JurisdictionSource(Region, lambda region: None, "region"),
    JurisdictionKind.PROVINCE: _JurisdictionSource(
        Province, lambda province: province.region.name if province.region else None, "province"
    ),
    JurisdictionKind.CITY: _JurisdictionSource(
        CityMunicipality, lambda city: city.province.name if city.province else None, "city/municipality"
    ),
    JurisdictionKind.BARANGAY: _JurisdictionSource(
        Barangay,
        lambda barangay: barangay.city_municipality.name if barangay.city_municipality else None,
        "barangay",
    ),
    JurisdictionKind.DISTRICT: _JurisdictionSource(CongressionalDistrict, _district_parent, "district"),
}


class JurisdictionResolver:
    """Resolve a jurisdiction type and name to a ``Jurisdiction``."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        min_score: float = DEFAULT_MIN_SCORE,
        limit: int = DEFAULT_LIMIT,
    ) -> None:
        self.session = session or db.session
        self.min_score = min_score
        self.limit = limit

    def resolve(
        self,
        jurisdiction_type: str | JurisdictionKind | None,
        jurisdiction_name: str | None,
        parent_hint: str | None = None,
    ) -> JurisdictionMatch:
        kind = self.coerce_kind(jurisdiction_type)
        if kind is JurisdictionKind.NATIONAL:
            return JurisdictionMatch(Jurisdiction.national(), NATIONAL_LABEL)

        name = collapse_whitespace(jurisdiction_name)
        if not name:
            raise FieldValidationError(
                "Jurisdiction name is required for non-national positions",
                field="jurisdiction_name",
                value=jurisdiction_name,
            )

        source = JURISDICTION_SOURCES[kind]
        matches = self._lookup(kind, source, name)
        hint = collapse_whitespace(parent_hint)
        if hint:
            narrowed = [match for match in matches if _same_label(match.parent_name, hint)]
            if not narrowed and matches:
                raise ResolutionNotFound(
                    f"Jurisdiction '{name}' ({source.label}) not found under '{hint}'",
                    field="jurisdiction_parent",
                    value=parent_hint,
                    suggestions=[match.parent_name for match in matches if match.parent_name],
                )
            matches = narrowed

        if not matches:
            raise ResolutionNotFound(
                f"Jurisdiction '{name}' not found for type '{kind.value}'",
                field="jurisdiction_name",
                value=jurisdiction_name,
                suggestions=self.suggest(kind, name),
            )
        if len(matches) > 1:
            raise ResolutionAmbiguous(
                f"Jurisdiction '{name}' matches {len(matches)} {source.label} records; "
                "set Jurisdiction Parent to choose one",
                field="jurisdiction_name",
                value=jurisdiction_name,
                candidates=[match.label for match in matches],
            )
        return matches[0]

    @staticmethod
    def coerce_kind(jurisdiction_type: str | JurisdictionKind | None) -> JurisdictionKind:
        if isinstance(jurisdiction_type, JurisdictionKind):
            return jurisdiction_type
        if not collapse_whitespace(jurisdiction_type):
            raise FieldValidationError(
                "Jurisdiction type is required",
                field="jurisdiction_type",
                value=jurisdiction_type,
            )
        try:
            return JurisdictionKind.coerce(jurisdiction_type)
        except ValueError as exc:
            raise FieldValidationError(
                f"Invalid jurisdiction type '{jurisdiction_type}'",
                field="jurisdiction_type",
                value=jurisdiction_type,
                suggestions=[kind.value for kind in JurisdictionKind],
            ) from exc

    def describe(self, jurisdiction: Jurisdiction) -> JurisdictionMatch | None:
        """Look up the display name of an already-resolved jurisdiction."""

        if jurisdiction.is_national:
            return JurisdictionMatch(jurisdiction, NATIONAL_LABEL)
        source = JURISDICTION_SOURCES[jurisdiction.kind]
        record = self.session.get(source.model, jurisdiction.ref_id)
        if record is None:
            return None
        return JurisdictionMatch(jurisdiction, record.name, source.parent_of(record))

    def suggest(self, kind: JurisdictionKind, name: str) -> list[str]:
        source = JURISDICTION_SOURCES.get(kind)
        if source is None:
            return []
        labels = self.session.execute(select(source.model.name)).scalars().all()
        return suggestion_labels(rank_suggestions(name, labels, limit=self.limit, min_score=self.min_score))

    def _lookup(self, kind: JurisdictionKind, source: _JurisdictionSource, name: str) -> list[JurisdictionMatch]:
        model = source.model
        lowered = name.lower()
        predicate = func.lower(model.name) == lowered
        if kind is JurisdictionKind.REGION:
            predicate = predicate | (func.lower(Region.code) == lowered)
        records = self.session.execute(select(model).where(predicate).order_by(model.id)).scalars().all()
        if kind is JurisdictionKind.DISTRICT and not records:
            records = self._lookup_district_label(name)
        return [
            JurisdictionMatch(
                Jurisdiction(kind, record.id),
                record.name,
                source.parent_of(record),
            )
            for record in records
        ]

    def _lookup_district_label(self, name: str) -> Sequence[CongressionalDistrict]:
        """Match labels such as ``Cebu 1st District`` or ``Cebu District 1``."""

        wanted = compact_label(name)
        districts = self.session.execute(select(CongressionalDistrict)).scalars().all()
        return [district for district in districts if wanted in _district_labels(district)]


def _ordinal(number: int) -> str:
    if 10 <= number % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")
    return f"{number}{suffix}"


def _district_labels(district: CongressionalDistrict) -> set[str]:
    parent = _district_parent(district) or ""
    number = district.district_number
    variants = {
        district.name,
        f"{parent} {_ordinal(number)} District",
        f"{parent} District {number}",
        f"{_ordinal(number)} District of {parent}",
    }
    return {compact_label(label) for label in variants if label}


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


class _SnapshotResolver:
    """Shared exact -> normalized -> fuzzy matching over a cached record list."""

    field_name = ""
    label = ""

    def __init__(
        self,
        session: Session | None = None,
        *,
        min_score: float = DEFAULT_MIN_SCORE,
        limit: int = DEFAULT_LIMIT,
    ) -> None:
        self.session = session or db.session
        self.min_score = min_score
        self.limit = limit
        self._records: tuple | None = None
        self._lock = threading.Lock()

    def records(self) -> tuple:
        if self._records is None:
            with self._lock:
                if self._records is None:
                    self._records = tuple(self._load())
        return self._records

    def _load(self) -> Iterable:
        raise NotImplementedError

    def _keys(self, record) -> Iterable[str | None]:
        raise NotImplementedError

    def _match(self, text: str):
        records = self.records()
        folded = text.casefold()
        exact = [record for record in records if any(key and key.casefold() == folded for key in self._keys(record))]
        if exact:
            return self._single(exact, text)

        compact = compact_label(text)
        normalized = [
            record for record in records if any(key and compact_label(key) == compact for key in self._keys(record))
        ]
        if normalized:
            return self._single(normalized, text)
        return None

    def _single(self, matches: list, text: str):
        unique = {record.id: record for record in matches}
        if len(unique) > 1:
            raise ResolutionAmbiguous(
                f"{self.label} '{text}' matches more than one record",
                field=self.field_name,
                value=text,
                candidates=sorted(record.name for record in unique.values()),
            )
        return next(iter(unique.values()))

    def suggest(self, text: str, records: Iterable | None = None) -> list[str]:
        pool = self.records() if records is None else records
        candidates = [(record.id, record.name) for record in pool]
        return suggestion_labels(rank_suggestions(text, candidates, limit=self.limit, min_score=self.min_score))


class PositionResolver(_SnapshotResolver):
    """Resolve a position title; never substitutes a fuzzy suggestion."""

    field_name = "position"
    label = "Position"

    def _load(self) -> Iterable[ResolvedPosition]:
        rows = self.session.execute(
            select(GovernmentPosition).order_by(GovernmentPosition.display_order, GovernmentPosition.name)
        ).scalars()
        return [ResolvedPosition(row.id, row.name, row.slug, row.level) for row in rows]

    def _keys(self, record: ResolvedPosition) -> Iterable[str | None]:
        return (record.name, record.slug)

    def resolve(self, value: object | None) -> ResolvedPosition:
        text = collapse_whitespace(value)
        if not text:
            raise FieldValidationError("Position is required", field=self.field_name, value=value)
        match = self._match(text)
        if match is None:
            raise ResolutionNotFound(
                f"Position '{text}' not found",
                field=self.field_name,
                value=value,
                suggestions=self.suggest(text),
            )
        return match

    def get(self, position_id: int) -> ResolvedPosition | None:
        return next((record for record in self.records() if record.id == position_id), None)

    def with_levels(self, levels: Iterable[PositionLevel]) -> list[ResolvedPosition]:
        wanted = set(levels)
        return [record for record in self.records() if record.level in wanted]


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------


class PartyResolver(_SnapshotResolver):
    """Resolve a party name or abbreviation; blank means independent."""

    field_name = "party"
    label = "Party"

    def _load(self) -> Iterable[ResolvedParty]:
        rows = self.session.execute(select(PoliticalParty).order_by(PoliticalParty.name)).scalars()
        return [ResolvedParty(row.id, row.name, row.abbreviation) for row in rows]

    def _keys(self, record: ResolvedParty) -> Iterable[str | None]:
        return (record.name, record.abbreviation)

    def resolve(self, value: object | None) -> ResolvedParty | None:
        text = collapse_whitespace(value)
        if not text:
            return None
        match = self._match(text)
        if match is not None:
            return match
        if text.casefold() in INDEPENDENT_PARTY_TOKENS:
            return None
        raise ResolutionNotFound(
            f"Party '{text}' not found",
            field=self.field_name,
            value=value,
            suggestions=self.suggest(text),
        )
