"""
Jurisdiction value type shared by position history and the importer.

A jurisdiction is a closed tagged variant: ``National`` carries no reference,
every other kind carries exactly one id into its reference table. The variant
is checked on construction so no caller ever deals with a half-populated set
of nullable foreign keys.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class JurisdictionKind(str, enum.Enum):
    """Discriminant for the jurisdiction variant."""

    NATIONAL = "national"
    REGION = "region"
    PROVINCE = "province"
    CITY = "city"
    BARANGAY = "barangay"
    DISTRICT = "district"

    @classmethod
    def coerce(cls, value: "JurisdictionKind | str") -> "JurisdictionKind":
        if isinstance(value, JurisdictionKind):
            return value
        token = " ".join(str(value or "").strip().lower().replace("_", " ").split())
        token = _KIND_ALIASES.get(token, token)
        try:
            return cls(token)
        except ValueError as exc:
            valid = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Invalid jurisdiction type '{value}'. Expected one of: {valid}.") from exc


_KIND_ALIASES = {
    "nation": "national",
    "nationwide": "national",
    "regional": "region",
    "provincial": "province",
    "municipality": "city",
    "municipal": "city",
    "city/municipality": "city",
    "congressional district": "district",
    "legislative district": "district",
}


@dataclass(frozen=True)
class Jurisdiction:
    """Canonical jurisdiction reference (``National`` or ``<kind>(ref_id)``)."""

    kind: JurisdictionKind
    ref_id: int | None = None

    def __post_init__(self) -> None:
        kind = JurisdictionKind.coerce(self.kind)
        object.__setattr__(self, "kind", kind)
        if kind is JurisdictionKind.NATIONAL:
            if self.ref_id is not None:
                raise ValueError("National jurisdiction does not take a reference id.")
            return
        if self.ref_id is None or isinstance(self.ref_id, bool) or not isinstance(self.ref_id, int):
            raise ValueError(f"{kind.value.title()} jurisdiction requires an integer reference id.")
        if self.ref_id <= 0:
            raise ValueError(f"{kind.value.title()} jurisdiction id must be positive.")

    @classmethod
    def national(cls) -> "Jurisdiction":
        return cls(JurisdictionKind.NATIONAL)

    @classmethod
    def region(cls, region_id: int) -> "Jurisdiction":
        return cls(JurisdictionKind.REGION, region_id)

    @classmethod
    def province(cls, province_id: int) -> "Jurisdiction":
        return cls(JurisdictionKind.PROVINCE, province_id)

    @classmethod
    def city(cls, city_id: int) -> "Jurisdiction":
        return cls(JurisdictionKind.CITY, city_id)

    @classmethod
    def barangay(cls, barangay_id: int) -> "Jurisdiction":
        return cls(JurisdictionKind.BARANGAY, barangay_id)

    @classmethod
    def district(cls, district_id: int) -> "Jurisdiction":
        return cls(JurisdictionKind.DISTRICT, district_id)

    @classmethod
    def from_key(cls, key: str) -> "Jurisdiction":
        """Parse the ``key`` representation (``national`` or ``province:12``)."""

        text = (key or "").strip().lower()
        if text == JurisdictionKind.NATIONAL.value:
            return cls.national()
        kind, sep, raw_id = text.partition(":")
        if not sep:
            raise ValueError(f"Invalid jurisdiction key '{key}'.")
        try:
            ref_id = int(raw_id)
        except ValueError as exc:
            raise ValueError(f"Invalid jurisdiction key '{key}'.") from exc
        return cls(JurisdictionKind.coerce(kind), ref_id)

    @property
    def is_national(self) -> bool:
        return self.kind is JurisdictionKind.NATIONAL

    @property
    def key(self) -> str:
        if self.is_national:
            return JurisdictionKind.NATIONAL.value
        return f"{self.kind.value}:{self.ref_id}"

    def as_dict(self) -> dict[str, object]:
        return {"kind": self.kind.value, "id": self.ref_id, "key": self.key}

    def __str__(self) -> str:
        return self.key
