from __future__ import annotations

from datetime import date
from io import BytesIO
from types import SimpleNamespace
from typing import Any, Mapping, Sequence

import pytest
from openpyxl import Workbook

from civic_app.importer.contracts import get_position_display_headers
from civic_app.importer.pipeline.import_log import ImportLogRecorder
from civic_app.models import (
    Barangay,
    CityMunicipality,
    CongressionalDistrict,
    ElectionEvent,
    ElectionStatus,
    GovernmentPosition,
    PoliticalParty,
    Politician,
    PositionBranch,
    PositionLevel,
    Province,
    Region,
    db,
)

HEADERS: tuple[str, ...] = get_position_display_headers()


def build_workbook(
    rows: Sequence[Mapping[str, Any]],
    *,
    headers: Sequence[str] = HEADERS,
) -> bytes:
    """Serialize ``rows`` (dicts keyed by header) into an xlsx payload."""

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Politicians"
    sheet.append(list(headers))
    for row in rows:
        sheet.append([row.get(header) for header in headers])
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def position_row(
    name: str,
    position: str,
    jurisdiction_type: str,
    jurisdiction_name: str | None = None,
    *,
    term_start: Any = "2022-06-30",
    **extra: Any,
) -> dict[str, Any]:
    """Row dict using display headers; ``extra`` keys use canonical names (``party=...``)."""

    labels = {
        "jurisdiction_parent": "Jurisdiction Parent",
        "party": "Party",
        "term_end": "Term End",
        "photo_url": "Photo URL",
        "short_bio": "Short Bio",
        "birth_date": "Birth Date",
    }
    row = {
        "Name": name,
        "Position": position,
        "Jurisdiction Type": jurisdiction_type,
        "Jurisdiction Name": jurisdiction_name,
        "Term Start": term_start,
    }
    for key, value in extra.items():
        row[labels[key]] = value
    return row


def _position(name: str, level: PositionLevel, branch: PositionBranch, order: int, term_years: int = 3):
    slug = name.lower().replace(" ", "-")
    return GovernmentPosition(
        name=name,
        slug=slug,
        level=level,
        branch=branch,
        term_years=term_years,
        display_order=order,
    )


@pytest.fixture
def reference(app):
    """Seed a small slice of Philippine reference data."""

    central = Region(name="Central Visayas", slug="central-visayas", code="VII")
    western = Region(name="Western Visayas", slug="western-visayas", code="VI")
    ncr = Region(name="National Capital Region", slug="ncr", code="NCR")
    db.session.add_all([central, western, ncr])
    db.session.flush()

    cebu = Province(name="Cebu", slug="cebu", region=central)
    bohol = Province(name="Bohol", slug="bohol", region=central)
    iloilo = Province(name="Iloilo", slug="iloilo", region=western)
    some_central = Province(name="Some Province", slug="some-province-vii", region=central)
    some_western = Province(name="Some Province", slug="some-province-vi", region=western)
    db.session.add_all([cebu, bohol, iloilo, some_central, some_western])
    db.session.flush()

    cebu_city = CityMunicipality(name="Cebu City", slug="cebu-city", province=cebu, is_city=True)
    tagbilaran = CityMunicipality(name="Tagbilaran City", slug="tagbilaran-city", province=bohol, is_city=True)
    iloilo_city = CityMunicipality(name="Iloilo City", slug="iloilo-city", province=iloilo, is_city=True)
    quezon_city = CityMunicipality(name="Quezon City", slug="quezon-city", province=None, is_city=True)
    db.session.add_all([cebu_city, tagbilaran, iloilo_city, quezon_city])
    db.session.flush()

    lahug = Barangay(name="Lahug", slug="lahug", city_municipality=cebu_city)
    poblacion = Barangay(name="Poblacion", slug="poblacion-tagbilaran", city_municipality=tagbilaran)
    db.session.add_all([lahug, poblacion])

    cebu_first = CongressionalDistrict(name="Cebu 1st District", district_number=1, province=cebu)
    db.session.add(cebu_first)

    positions = {
        "president": _position("President", PositionLevel.NATIONAL, PositionBranch.EXECUTIVE, 1, 6),
        "senator": _position("Senator", PositionLevel.NATIONAL, PositionBranch.LEGISLATIVE, 2, 6),
        "representative": _position("House Representative", PositionLevel.NATIONAL, PositionBranch.LEGISLATIVE, 3),
        "regional_governor": _position("Regional Governor", PositionLevel.REGIONAL, PositionBranch.EXECUTIVE, 4),
        "governor": _position("Governor", PositionLevel.PROVINCIAL, PositionBranch.EXECUTIVE, 5),
        "vice_governor": _position("Vice Governor", PositionLevel.PROVINCIAL, PositionBranch.EXECUTIVE, 6),
        "mayor": _position("Mayor", PositionLevel.CITY, PositionBranch.EXECUTIVE, 7),
        "vice_mayor": _position("Vice Mayor", PositionLevel.CITY, PositionBranch.EXECUTIVE, 8),
        "municipal_mayor": _position("Municipal Mayor", PositionLevel.MUNICIPAL, PositionBranch.EXECUTIVE, 9),
        "barangay_captain": _position("Barangay Captain", PositionLevel.BARANGAY, PositionBranch.EXECUTIVE, 10),
    }
    db.session.add_all(positions.values())

    parties = {
        "np": PoliticalParty(name="Nacionalista Party", slug="nacionalista-party", abbreviation="NP"),
        "lp": PoliticalParty(name="Liberal Party", slug="liberal-party", abbreviation="LP"),
        "pdp": PoliticalParty(name="Partido Demokratiko Pilipino", slug="pdp", abbreviation="PDP"),
        "old": PoliticalParty(name="Old Party", slug="old-party", abbreviation="OP", is_active=False),
    }
    db.session.add_all(parties.values())

    election = ElectionEvent(
        name="2025 Midterm Elections",
        election_date=date(2025, 5, 12),
        level="national",
        status=ElectionStatus.SCHEDULED,
    )
    db.session.add(election)
    db.session.commit()

    return SimpleNamespace(
        regions=SimpleNamespace(central=central, western=western, ncr=ncr),
        provinces=SimpleNamespace(
            cebu=cebu,
            bohol=bohol,
            iloilo=iloilo,
            some_central=some_central,
            some_western=some_western,
        ),
        cities=SimpleNamespace(cebu=cebu_city, tagbilaran=tagbilaran, iloilo=iloilo_city, quezon=quezon_city),
        barangays=SimpleNamespace(lahug=lahug, poblacion=poblacion),
        districts=SimpleNamespace(cebu_first=cebu_first),
        positions=SimpleNamespace(**positions),
        parties=SimpleNamespace(**parties),
        election=election,
    )


@pytest.fixture
def politician_factory(app):
    created: list[Politician] = []

    def _factory(name: str) -> Politician:
        politician = Politician(name=name, slug=f"{name.lower().replace(' ', '-')}-{len(created)}")
        db.session.add(politician)
        db.session.commit()
        created.append(politician)
        return politician

    return _factory


@pytest.fixture
def import_log_factory(app):
    recorder = ImportLogRecorder()

    def _factory(filename: str = "politicians.xlsx", **kwargs):
        return recorder.create(filename, **kwargs)

    return _factory


@pytest.fixture
def make_workbook():
    return build_workbook


@pytest.fixture
def make_row():
    return position_row
