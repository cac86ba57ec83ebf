from __future__ import annotations

import pytest

from civic_app.importer.errors import FieldValidationError, ResolutionAmbiguous, ResolutionNotFound
from civic_app.importer.pipeline.resolvers import JurisdictionResolver, PartyResolver, PositionResolver
from civic_app.models import Jurisdiction, JurisdictionKind


def test_national_ignores_name(reference):
    match = JurisdictionResolver().resolve("national", "anything at all")

    assert match.jurisdiction == Jurisdiction.national()
    assert match.label == "National"


def test_resolves_province_case_insensitively(reference):
    match = JurisdictionResolver().resolve("Province", "  cebu ")

    assert match.jurisdiction == Jurisdiction.province(reference.provinces.cebu.id)
    assert match.parent_name == "Central Visayas"
    assert match.label == "Cebu (Central Visayas)"


def test_resolves_region_by_code(reference):
    match = JurisdictionResolver().resolve("regional", "VII")

    assert match.jurisdiction == Jurisdiction.region(reference.regions.central.id)


def test_duplicate_names_are_ambiguous_without_parent(reference):
    with pytest.raises(ResolutionAmbiguous) as excinfo:
        JurisdictionResolver().resolve("province", "Some Province")

    error = excinfo.value
    assert error.field == "jurisdiction_name"
    assert set(error.candidates) == {"Some Province (Central Visayas)", "Some Province (Western Visayas)"}


def test_parent_hint_disambiguates(reference):
    match = JurisdictionResolver().resolve("province", "Some Province", "Western Visayas")

    assert match.jurisdiction == Jurisdiction.province(reference.provinces.some_western.id)


def test_wrong_parent_hint_lists_known_parents(reference):
    with pytest.raises(ResolutionNotFound) as excinfo:
        JurisdictionResolver().resolve("province", "Some Province", "Mindanao")

    assert excinfo.value.field == "jurisdiction_parent"
    assert set(excinfo.value.suggestions) == {"Central Visayas", "Western Visayas"}


def test_unknown_jurisdiction_offers_suggestions(reference):
    with pytest.raises(ResolutionNotFound) as excinfo:
        JurisdictionResolver().resolve("city", "Cebu Cty")

    assert excinfo.value.field == "jurisdiction_name"
    assert "Cebu City" in excinfo.value.suggestions


def test_invalid_kind_lists_valid_kinds(reference):
    with pytest.raises(FieldValidationError) as excinfo:
        JurisdictionResolver().resolve("county", "Cebu")

    assert excinfo.value.field == "jurisdiction_type"
    assert "province" in excinfo.value.suggestions


def test_name_required_for_non_national(reference):
    with pytest.raises(FieldValidationError) as excinfo:
        JurisdictionResolver().resolve("province", "   ")

    assert excinfo.value.field == "jurisdiction_name"


def test_district_label_variants(reference):
    resolver = JurisdictionResolver()
    district_id = reference.districts.cebu_first.id

    for label in ("Cebu 1st District", "Cebu District 1", "1st District of Cebu"):
        match = resolver.resolve("district", label)
        assert match.jurisdiction == Jurisdiction(JurisdictionKind.DISTRICT, district_id)


def test_describe_existing_jurisdiction(reference):
    resolver = JurisdictionResolver()

    described = resolver.describe(Jurisdiction.city(reference.cities.cebu.id))
    assert described is not None
    assert described.label == "Cebu City (Cebu)"
    assert resolver.describe(Jurisdiction.city(9999)) is None


def test_position_exact_and_normalized_match(reference):
    resolver = PositionResolver()

    assert resolver.resolve("governor").id == reference.positions.governor.id
    assert resolver.resolve("Vice-Mayor").id == reference.positions.vice_mayor.id
    assert resolver.resolve("barangay-captain").id == reference.positions.barangay_captain.id


def test_position_typo_is_not_auto_corrected(reference):
    with pytest.raises(ResolutionNotFound) as excinfo:
        PositionResolver().resolve("Govenor")

    assert excinfo.value.field == "position"
    assert excinfo.value.suggestions[0] == "Governor"


def test_position_required(reference):
    with pytest.raises(FieldValidationError):
        PositionResolver().resolve(None)


def test_with_levels_filters_snapshot(reference):
    from civic_app.models import PositionLevel

    names = {record.name for record in PositionResolver().with_levels([PositionLevel.PROVINCIAL])}

    assert names == {"Governor", "Vice Governor"}


def test_party_blank_and_independent_mean_none(reference):
    resolver = PartyResolver()

    assert resolver.resolve(None) is None
    assert resolver.resolve("  ") is None
    assert resolver.resolve("Independent") is None


def test_party_by_name_or_abbreviation(reference):
    resolver = PartyResolver()

    assert resolver.resolve("liberal party").id == reference.parties.lp.id
    assert resolver.resolve("NP").id == reference.parties.np.id


def test_unknown_party_suggests(reference):
    with pytest.raises(ResolutionNotFound) as excinfo:
        PartyResolver().resolve("Nacionalsta Party")

    assert excinfo.value.field == "party"
    assert "Nacionalista Party" in excinfo.value.suggestions
