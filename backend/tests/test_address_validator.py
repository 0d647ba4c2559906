import asyncio

import pytest

from domain.errors import ValidationFailure
from domain.models import AddressComponents
from services.address_validator import (
    AddressResolver,
    AddressValidator,
    build_from_components,
    is_grid_code,
)
from services.city_resolver import CityResolver

from fakes import failing_geocoder, fixed_geocoder


@pytest.fixture
def validator():
    return AddressValidator()


@pytest.mark.parametrize(
    "value",
    [
        "-4.3217, 15.3069",
        "-4.3217,15.3069",
        "5,-4",
        "  -11.6708,  27.4794  ",
    ],
)
def test_rejects_bare_coordinate_pairs(validator, value):
    assert validator.validate(value) is False


@pytest.mark.parametrize(
    "value",
    [
        "QJ2X+9F Kinshasa",
        "6GCRPR6C+24, Gombe, Kinshasa",
        "6GCRPR6C24 Gombe, Kinshasa",
    ],
)
def test_rejects_grid_codes_even_with_city_token(validator, value):
    assert validator.validate(value) is False


def test_rejects_short_and_unknown_strings(validator):
    assert validator.validate("") is False
    assert validator.validate(None) is False
    assert validator.validate("Gombe, RDC") is False  # under 15 chars
    assert validator.validate("123 Main Street, Springfield") is False  # no known token


@pytest.mark.parametrize(
    "value",
    [
        "Avenue X, Gombe, Kinshasa",
        "Boulevard du 30 Juin, Gombe, Kinshasa",
        "Aéroport International de N'djili, Kinshasa",
        "Plateau, Cote d'Ivoire",
        "Rue 12, Cocody, Abidjan",
        "Centre-ville, Lubumbashi, RDC",
    ],
)
def test_accepts_readable_local_addresses(validator, value):
    assert validator.validate(value) is True


def test_token_match_is_accent_insensitive_and_whole_word(validator):
    assert validator.validate("Quartier Adjame Nord, ABIDJAN") is True
    # "congolaise" must not count as "Congo"
    assert validator.validate("Avenue de la Paix congolaise") is False


def test_grid_code_detection_ignores_ordinary_words():
    assert is_grid_code("QJ2X+9F") is True
    assert is_grid_code("Avenue Kabasele Tshamala") is False
    assert is_grid_code("Route N1, Kinshasa") is False


def test_ensure_valid_raises_validation_failure(validator):
    with pytest.raises(ValidationFailure):
        validator.ensure_valid("QJ2X+9F Kinshasa")
    assert validator.ensure_valid("  Avenue X, Gombe, Kinshasa ") == "Avenue X, Gombe, Kinshasa"


def test_build_from_components_priority_order():
    components = AddressComponents(
        street="Avenue X",
        neighborhood="Gombe",
        district="Lukunga",
        city="Kinshasa",
        country=None,
    )
    assert build_from_components(components) == "Avenue X, Gombe, Kinshasa"


def test_build_from_components_falls_back_to_district_and_skips_duplicates():
    components = AddressComponents(
        neighborhood="Kinshasa",
        district="Kinshasa",
        country="République Démocratique du Congo",
    )
    assert build_from_components(components) == "Kinshasa, République Démocratique du Congo"


def test_build_from_components_uses_locale_separator():
    components = AddressComponents(street="Rue 12", city="Abidjan")
    assert build_from_components(components, language="ar") == "Rue 12، Abidjan"
    assert build_from_components(AddressComponents()) == ""


def test_resolver_rebuilds_grid_code_from_components():
    geocoder = fixed_geocoder(
        "QJ2X+9F Kinshasa",
        AddressComponents(street="Avenue X", neighborhood="Gombe", city="Kinshasa"),
    )
    resolver = AddressResolver(CityResolver(), reverse_geocoder=geocoder)

    address = asyncio.run(resolver.resolve(-4.3105, 15.3098))

    assert address == "Avenue X, Gombe, Kinshasa"
    assert geocoder.calls == [(-4.3105, 15.3098, "fr", "CD")]


def test_resolver_keeps_valid_provider_address():
    geocoder = fixed_geocoder("Boulevard du 30 Juin, Gombe, Kinshasa, République Démocratique du Congo")
    resolver = AddressResolver(CityResolver(), reverse_geocoder=geocoder)

    address = asyncio.run(resolver.resolve(-4.3, 15.3))

    assert address.startswith("Boulevard du 30 Juin")


def test_resolver_skips_lookup_for_valid_candidate():
    geocoder = fixed_geocoder("unused")
    resolver = AddressResolver(CityResolver(), reverse_geocoder=geocoder)

    address = asyncio.run(resolver.resolve(-4.3, 15.3, candidate="Marché Central, Gombe, Kinshasa"))

    assert address == "Marché Central, Gombe, Kinshasa"
    assert geocoder.calls == []


def test_resolver_degrades_to_last_known_city():
    cities = CityResolver()
    cities.override("Abidjan")
    resolver = AddressResolver(cities, reverse_geocoder=failing_geocoder, language="en")

    address = asyncio.run(resolver.resolve(5.3, -4.0))

    assert address == "near Abidjan, Côte d'Ivoire"
    assert AddressValidator().validate(address)


def test_resolver_degrades_without_lookup_when_not_allowed():
    geocoder = fixed_geocoder("unused")
    resolver = AddressResolver(CityResolver(), reverse_geocoder=geocoder)

    address = asyncio.run(resolver.resolve(-4.3, 15.3, candidate="-4.3, 15.3", allow_lookup=False))

    assert address == "près de Kinshasa, République Démocratique du Congo"
    assert geocoder.calls == []


def test_resolver_degrades_when_rebuild_is_still_invalid():
    geocoder = fixed_geocoder("QJ2X+9F", AddressComponents(street="QJ2X+9F"))
    resolver = AddressResolver(CityResolver(), reverse_geocoder=geocoder)

    address = asyncio.run(resolver.resolve(-4.3, 15.3))

    assert address.startswith("près de Kinshasa")
