import pytest

from domain.models import Coordinates, ResolvedLocation, SourceType
from services.city_registry import get_city, popular_places
from services.city_resolver import CityResolver
from services.text_utils import fold_text, format_distance


def _location(lat, lng, confidence, source=SourceType.NETWORK):
    return ResolvedLocation(address="", lat=lat, lng=lng, source_type=source, confidence=confidence)


def test_current_defaults_to_configured_city():
    resolver = CityResolver()
    assert resolver.current().name == "Kinshasa"
    assert CityResolver(default_city="abidjan").current().name == "Abidjan"


def test_unknown_default_city_is_rejected():
    with pytest.raises(ValueError):
        CityResolver(default_city="Paris")


def test_detect_picks_city_containing_point():
    resolver = CityResolver()
    assert resolver.detect(Coordinates(5.30, -4.00)).name == "Abidjan"
    assert resolver.detect(Coordinates(-11.66, 27.48)).name == "Lubumbashi"
    assert resolver.last_city.name == "Lubumbashi"


def test_detect_falls_back_to_nearest_centre():
    resolver = CityResolver()
    # Likasi, between Lubumbashi and Kolwezi but closer to Lubumbashi
    assert resolver.detect(Coordinates(-10.98, 26.73)).name == "Lubumbashi"
    # Brazzaville is just across the river from Kinshasa
    assert resolver.detect(Coordinates(-4.2634, 15.2429)).name == "Kinshasa"


def test_detect_without_coordinates_returns_current():
    resolver = CityResolver()
    resolver.override("Kolwezi")
    assert resolver.detect().name == "Kolwezi"


def test_observe_only_refreshes_on_confident_results():
    resolver = CityResolver()
    resolver.observe(_location(5.33, -4.02, confidence=0.5, source=SourceType.DEFAULT))
    assert resolver.last_city is None

    resolver.observe(_location(5.33, -4.02, confidence=0.7))
    assert resolver.current().name == "Abidjan"


def test_override_and_reset():
    resolver = CityResolver()
    assert resolver.override("lubumbashi").name == "Lubumbashi"
    with pytest.raises(KeyError):
        resolver.override("Goma")
    resolver.reset()
    assert resolver.current().name == "Kinshasa"


def test_registry_helpers():
    assert get_city(" KINSHASA ").currency_code == "CDF"
    assert get_city("Abidjan").currency_code == "XOF"
    assert get_city(None) is None
    assert popular_places("Abidjan")[0].id == "abj-airport"
    assert popular_places("Nowhere") == []


def test_fold_text_and_format_distance():
    assert fold_text("  Aéroport  N'Djili ") == "aeroport n djili"
    assert fold_text("Port-Bouët") == "port bouet"
    assert format_distance(850) == "850 m"
    assert format_distance(1234) == "1.2 km"
