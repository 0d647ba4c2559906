import asyncio

import pytest

from domain.models import SensorReading, SourceType
from services.directory_client import LocalDirectory
from services.legacy_location import LegacyLocationAdapter
from services.location_cache import LocationCache
from services.location_session import LocationSession, acquire_options_from_settings
from services.places_types import CoarseFix, PlaceResult

from fakes import (
    FakeLocator,
    FakePlaces,
    ScriptedSensor,
    denied_sensor,
    fast_settings,
    fixed_geocoder,
    kinshasa_fix,
)

GOMBE_ADDRESS = "Avenue X, Gombe, Kinshasa, République Démocratique du Congo"
ABIDJAN_FIX = CoarseFix(provider="ipinfo", lat=5.34, lng=-4.02, city="Abidjan", region="Lagunes", country="Côte d'Ivoire")


def _session(sensor=None, locators=(), places=None, **config):
    return LocationSession(
        sensor if sensor is not None else ScriptedSensor([SensorReading(-4.3105, 15.3098, 15.0)]),
        cache=LocationCache(db_path=":memory:"),
        directory=LocalDirectory(),
        places=places or FakePlaces(),
        locators=list(locators),
        reverse_geocoder=fixed_geocoder(GOMBE_ADDRESS),
        config=fast_settings(**config),
    )


def test_acquire_options_follow_settings():
    options = acquire_options_from_settings(fast_settings(GPS_ATTEMPT_TIMEOUTS=(1.0, 2.0, 3.0, 4.0)))
    assert [a.timeout_seconds for a in options.attempts] == [1.0, 2.0, 3.0, 4.0]
    assert [a.high_accuracy for a in options.attempts] == [True, True, True, False]
    assert options.accept_accuracy_m == 100.0
    assert options.final_accuracy_m == 200.0


def test_resolve_records_position_for_search():
    session = _session()

    location = asyncio.run(session.resolve())

    assert location.source_type == SourceType.DEVICE
    assert session.current is location
    assert session.search_engine.user_coordinates == location.coordinates
    assert session.cache.get() is not None


def test_detected_city_change_clears_search_side_only():
    session = _session(sensor=denied_sensor(), locators=[FakeLocator("ipinfo", ABIDJAN_FIX)])
    asyncio.run(session.search(""))
    assert session.candidate_index

    location = asyncio.run(session.resolve())

    assert location.city == "Abidjan"
    assert session.city.name == "Abidjan"
    assert session.candidate_index == {}


def test_same_city_keeps_search_state():
    session = _session(sensor=denied_sensor(), locators=[FakeLocator("ip-api", kinshasa_fix())])
    asyncio.run(session.search(""))

    asyncio.run(session.resolve())

    assert session.candidate_index


def test_set_city_clears_everything():
    session = _session()
    asyncio.run(session.resolve())
    asyncio.run(session.search(""))

    city = session.set_city("Abidjan")

    assert city.currency_code == "XOF"
    assert session.cache.get() is None
    assert session.candidate_index == {}
    assert session.current is None
    results = asyncio.run(session.search(""))
    assert {c.city for c in results} == {"Abidjan"}


def test_set_city_rejects_unknown_city_without_clearing():
    session = _session()
    asyncio.run(session.resolve())
    with pytest.raises(KeyError):
        session.set_city("Goma")
    assert session.cache.get() is not None


def test_logout_resets_to_default_city():
    session = _session(sensor=denied_sensor(), locators=[FakeLocator("ipinfo", ABIDJAN_FIX)])
    asyncio.run(session.resolve())

    session.logout()

    assert session.city.name == "Kinshasa"
    assert session.current is None


def test_report_requires_reported_sensor():
    session = _session()
    with pytest.raises(TypeError):
        session.report(SensorReading(-4.3, 15.3, 10.0))


def test_reported_fix_drives_device_tier():
    session = LocationSession(
        cache=LocationCache(db_path=":memory:"),
        directory=LocalDirectory(),
        places=FakePlaces(),
        locators=[],
        reverse_geocoder=fixed_geocoder(GOMBE_ADDRESS),
        config=fast_settings(),
    )
    session.report(SensorReading(-4.3105, 15.3098, 30.0))

    location = asyncio.run(session.resolve())

    assert location.source_type == SourceType.DEVICE
    assert location.accuracy_meters == 30.0


def test_legacy_position_shape():
    adapter = LegacyLocationAdapter(_session())

    data = asyncio.run(adapter.get_current_position(timeout=40))

    assert data["type"] == "current"
    assert data["accuracy"] == 15.0
    assert data["address"] == GOMBE_ADDRESS
    assert data["country"] == "CD"


def test_legacy_fallback_switches():
    session = _session(sensor=denied_sensor(), locators=[FakeLocator("ip-api", kinshasa_fix())])
    adapter = LegacyLocationAdapter(session)

    data = asyncio.run(adapter.get_current_position(enable_high_accuracy=False, fallback_to_ip=False))

    assert data["type"] == "database"
    assert data["placeId"] == "kin-center"
    assert "accuracy" not in data


def test_legacy_search_shapes():
    places = FakePlaces(
        [PlaceResult(provider="osm", place_id="N3", name="Aérogare Fret", lat=-4.38, lon=15.44, types=[],
                     confidence=0.3, display_name="Aérogare Fret", formatted_address="Aérogare Fret, Ndjili, Kinshasa")]
    )
    adapter = LegacyLocationAdapter(_session(places=places))

    popular = asyncio.run(adapter.search_location(""))
    live = asyncio.run(adapter.search_location("aero"))

    assert {item["type"] for item in popular} == {"popular"}
    types = {item["placeId"]: item["type"] for item in live}
    assert types["kin-airport"] == "database"
    assert types["N3"] == "geocoded"
    assert all("relevanceScore" in item for item in live)
