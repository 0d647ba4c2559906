from unittest.mock import MagicMock, patch

import pytest
import requests

from domain.errors import ProviderUnavailable
from services.geocoding import (
    _redact_email,
    haversine_m,
    reverse_geocode,
)
from services.places_types import ReverseGeocodeResult


@pytest.fixture(autouse=True)
def clear_cache():
    reverse_geocode.cache_clear()
    yield
    reverse_geocode.cache_clear()


def test_haversine_known_distance():
    # Kinshasa centre to N'djili airport, ~16 km
    d = haversine_m(-4.3217, 15.3069, -4.3856, 15.4446)
    assert 16_000 < d < 17_500
    assert haversine_m(5.0, -4.0, 5.0, -4.0) == 0.0


def test_redact_email():
    assert _redact_email("resolver/1.0 (ops@example.org)") == "resolver/1.0 <redacted>"
    assert _redact_email("resolver/1.0") == "resolver/1.0"


@patch("services.geocoding._session.get")
def test_reverse_geocode_parses_components(mock_get):
    mock_resp = MagicMock()
    mock_resp.json.return_value = {
        "display_name": "QJ2X+9F Kinshasa",
        "address": {
            "house_number": "12",
            "road": "Avenue X",
            "suburb": "Gombe",
            "city_district": "Lukunga",
            "city": "Kinshasa",
            "country": "République démocratique du Congo",
        },
    }
    mock_resp.raise_for_status.return_value = None
    mock_get.return_value = mock_resp

    result = reverse_geocode(-4.31051234, 15.30981234, "fr", "CD")

    assert isinstance(result, ReverseGeocodeResult)
    assert result.formatted_address == "QJ2X+9F Kinshasa"
    assert result.components.street == "12 Avenue X"
    assert result.components.neighborhood == "Gombe"
    assert result.components.district == "Lukunga"
    assert result.components.city == "Kinshasa"

    params = mock_get.call_args.kwargs["params"]
    assert params["lat"] == "-4.31051"
    assert params["countrycodes"] == "cd"
    assert params["accept-language"] == "fr"
    assert mock_get.call_args.args[0].endswith("/reverse")


@patch("services.geocoding._session.get")
def test_reverse_geocode_error_payload_raises(mock_get):
    mock_resp = MagicMock()
    mock_resp.json.return_value = {"error": "Unable to geocode"}
    mock_resp.raise_for_status.return_value = None
    mock_get.return_value = mock_resp

    with pytest.raises(ProviderUnavailable):
        reverse_geocode(1.0, 1.0)


@patch("services.geocoding._session.get")
def test_reverse_geocode_http_error_raises(mock_get):
    mock_get.side_effect = requests.Timeout("slow")
    with pytest.raises(ProviderUnavailable) as excinfo:
        reverse_geocode(2.0, 2.0)
    assert excinfo.value.provider == "nominatim"


@patch("services.geocoding._session.get")
def test_reverse_geocode_is_memoised(mock_get):
    mock_resp = MagicMock()
    mock_resp.json.return_value = {"display_name": "Gombe, Kinshasa", "address": {"city": "Kinshasa"}}
    mock_resp.raise_for_status.return_value = None
    mock_get.return_value = mock_resp

    reverse_geocode(-4.3, 15.3)
    reverse_geocode(-4.3, 15.3)

    assert mock_get.call_count == 1
