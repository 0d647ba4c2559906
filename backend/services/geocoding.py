"""Reverse geocoding and great-circle helpers using OpenStreetMap Nominatim.

The HTTP plumbing (session, shared rate limit, identification headers) is
shared with the places client so both stay inside Nominatim's usage policy.
"""

from __future__ import annotations

import logging
import math
import os
import re
import threading
import time
from functools import lru_cache
from typing import Any, Optional

import requests

from domain.errors import ProviderUnavailable
from domain.models import AddressComponents
from services.places_types import ReverseGeocodeResult

NOMINATIM_BASE_URL = os.getenv("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org")
logger = logging.getLogger(__name__)
_session = requests.Session()
_last_request_ts: float = 0.0
_lock = threading.Lock()
_MIN_INTERVAL_SEC = float(os.getenv("NOMINATIM_MIN_INTERVAL", "1.1"))
_logged_ua = False
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT")
NOMINATIM_REFERER = os.getenv("NOMINATIM_REFERER")
EARTH_RADIUS_M = 6_371_000.0

FALLBACK_UA = "position-resolver/0.1 (contact: example@example.com)"
if NOMINATIM_USER_AGENT is None:
    logger.warning(
        "NOMINATIM_USER_AGENT not set in environment; using fallback UA. "
        "This may violate Nominatim usage policy."
    )


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


_ua_value = NOMINATIM_USER_AGENT or FALLBACK_UA
NOMINATIM_HEADERS = {
    "User-Agent": _ua_value,
}
if NOMINATIM_REFERER:
    NOMINATIM_HEADERS["Referer"] = NOMINATIM_REFERER


def _round_coord(value: float, decimals: int = 5) -> float:
    """Round coordinates before lookup to limit request diversity (~1 m)."""
    return round(value, decimals)


def _throttled_get(
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
) -> requests.Response:
    """Perform a GET request with a simple global rate limit."""
    global _last_request_ts
    with _lock:
        now = time.time()
        delta = now - _last_request_ts
        if delta < _MIN_INTERVAL_SEC:
            time.sleep(_MIN_INTERVAL_SEC - delta)
        _last_request_ts = time.time()
    return _session.get(url, params=params, headers=headers, timeout=timeout)


def _log_user_agent_once() -> None:
    global _logged_ua
    if not _logged_ua:
        logger.debug("Nominatim User-Agent: %s", _redact_email(_ua_value))
        _logged_ua = True


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters between two lat/lng points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@lru_cache(maxsize=512)
def reverse_geocode(
    lat: float,
    lng: float,
    language: str = "fr",
    region_hint: Optional[str] = None,
) -> ReverseGeocodeResult:
    """Reverse geocode a coordinate into a formatted address plus components.

    The formatted address is returned as the provider sent it; callers must
    validate it before showing it. Raises ProviderUnavailable on network or
    parsing errors.
    """
    lat_r = _round_coord(lat)
    lng_r = _round_coord(lng)
    _log_user_agent_once()

    params = {
        "format": "jsonv2",
        "lat": str(lat_r),
        "lon": str(lng_r),
        "zoom": "18",
        "addressdetails": "1",
        "accept-language": language,
    }
    if region_hint:
        params["countrycodes"] = region_hint.lower()

    try:
        resp = _throttled_get(
            f"{NOMINATIM_BASE_URL}/reverse", params=params, headers=NOMINATIM_HEADERS, timeout=5.0
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("[GEOCODE] reverse error for lat=%s lng=%s: %s", lat_r, lng_r, exc)
        raise ProviderUnavailable(str(exc), provider="nominatim") from exc

    try:
        data = resp.json()
    except ValueError as exc:
        logger.warning("[GEOCODE] reverse JSON error for lat=%s lng=%s: %s", lat_r, lng_r, exc)
        raise ProviderUnavailable("invalid JSON from reverse geocoder", provider="nominatim") from exc

    if not isinstance(data, dict) or data.get("error"):
        raise ProviderUnavailable(f"no reverse geocode for {lat_r},{lng_r}", provider="nominatim")

    components = AddressComponents.from_nominatim(data.get("address") or {})
    formatted = data.get("display_name") or ""
    logger.debug("[GEOCODE] reverse %s,%s -> %r", lat_r, lng_r, formatted)
    return ReverseGeocodeResult(formatted_address=formatted, components=components)
