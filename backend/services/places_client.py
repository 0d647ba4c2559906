"""
Lightweight Places client using Nominatim (OSM) with shared rate limiting and headers.

Serves as the external search provider and the place-detail provider.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import requests

from domain.errors import ProviderUnavailable
from domain.models import CityProfile, Coordinates, PlaceDetails
from services.geocoding import NOMINATIM_BASE_URL, NOMINATIM_HEADERS, _throttled_get
from services.places_types import PlaceResult

MAX_DISPLAY_NAME = 60


def _truncate(value: str) -> str:
    if len(value) > MAX_DISPLAY_NAME:
        return value[: MAX_DISPLAY_NAME - 3] + "…"
    return value


def format_place_display_name(result: PlaceResult) -> str:
    """
    Produce a short display name for a search result row.

    Rules:
    - Prefer a concrete 'name' when Nominatim gives one.
    - Otherwise build "road, suburb" style text from the address details.
    - Otherwise keep the first two parts of Nominatim's display_name.
    - Truncate with '…' past 60 chars.
    """
    if result.name and result.name.strip():
        return _truncate(result.name.strip())

    raw = result.raw or {}
    address = raw.get("address", {})
    if isinstance(address, dict):
        parts = []
        road = address.get("road")
        if road:
            number = address.get("house_number")
            parts.append(f"{number} {road}" if number else str(road))
        for key in ("suburb", "neighbourhood", "city"):
            if len(parts) < 2 and address.get(key):
                parts.append(str(address[key]))
        if parts:
            return _truncate(", ".join(parts))

    display_name = raw.get("display_name", "")
    if display_name:
        parts = [p.strip() for p in display_name.split(",") if p.strip()]
        if parts:
            return _truncate(", ".join(parts[:2]))

    return f"({result.lat:.4f}, {result.lon:.4f})"


def _osm_place_id(item: dict) -> str:
    """'N123' / 'W456' / 'R789', the form /lookup accepts."""
    osm_type = str(item.get("osm_type") or "")
    osm_id = item.get("osm_id")
    if osm_type and osm_id is not None:
        return f"{osm_type[0].upper()}{osm_id}"
    return str(item.get("place_id", ""))


class NominatimPlacesClient:
    def __init__(
        self,
        provider: str = "osm",
        base_url: Optional[str] = None,
        language: str = "fr",
        timeout: float = 5.0,
    ):
        self.provider = provider
        base = base_url or NOMINATIM_BASE_URL
        if base.endswith("/reverse"):
            base = base.rsplit("/", 1)[0]
        self.base_url = base.rstrip("/")
        self.language = language
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def _score_raw_result(self, item: dict) -> tuple:
        venue_classes = {"amenity", "tourism", "leisure", "shop", "place", "aeroway"}
        has_name = bool(item.get("name"))
        cls = item.get("category") or item.get("class")
        importance = float(item.get("importance", 0.0) or 0.0)
        return (
            1 if has_name else 0,
            1 if cls in venue_classes else 0,
            importance,
        )

    def _get_json(self, path: str, params: dict):
        try:
            resp = _throttled_get(
                f"{self.base_url}{path}",
                params=params,
                headers=NOMINATIM_HEADERS,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning("[SEARCH] Nominatim %s failed: %s", path, exc)
            raise ProviderUnavailable(str(exc), provider=self.provider) from exc

    def _to_result(self, item: dict) -> PlaceResult:
        types = [t for t in (item.get("category") or item.get("class"), item.get("type")) if t]
        result = PlaceResult(
            provider=self.provider,
            place_id=_osm_place_id(item),
            name=item.get("name") or "",
            lat=float(item.get("lat", 0.0)),
            lon=float(item.get("lon", 0.0)),
            types=types,
            confidence=float(item.get("importance", 0.0) or 0.0),
            raw=item,
            formatted_address=item.get("display_name"),
        )
        result.display_name = format_place_display_name(result)
        return result

    def search(
        self,
        query: str,
        city: Optional[CityProfile] = None,
        user_coordinates: Optional[Coordinates] = None,
        max_results: int = 8,
    ) -> List[PlaceResult]:
        params = {
            "q": query,
            "format": "jsonv2",
            "addressdetails": "1",
            "limit": str(max_results),
            "accept-language": self.language,
        }
        if city is not None:
            params["countrycodes"] = city.country_code.lower()
            if city.bounds is not None:
                b = city.bounds
                # Bias, not restrict: results outside the box still come back
                params["viewbox"] = f"{b.west},{b.north},{b.east},{b.south}"
        data = self._get_json("/search", params)
        if not isinstance(data, list):
            raise ProviderUnavailable("unexpected search payload", provider=self.provider)

        results: List[PlaceResult] = []
        for item in sorted(data, key=self._score_raw_result, reverse=True)[:max_results]:
            try:
                results.append(self._to_result(item))
            except (TypeError, ValueError):
                self.logger.debug("[SEARCH] skipping malformed Nominatim row: %r", item)
        self.logger.debug("NominatimPlacesClient.search: q=%r got %d results", query, len(results))
        return results

    def get_details(self, place_id: str) -> PlaceDetails:
        data = self._get_json(
            "/lookup",
            {"osm_ids": place_id, "format": "jsonv2", "addressdetails": "1", "accept-language": self.language},
        )
        if not isinstance(data, list) or not data:
            raise ProviderUnavailable(f"no details for {place_id}", provider=self.provider)
        result = self._to_result(data[0])
        return PlaceDetails(
            place_id=place_id,
            name=result.display_name or result.name,
            formatted_address=result.formatted_address or "",
            lat=result.lat,
            lng=result.lon,
            types=result.types,
        )

    async def search_async(self, query, city=None, user_coordinates=None, max_results=8) -> List[PlaceResult]:
        return await asyncio.to_thread(self.search, query, city, user_coordinates, max_results)

    async def get_details_async(self, place_id: str) -> PlaceDetails:
        return await asyncio.to_thread(self.get_details, place_id)
