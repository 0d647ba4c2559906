"""
Place directory providers.

The directory is the primary search source and backs the cascade's
directory tier. `DirectoryClient` talks to the remote directory service;
`LocalDirectory` serves the built-in registry of popular places when no
remote directory is configured.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from domain.errors import ProviderUnavailable
from domain.models import CityProfile, Coordinates
from services.city_registry import POPULAR_PLACES
from services.geocoding import haversine_m
from services.places_types import DirectoryHit
from services.text_utils import fold_text

logger = logging.getLogger(__name__)

EXACT_SCORE = 100.0
PREFIX_SCORE = 90.0
WORD_PREFIX_SCORE = 80.0
SUBSTRING_SCORE = 60.0
SUBTITLE_SCORE = 40.0


class DirectoryProvider(ABC):
    @abstractmethod
    async def search(
        self,
        query: str,
        city: CityProfile,
        user_coordinates: Optional[Coordinates] = None,
        max_results: int = 8,
    ) -> List[DirectoryHit]:
        """Ranked hits for `query`, best first."""

    @abstractmethod
    async def representative_point(self, city: CityProfile) -> DirectoryHit:
        """A well-known point standing for the whole city."""


def text_match_score(query: str, name: str, subtitle: Optional[str] = None) -> float:
    """Accent-insensitive text quality of `name` for `query`, 0 when unrelated."""
    q = fold_text(query)
    n = fold_text(name)
    if not q or not n:
        return 0.0
    if n == q:
        return EXACT_SCORE
    if n.startswith(q):
        return PREFIX_SCORE
    if any(word.startswith(q) for word in n.split()):
        return WORD_PREFIX_SCORE
    if q in n:
        return SUBSTRING_SCORE
    if subtitle and q in fold_text(subtitle):
        return SUBTITLE_SCORE
    return 0.0


def _hit_from_json(item: Dict[str, Any]) -> DirectoryHit:
    return DirectoryHit(
        id=str(item["id"]),
        name=str(item["name"]),
        lat=float(item["lat"]),
        lng=float(item["lng"]),
        relevance_score=float(item.get("relevance_score", item.get("relevanceScore", 0.0)) or 0.0),
        city=item.get("city"),
        subtitle=item.get("subtitle"),
        address=item.get("address"),
        is_popular=bool(item.get("is_popular", item.get("isPopular", False))),
        distance_meters=item.get("distance_meters", item.get("distanceMeters")),
    )


class DirectoryClient(DirectoryProvider):
    """Remote directory service speaking JSON over HTTP."""

    def __init__(self, base_url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path: str, payload: Dict[str, Any]) -> List[DirectoryHit]:
        try:
            resp = self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("[SEARCH] directory request %s failed: %s", path, exc)
            raise ProviderUnavailable(str(exc), provider="directory") from exc

        items = data.get("results", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ProviderUnavailable("unexpected directory payload", provider="directory")
        hits: List[DirectoryHit] = []
        for item in items:
            try:
                hits.append(_hit_from_json(item))
            except (KeyError, TypeError, ValueError):
                logger.debug("[SEARCH] skipping malformed directory row: %r", item)
        return hits

    def search_sync(
        self,
        query: str,
        city: CityProfile,
        user_coordinates: Optional[Coordinates] = None,
        max_results: int = 8,
    ) -> List[DirectoryHit]:
        payload: Dict[str, Any] = {
            "query": query,
            "city": city.name,
            "country_code": city.country_code,
            "max_results": max_results,
        }
        if user_coordinates is not None:
            payload["user_coordinates"] = {"lat": user_coordinates.lat, "lng": user_coordinates.lng}
        return self._post("/search", payload)

    async def search(self, query, city, user_coordinates=None, max_results=8):
        return await asyncio.to_thread(self.search_sync, query, city, user_coordinates, max_results)

    async def representative_point(self, city):
        hits = await asyncio.to_thread(self._post, "/representative", {"city": city.name, "country_code": city.country_code})
        if not hits:
            raise ProviderUnavailable(f"no representative point for {city.name}", provider="directory")
        return hits[0]


class LocalDirectory(DirectoryProvider):
    """Directory over the registry's popular places, for deployments without a remote one."""

    def __init__(self, places: Optional[Dict[str, List[DirectoryHit]]] = None):
        self.places = places if places is not None else POPULAR_PLACES

    def _all(self) -> List[DirectoryHit]:
        return [hit for hits in self.places.values() for hit in hits]

    async def search(self, query, city, user_coordinates=None, max_results=8):
        ranked: List[DirectoryHit] = []
        for hit in self._all():
            score = text_match_score(query, hit.name, hit.subtitle)
            if score <= 0:
                continue
            distance = None
            if user_coordinates is not None:
                distance = haversine_m(user_coordinates.lat, user_coordinates.lng, hit.lat, hit.lng)
            ranked.append(
                DirectoryHit(
                    id=hit.id,
                    name=hit.name,
                    lat=hit.lat,
                    lng=hit.lng,
                    relevance_score=score,
                    city=hit.city,
                    subtitle=hit.subtitle,
                    address=hit.address,
                    is_popular=hit.is_popular,
                    distance_meters=distance,
                )
            )
        ranked.sort(key=lambda h: (-h.relevance_score, h.city != city.name, h.name))
        return ranked[:max_results]

    async def representative_point(self, city):
        hits = self.places.get(city.name) or []
        if not hits:
            raise ProviderUnavailable(f"no places known for {city.name}", provider="directory")
        return min(hits, key=lambda h: haversine_m(city.center.lat, city.center.lng, h.lat, h.lng))
