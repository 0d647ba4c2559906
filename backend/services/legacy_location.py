"""
Compatibility shim for callers written against the old location hooks.

Old call sites expect camelCase dicts with a `type` field and
`fallbackTo*` switches. Everything is delegated to a LocationSession; no
resolution logic lives here.
"""
from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Optional

from domain.models import CandidateSource, ResolvedLocation, SearchCandidate, SourceType
from services.location_session import LocationSession

LEGACY_TYPES = {
    SourceType.DEVICE: "current",
    SourceType.NETWORK: "ip",
    SourceType.CACHE: "recent",
    SourceType.DIRECTORY: "database",
    SourceType.DEFAULT: "fallback",
}


def location_to_legacy(location: ResolvedLocation, country: Optional[str] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "address": location.address,
        "lat": location.lat,
        "lng": location.lng,
        "type": LEGACY_TYPES[location.source_type],
        "city": location.city,
    }
    if location.place_id:
        data["placeId"] = location.place_id
    if location.accuracy_meters is not None:
        data["accuracy"] = location.accuracy_meters
    if country:
        data["country"] = country
    return data


def candidate_to_legacy(candidate: SearchCandidate, popular_set: bool = False) -> Dict[str, Any]:
    if popular_set:
        kind = "popular"
    elif candidate.source_type == CandidateSource.EXTERNAL:
        kind = "geocoded"
    else:
        kind = "database"
    return {
        "id": candidate.id,
        "address": candidate.address or candidate.title,
        "title": candidate.title,
        "subtitle": candidate.subtitle,
        "lat": candidate.lat,
        "lng": candidate.lng,
        "type": kind,
        "placeId": candidate.id,
        "relevanceScore": candidate.relevance_score,
        "isPopular": candidate.is_popular,
        "city": candidate.city,
    }


class LegacyLocationAdapter:
    def __init__(self, session: LocationSession):
        self.session = session

    async def get_current_position(
        self,
        enable_high_accuracy: bool = True,
        timeout: Optional[float] = None,
        fallback_to_ip: bool = True,
        fallback_to_database: bool = True,
        fallback_to_default: bool = True,
    ) -> Dict[str, Any]:
        """`timeout` is in milliseconds, as the old hooks took it; it caps every attempt."""
        acquire = self.session.acquire_options
        attempts = acquire.attempts
        if not enable_high_accuracy:
            attempts = tuple(dataclasses.replace(a, high_accuracy=False) for a in attempts)
        if timeout is not None:
            cap = timeout / 1000.0
            attempts = tuple(dataclasses.replace(a, timeout_seconds=min(a.timeout_seconds, cap)) for a in attempts)
        options = self.session.resolve_options(
            use_network=fallback_to_ip,
            use_directory=fallback_to_database,
            use_default=fallback_to_default,
        )
        options.acquire = dataclasses.replace(acquire, attempts=attempts)

        location = await self.session.resolve(options)
        return location_to_legacy(location, country=self.session.city.country_code)

    async def search_location(self, query: str) -> List[Dict[str, Any]]:
        results = await self.session.search(query)
        popular_set = len((query or "").strip()) < self.session.search_engine.min_query_length
        return [candidate_to_legacy(c, popular_set=popular_set) for c in results]
