from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from domain.models import CandidateSource, PlaceDetails, SearchCandidate

logger = logging.getLogger(__name__)


class PlaceDetailResolver:
    """
    Resolve a place id picked from search results to coordinates.

    Lookup order: the id map filled by the latest search, then a short-lived
    in-memory cache, then the detail provider. A provider failure yields a
    placeholder with zero coordinates (`PlaceDetails.resolved` is False);
    callers must not treat it as a real point.
    """

    def __init__(
        self,
        provider,
        candidate_index: Optional[Dict[str, SearchCandidate]] = None,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.candidate_index: Dict[str, SearchCandidate] = candidate_index if candidate_index is not None else {}
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cache: Dict[str, Tuple[float, PlaceDetails]] = {}

    async def get_details(self, place_id: str) -> PlaceDetails:
        candidate = self.candidate_index.get(place_id)
        if candidate is not None and not (candidate.lat == 0 and candidate.lng == 0):
            return PlaceDetails(
                place_id=place_id,
                name=candidate.title,
                formatted_address=candidate.address or candidate.subtitle,
                lat=candidate.lat,
                lng=candidate.lng,
            )

        cached = self._cache.get(place_id)
        if cached is not None:
            stored_at, details = cached
            if self.clock() - stored_at <= self.ttl_seconds:
                return details
            del self._cache[place_id]

        try:
            details = await self.provider.get_details_async(place_id)
        except Exception as exc:
            logger.warning("[SEARCH] place details failed for %s: %s", place_id, exc)
            return self._placeholder(place_id, candidate)

        self._cache[place_id] = (self.clock(), details)
        self._remember(details, candidate)
        return details

    def _remember(self, details: PlaceDetails, previous: Optional[SearchCandidate]) -> None:
        if previous is not None:
            previous.lat = details.lat
            previous.lng = details.lng
            previous.address = details.formatted_address or previous.address
            return
        self.candidate_index[details.place_id] = SearchCandidate(
            id=details.place_id,
            title=details.name,
            subtitle=details.formatted_address,
            lat=details.lat,
            lng=details.lng,
            source_type=CandidateSource.EXTERNAL,
            address=details.formatted_address,
        )

    @staticmethod
    def _placeholder(place_id: str, candidate: Optional[SearchCandidate]) -> PlaceDetails:
        return PlaceDetails(
            place_id=place_id,
            name=candidate.title if candidate else place_id,
            formatted_address=(candidate.address or candidate.subtitle) if candidate else "",
            lat=0.0,
            lng=0.0,
        )

    def clear(self) -> None:
        self._cache.clear()
