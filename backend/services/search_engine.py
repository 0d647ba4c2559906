"""
Debounced, ranked place search.

Live queries merge the directory (primary) with the external provider
(supplementary) and de-duplicate by normalised name and proximity. Short
queries skip the live path and return the current city's popular places.

Only the most recent query may publish: a newer call cancels the pending
one, and a result that arrives for a superseded query is dropped.
"""
from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from typing import Dict, Iterable, Iterator, List, Optional

from domain.models import CandidateSource, CityProfile, Coordinates, SearchCandidate
from services.city_registry import popular_places
from services.city_resolver import CityResolver
from services.directory_client import DirectoryProvider, text_match_score
from services.geocoding import haversine_m
from services.places_types import DirectoryHit, PlaceResult
from services.text_utils import fold_text, format_distance

logger = logging.getLogger(__name__)

POPULARITY_BONUS = 5.0
PROXIMITY_BONUS_MAX = 10.0
PROXIMITY_RANGE_M = 25_000.0
EXTERNAL_PENALTY = 15.5


def proximity_bonus(distance_m: Optional[float]) -> float:
    if distance_m is None:
        return 0.0
    return PROXIMITY_BONUS_MAX * max(0.0, 1.0 - distance_m / PROXIMITY_RANGE_M)


def rank_key(candidate: SearchCandidate):
    distance = candidate.distance_meters if candidate.distance_meters is not None else math.inf
    return (-candidate.relevance_score, distance, fold_text(candidate.title))


class SearchResults(Sequence):
    """
    Finite, restartable view over ranked candidates.

    Ranking happens on first access; iterating again starts from the top.
    `error` is set when every source failed, `superseded` when a newer query
    replaced this one before it could publish.
    """

    def __init__(
        self,
        candidates: Iterable[SearchCandidate] = (),
        *,
        query: str = "",
        error: bool = False,
        superseded: bool = False,
    ):
        self._source = list(candidates)
        self._ranked: Optional[List[SearchCandidate]] = None
        self.query = query
        self.error = error
        self.superseded = superseded

    def _items(self) -> List[SearchCandidate]:
        if self._ranked is None:
            self._ranked = sorted(self._source, key=rank_key)
        return self._ranked

    def __getitem__(self, index):
        return self._items()[index]

    def __len__(self) -> int:
        return len(self._source)

    def __iter__(self) -> Iterator[SearchCandidate]:
        return iter(self._items())

    def __repr__(self) -> str:
        return f"SearchResults(query={self.query!r}, n={len(self)}, error={self.error}, superseded={self.superseded})"


class SearchEngine:
    def __init__(
        self,
        directory: DirectoryProvider,
        city_resolver: CityResolver,
        external=None,
        *,
        candidate_index: Optional[Dict[str, SearchCandidate]] = None,
        debounce_ms: int = 200,
        min_query_length: int = 2,
        max_results: int = 8,
        dedup_radius_m: float = 500.0,
    ):
        self.directory = directory
        self.city_resolver = city_resolver
        self.external = external
        self.candidate_index: Dict[str, SearchCandidate] = candidate_index if candidate_index is not None else {}
        self.debounce_ms = debounce_ms
        self.min_query_length = min_query_length
        self.max_results = max_results
        self.dedup_radius_m = dedup_radius_m
        self.user_coordinates: Optional[Coordinates] = None
        self.latest = SearchResults()
        self._generation = 0
        self._pending: Optional[asyncio.Task] = None

    def _supersede_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            logger.debug("[SEARCH] superseding pending query")
            self._pending.cancel()
        self._pending = None

    async def search(self, query: Optional[str], user_coordinates: Optional[Coordinates] = None) -> SearchResults:
        self._generation += 1
        generation = self._generation
        self._supersede_pending()

        text = (query or "").strip()
        city = self.city_resolver.current()
        reference = user_coordinates or self.user_coordinates or city.center

        if len(text) < self.min_query_length:
            results = SearchResults(self.popular(city, reference), query=text)
            self._publish(results)
            return results

        task = asyncio.ensure_future(self._debounced(text, city, user_coordinates or self.user_coordinates, reference))
        self._pending = task
        try:
            results = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.debug("[SEARCH] %r superseded", text)
                return SearchResults(query=text, superseded=True)
            raise
        if generation != self._generation:
            logger.debug("[SEARCH] dropping late result for %r", text)
            results.superseded = True
            return results
        self._publish(results)
        return results

    def popular(self, city: CityProfile, reference: Coordinates) -> List[SearchCandidate]:
        candidates = [self._from_directory(hit, reference, score=hit.relevance_score) for hit in popular_places(city.name)]
        return sorted(candidates, key=rank_key)[: self.max_results]

    async def _debounced(self, text: str, city: CityProfile, user_coordinates, reference: Coordinates) -> SearchResults:
        await asyncio.sleep(self.debounce_ms / 1000.0)
        return await self._live(text, city, user_coordinates, reference)

    async def _live(self, text: str, city: CityProfile, user_coordinates, reference: Coordinates) -> SearchResults:
        calls = [self.directory.search(text, city, user_coordinates, self.max_results)]
        if self.external is not None:
            calls.append(self.external.search_async(text, city, user_coordinates, self.max_results))
        outcomes = await asyncio.gather(*calls, return_exceptions=True)

        candidates: List[SearchCandidate] = []
        failures = 0
        directory_hits = outcomes[0]
        if isinstance(directory_hits, BaseException):
            failures += 1
            logger.warning("[SEARCH] directory failed for %r: %s", text, directory_hits)
        else:
            for hit in directory_hits:
                candidates.append(self._from_directory(hit, reference, score=hit.relevance_score))
        if len(outcomes) > 1:
            external_hits = outcomes[1]
            if isinstance(external_hits, BaseException):
                failures += 1
                logger.warning("[SEARCH] external provider failed for %r: %s", text, external_hits)
            else:
                for position, place in enumerate(external_hits):
                    candidates.append(self._from_external(text, place, position, reference))

        merged = self._dedupe(sorted(candidates, key=rank_key))[: self.max_results]
        logger.debug("[SEARCH] %r -> %d candidates (%d source failures)", text, len(merged), failures)
        return SearchResults(merged, query=text, error=failures == len(outcomes))

    def _from_directory(self, hit: DirectoryHit, reference: Coordinates, score: float) -> SearchCandidate:
        distance = hit.distance_meters
        if distance is None:
            distance = haversine_m(reference.lat, reference.lng, hit.lat, hit.lng)
        relevance = score + proximity_bonus(distance)
        if hit.is_popular:
            relevance += POPULARITY_BONUS
        return SearchCandidate(
            id=hit.id,
            title=hit.name,
            subtitle=self._subtitle(hit.subtitle or hit.city or "", distance),
            lat=hit.lat,
            lng=hit.lng,
            source_type=CandidateSource.DIRECTORY,
            relevance_score=round(relevance, 2),
            is_popular=hit.is_popular,
            distance_meters=distance,
            address=hit.address,
            city=hit.city,
        )

    def _from_external(self, text: str, place: PlaceResult, position: int, reference: Coordinates) -> SearchCandidate:
        title = place.display_name or place.name
        address = place.formatted_address or ""
        quality = text_match_score(text, title, address) or max(10.0, 60.0 - position * 5.0)
        distance = haversine_m(reference.lat, reference.lng, place.lat, place.lon)
        relevance = quality + proximity_bonus(distance) - EXTERNAL_PENALTY
        area = ", ".join(part.strip() for part in address.split(",")[1:3] if part.strip())
        return SearchCandidate(
            id=place.place_id,
            title=title,
            subtitle=self._subtitle(area, distance),
            lat=place.lat,
            lng=place.lon,
            source_type=CandidateSource.EXTERNAL,
            relevance_score=round(relevance, 2),
            is_popular=False,
            distance_meters=distance,
            address=address or None,
        )

    @staticmethod
    def _subtitle(area: str, distance: Optional[float]) -> str:
        if distance is None:
            return area
        if not area:
            return format_distance(distance)
        return f"{area} · {format_distance(distance)}"

    def _dedupe(self, ranked: List[SearchCandidate]) -> List[SearchCandidate]:
        """Keep the best-ranked of any same-name candidates within the dedup radius."""
        kept: List[SearchCandidate] = []
        for candidate in ranked:
            name = fold_text(candidate.title)
            duplicate = any(
                fold_text(other.title) == name
                and haversine_m(candidate.lat, candidate.lng, other.lat, other.lng) <= self.dedup_radius_m
                for other in kept
            )
            if not duplicate:
                kept.append(candidate)
        return kept

    def _publish(self, results: SearchResults) -> None:
        self.latest = results
        self.candidate_index.clear()
        for candidate in results:
            self.candidate_index[candidate.id] = candidate

    def reset(self) -> None:
        """Drop the pending query and every published result."""
        self._generation += 1
        self._supersede_pending()
        self.latest = SearchResults()
        self.candidate_index.clear()
