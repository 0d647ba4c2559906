"""
One user's resolution engine and the state it owns.

The session is the only holder of mutable location state: the location
cache, the id map shared by search and place details, the place-detail
cache and the pending search. Nothing here is module-level, so two
sessions never see each other's data.

Store lifecycle:
- created empty at session start (the cache runs its startup sweep);
- an automatically detected city change clears the search side;
- `set_city` and `logout` clear everything, location cache included.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

from domain.models import (
    AcquireAttempt,
    AcquireOptions,
    CityProfile,
    PlaceDetails,
    ResolvedLocation,
    ResolveOptions,
    SearchCandidate,
    SensorReading,
)
from services.address_validator import AddressResolver
from services.city_resolver import CityResolver
from services.directory_client import DirectoryClient, DirectoryProvider, LocalDirectory
from services.fallback_cascade import FallbackCascade
from services.location_cache import LocationCache
from services.network_locator import NetworkLocator, default_locators
from services.place_details import PlaceDetailResolver
from services.places_client import NominatimPlacesClient
from services.position_acquirer import (
    CancellationToken,
    PositionAcquirer,
    PositionSensor,
    ReportedPositionSensor,
)
from services.search_engine import SearchEngine, SearchResults
from settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def acquire_options_from_settings(config: Settings) -> AcquireOptions:
    timeouts = config.GPS_ATTEMPT_TIMEOUTS
    attempts = tuple(
        AcquireAttempt(
            timeout_seconds=timeout,
            # the last rung drops to low-power mode
            high_accuracy=index < len(timeouts) - 1,
            maximum_age_seconds=config.GPS_MAXIMUM_AGE_SECONDS,
        )
        for index, timeout in enumerate(timeouts)
    )
    return AcquireOptions(
        attempts=attempts,
        accept_accuracy_m=config.GPS_ACCEPT_ACCURACY_M,
        final_accuracy_m=config.GPS_FINAL_ACCURACY_M,
    )


def directory_from_settings(config: Settings) -> DirectoryProvider:
    if config.DIRECTORY_URL:
        return DirectoryClient(config.DIRECTORY_URL, timeout=config.DIRECTORY_TIMEOUT_SECONDS)
    return LocalDirectory()


class LocationSession:
    def __init__(
        self,
        sensor: Optional[PositionSensor] = None,
        *,
        cache: Optional[LocationCache] = None,
        directory: Optional[DirectoryProvider] = None,
        places=None,
        locators: Optional[Sequence[NetworkLocator]] = None,
        reverse_geocoder=None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.config = config
        self.sensor = sensor or ReportedPositionSensor()
        self.city_resolver = CityResolver(
            default_city=config.DEFAULT_CITY,
            min_refresh_confidence=config.CITY_REFRESH_MIN_CONFIDENCE,
        )
        self.cache = cache or LocationCache(
            db_path=config.LOCATION_CACHE_PATH,
            max_accuracy_m=config.CACHE_MAX_ACCURACY_M,
            device_ttl_seconds=config.CACHE_DEVICE_TTL_SECONDS,
            other_ttl_seconds=config.CACHE_OTHER_TTL_SECONDS,
        )
        self.directory = directory or directory_from_settings(config)
        self.places = places or NominatimPlacesClient(language=config.LOCATION_LANGUAGE)
        if locators is None:
            locators = default_locators(config.NETWORK_LOCATOR_TIMEOUT_SECONDS)

        self.acquire_options = acquire_options_from_settings(config)
        self.acquirer = PositionAcquirer(self.sensor, self.acquire_options)
        self.address_resolver = AddressResolver(
            self.city_resolver,
            reverse_geocoder=reverse_geocoder,
            language=config.LOCATION_LANGUAGE,
        )
        self.cascade = FallbackCascade(
            self.acquirer,
            self.address_resolver,
            self.city_resolver,
            self.cache,
            self.directory,
            locators,
            network_timeout=config.NETWORK_LOCATOR_TIMEOUT_SECONDS,
            network_confidence=config.NETWORK_CONFIDENCE,
            directory_confidence=config.DIRECTORY_CONFIDENCE,
            default_confidence=config.DEFAULT_CONFIDENCE,
            default_enabled=config.DEFAULT_TIER_ENABLED,
        )

        self.candidate_index: Dict[str, SearchCandidate] = {}
        self.search_engine = SearchEngine(
            self.directory,
            self.city_resolver,
            self.places,
            candidate_index=self.candidate_index,
            debounce_ms=config.SEARCH_DEBOUNCE_MS,
            min_query_length=config.SEARCH_MIN_QUERY_LENGTH,
            max_results=config.SEARCH_MAX_RESULTS,
            dedup_radius_m=config.SEARCH_DEDUP_RADIUS_M,
        )
        self.place_details = PlaceDetailResolver(
            self.places,
            self.candidate_index,
            ttl_seconds=config.PLACE_DETAILS_TTL_SECONDS,
        )
        self.current: Optional[ResolvedLocation] = None

    @property
    def city(self) -> CityProfile:
        return self.city_resolver.current()

    def report(self, reading: Optional[SensorReading], denied: bool = False) -> None:
        """Feed a client-side fix (or refusal) to a ReportedPositionSensor."""
        if not isinstance(self.sensor, ReportedPositionSensor):
            raise TypeError("session sensor does not accept reported positions")
        self.sensor.report(reading, denied=denied)

    def resolve_options(self, **overrides) -> ResolveOptions:
        return ResolveOptions(acquire=self.acquire_options, language=self.config.LOCATION_LANGUAGE, **overrides)

    async def resolve(
        self,
        options: Optional[ResolveOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ResolvedLocation:
        before = self.city_resolver.current().name
        location = await self.cascade.resolve(options or self.resolve_options(), cancel_token)
        after = self.city_resolver.current().name
        if before != after:
            logger.info("City changed %s -> %s; clearing search state", before, after)
            self._clear_search_state()
        self.current = location
        self.search_engine.user_coordinates = location.coordinates
        return location

    async def search(self, query: Optional[str]) -> SearchResults:
        return await self.search_engine.search(query)

    async def get_details(self, place_id: str) -> PlaceDetails:
        return await self.place_details.get_details(place_id)

    def set_city(self, name: str) -> CityProfile:
        """Manual city choice. Raises KeyError for cities outside the registry."""
        if self.city_resolver.lookup(name) is None:
            raise KeyError(name)
        self._clear_all()
        return self.city_resolver.override(name)

    def logout(self) -> None:
        self._clear_all()

    def close(self) -> None:
        self.search_engine.reset()
        self.cache.close()

    def _clear_search_state(self) -> None:
        self.search_engine.reset()
        self.place_details.clear()

    def _clear_all(self) -> None:
        self._clear_search_state()
        self.cache.clear()
        self.city_resolver.reset()
        self.search_engine.user_coordinates = None
        self.current = None
