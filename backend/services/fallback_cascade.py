"""
Tiered position resolution.

    device -> network -> cache -> directory -> default

Tiers run strictly in order and the first success wins. Every tier failure
is logged and the cascade moves on; with the default tier enabled,
`resolve()` cannot fail. The default tier does no I/O.
"""
from __future__ import annotations

import dataclasses
import logging
import sqlite3
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from domain.errors import CascadeExhausted, LocationError
from domain.models import AddressComponents, CityProfile, ResolvedLocation, ResolveOptions, SourceType
from services.address_validator import AddressResolver, build_from_components
from services.city_resolver import CityResolver
from services.directory_client import DirectoryProvider
from services.location_cache import LocationCache
from services.network_locator import NETWORK_ACCURACY_M, NetworkLocator, race_locators
from services.position_acquirer import CancellationToken, PositionAcquirer

logger = logging.getLogger(__name__)

CACHE_CONFIDENCE_FACTOR = 0.9

FALLBACK_REASON = "Precise position unavailable."
TIER_MESSAGES = {
    SourceType.NETWORK: "Using an approximate position from your network connection.",
    SourceType.CACHE: "Using your last known position.",
    SourceType.DIRECTORY: "Using a reference point in {city}.",
    SourceType.DEFAULT: "Using the default position for {city}.",
}


def tier_message(source: SourceType, reason: Optional[BaseException], city: CityProfile) -> str:
    """User-facing explanation of why a coarser tier answered."""
    if isinstance(reason, LocationError):
        prefix = reason.user_message
    else:
        prefix = FALLBACK_REASON
    return f"{prefix} {TIER_MESSAGES[source].format(city=city.name)}"


class FallbackCascade:
    def __init__(
        self,
        acquirer: PositionAcquirer,
        address_resolver: AddressResolver,
        city_resolver: CityResolver,
        cache: LocationCache,
        directory: DirectoryProvider,
        locators: Sequence[NetworkLocator] = (),
        *,
        network_timeout: float = 3.0,
        network_confidence: float = 0.7,
        directory_confidence: float = 0.8,
        default_confidence: float = 0.5,
        default_enabled: bool = True,
    ):
        self.acquirer = acquirer
        self.address_resolver = address_resolver
        self.city_resolver = city_resolver
        self.cache = cache
        self.directory = directory
        self.locators = list(locators)
        self.network_timeout = network_timeout
        self.network_confidence = network_confidence
        self.directory_confidence = directory_confidence
        self.default_confidence = default_confidence
        self.default_enabled = default_enabled

    async def resolve(
        self,
        options: Optional[ResolveOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ResolvedLocation:
        options = options or ResolveOptions()
        tiers: List[Tuple[SourceType, bool, Callable[..., Awaitable[Optional[ResolvedLocation]]]]] = [
            (SourceType.DEVICE, True, self._device),
            (SourceType.NETWORK, options.use_network and bool(self.locators), self._network),
            (SourceType.CACHE, options.use_cache, self._cached),
            (SourceType.DIRECTORY, options.use_directory, self._directory),
            (SourceType.DEFAULT, options.use_default and self.default_enabled, self._default),
        ]

        reason: Optional[BaseException] = None
        for source, enabled, tier in tiers:
            if not enabled:
                continue
            try:
                location = await tier(options, cancel_token)
                if location is None:
                    logger.debug("[CASCADE] %s tier had nothing", source.value)
                    continue
                return await self._finish(location, options, reason)
            except Exception as exc:
                if reason is None:
                    reason = exc
                logger.warning("[CASCADE] %s tier failed: %s", source.value, exc)

        raise CascadeExhausted("every enabled tier failed")

    async def _device(self, options: ResolveOptions, cancel_token) -> ResolvedLocation:
        return await self.acquirer.acquire(options.acquire, cancel_token)

    async def _network(self, options: ResolveOptions, cancel_token) -> ResolvedLocation:
        fix = await race_locators(self.locators, timeout=self.network_timeout, client_ip=options.client_ip)
        logger.debug(
            "[CASCADE] network fix from %s for %s (~%.0f m)",
            fix.provider, options.client_ip or "this host", NETWORK_ACCURACY_M,
        )
        candidate = build_from_components(
            AddressComponents(city=fix.city, district=fix.region, country=fix.country),
            options.language or self.address_resolver.language,
        )
        return ResolvedLocation(
            address=candidate,
            lat=fix.lat,
            lng=fix.lng,
            source_type=SourceType.NETWORK,
            confidence=self.network_confidence,
        )

    async def _cached(self, options: ResolveOptions, cancel_token) -> Optional[ResolvedLocation]:
        stored = self.cache.get()
        if stored is None:
            return None
        return dataclasses.replace(
            stored,
            source_type=SourceType.CACHE,
            confidence=round(stored.confidence * CACHE_CONFIDENCE_FACTOR, 4),
            accuracy_meters=None,
            message=None,
        )

    async def _directory(self, options: ResolveOptions, cancel_token) -> ResolvedLocation:
        city = self.city_resolver.current()
        hit = await self.directory.representative_point(city)
        return ResolvedLocation(
            address=hit.address or "",
            lat=hit.lat,
            lng=hit.lng,
            source_type=SourceType.DIRECTORY,
            confidence=self.directory_confidence,
            place_id=hit.id,
            display_name=hit.name,
        )

    async def _default(self, options: ResolveOptions, cancel_token) -> ResolvedLocation:
        city = self.city_resolver.current()
        return ResolvedLocation(
            address=city.default_address,
            lat=city.center.lat,
            lng=city.center.lng,
            source_type=SourceType.DEFAULT,
            confidence=self.default_confidence,
        )

    async def _finish(
        self,
        location: ResolvedLocation,
        options: ResolveOptions,
        reason: Optional[BaseException],
    ) -> ResolvedLocation:
        source = location.source_type
        city = self.city_resolver.observe(location)
        location.city = city.name
        location.address = await self.address_resolver.resolve(
            location.lat,
            location.lng,
            candidate=location.address,
            language=options.language,
            allow_lookup=source != SourceType.DEFAULT,
        )

        if source == SourceType.DEVICE:
            try:
                self.cache.set(location)
            except sqlite3.Error as exc:
                logger.warning("[CACHE] write failed: %s", exc)
        else:
            location.message = tier_message(source, reason, city)

        logger.info(
            "[CASCADE] resolved via %s tier (confidence %.2f, city %s)",
            source.value,
            location.confidence,
            city.name,
        )
        return location
