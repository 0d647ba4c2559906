from __future__ import annotations

import logging
from typing import Dict, Optional

from domain.models import CityProfile, Coordinates, ResolvedLocation
from services.city_registry import CITY_REGISTRY
from services.geocoding import haversine_m

logger = logging.getLogger(__name__)


class CityResolver:
    """Nearest-city lookup against the fixed registry.

    Remembers the last detected city; search scope, currency and the default
    fallback point all read it. A stale city never blocks resolution, it only
    degrades search relevance until the next confident fix refreshes it.
    """

    def __init__(
        self,
        registry: Optional[Dict[str, CityProfile]] = None,
        default_city: str = "Kinshasa",
        min_refresh_confidence: float = 0.7,
    ):
        self.registry = registry or CITY_REGISTRY
        default = self.lookup(default_city)
        if default is None:
            raise ValueError(f"default city {default_city!r} is not in the registry")
        self._default = default
        self.min_refresh_confidence = min_refresh_confidence
        self.last_city: Optional[CityProfile] = None

    def lookup(self, name: str) -> Optional[CityProfile]:
        wanted = name.strip().lower()
        for key, city in self.registry.items():
            if key.lower() == wanted:
                return city
        return None

    @property
    def default_city(self) -> CityProfile:
        return self._default

    def current(self) -> CityProfile:
        """Last detected city, or the configured default."""
        return self.last_city or self._default

    def nearest(self, coordinates: Coordinates) -> CityProfile:
        containing = [
            city for city in self.registry.values()
            if city.bounds and city.bounds.contains(coordinates.lat, coordinates.lng)
        ]
        candidates = containing or list(self.registry.values())
        return min(
            candidates,
            key=lambda city: haversine_m(
                coordinates.lat, coordinates.lng, city.center.lat, city.center.lng
            ),
        )

    def detect(self, coordinates: Optional[Coordinates] = None) -> CityProfile:
        if coordinates is None:
            return self.current()
        city = self.nearest(coordinates)
        if self.last_city is None or self.last_city.name != city.name:
            logger.info(
                "City detected: %s (from %.4f,%.4f)", city.name, coordinates.lat, coordinates.lng
            )
        self.last_city = city
        return city

    def observe(self, location: ResolvedLocation) -> CityProfile:
        """Re-run detection for a sufficiently confident resolution."""
        if location.confidence >= self.min_refresh_confidence:
            return self.detect(location.coordinates)
        return self.current()

    def override(self, name: str) -> CityProfile:
        city = self.lookup(name)
        if city is None:
            raise KeyError(name)
        self.last_city = city
        return city

    def reset(self) -> None:
        self.last_city = None
