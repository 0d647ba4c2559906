"""
Address validation and repair.

Geocoders happily return plus codes ("QJ2X+9F Kinshasa") or raw "lat,lng"
strings for poorly mapped areas. Nothing produced here reaches a caller
without passing `AddressValidator.validate`:

1. provider's formatted address, if valid;
2. otherwise an address rebuilt from the structured components;
3. otherwise "near <City>, <Country>" for the last known city.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable, Iterable, Optional

from domain.errors import ValidationFailure
from domain.models import AddressComponents
from services.city_registry import CITY_REGISTRY, COUNTRY_TOKENS
from services.city_resolver import CityResolver
from services.geocoding import reverse_geocode
from services.places_types import ReverseGeocodeResult
from services.text_utils import fold_text

logger = logging.getLogger(__name__)

MIN_ADDRESS_LENGTH = 15

COORD_PAIR_RE = re.compile(r"^-?\d+\.?\d*,\s*-?\d+\.?\d*$")
# Open Location Code style: "QJ2X+9F", "6GCRPR6C+24"
GRID_PLUS_RE = re.compile(r"(?<![A-Za-z0-9])[A-Z0-9]{2,8}\+[A-Z0-9]{2,3}(?![A-Za-z0-9])", re.IGNORECASE)
# Compact code without separator: at least 6 chars, 2+ letters and 2+ digits
GRID_DENSE_RE = re.compile(
    r"(?<![A-Za-z0-9])"
    r"(?=[A-Z0-9]*\d[A-Z0-9]*\d)(?=[A-Z0-9]*[A-Z][A-Z0-9]*[A-Z])"
    r"[A-Z0-9]{6,}(?![A-Za-z0-9])",
    re.IGNORECASE,
)

LOCALE_SEPARATORS = {
    "fr": ", ",
    "en": ", ",
    "ar": "، ",
}

DEGRADED_TEMPLATES = {
    "fr": "près de {city}, {country}",
    "en": "near {city}, {country}",
}


def default_known_tokens() -> list[str]:
    tokens: list[str] = list(COUNTRY_TOKENS)
    for city in CITY_REGISTRY.values():
        tokens.append(city.name)
        tokens.extend(city.communes)
        if city.country_name:
            tokens.append(city.country_name)
    return tokens


def is_grid_code(value: str) -> bool:
    return bool(GRID_PLUS_RE.search(value) or GRID_DENSE_RE.search(value))


def is_coordinate_pair(value: str) -> bool:
    return bool(COORD_PAIR_RE.match(value.strip()))


class AddressValidator:
    def __init__(self, known_tokens: Optional[Iterable[str]] = None, min_length: int = MIN_ADDRESS_LENGTH):
        self.min_length = min_length
        folded = {fold_text(t) for t in (known_tokens or default_known_tokens())}
        # Longest first so "rd congo" wins over "congo" in the alternation
        ordered = sorted((t for t in folded if t), key=len, reverse=True)
        self._token_re = re.compile(r"\b(?:" + "|".join(re.escape(t) for t in ordered) + r")\b")

    def has_known_token(self, value: str) -> bool:
        return bool(self._token_re.search(fold_text(value)))

    def validate(self, value: Optional[str]) -> bool:
        if not value:
            return False
        text = value.strip()
        if len(text) < self.min_length:
            return False
        if is_coordinate_pair(text) or is_grid_code(text):
            return False
        return self.has_known_token(text)

    def ensure_valid(self, value: Optional[str]) -> str:
        if not self.validate(value):
            raise ValidationFailure(f"not a human-readable address: {value!r}")
        return value.strip()  # type: ignore[union-attr]


def build_from_components(components: AddressComponents, language: str = "fr") -> str:
    """Assemble 'street, neighborhood, city, country', skipping absent parts."""
    slots = [
        components.street,
        components.neighborhood,
        components.city or components.district,
        components.country,
    ]
    parts: list[str] = []
    seen: set[str] = set()
    for slot in slots:
        if not slot or not slot.strip():
            continue
        key = fold_text(slot)
        if key in seen:
            continue
        seen.add(key)
        parts.append(slot.strip())
    separator = LOCALE_SEPARATORS.get(language, ", ")
    return separator.join(parts)


ReverseGeocoder = Callable[[float, float, str, Optional[str]], ReverseGeocodeResult]


class AddressResolver:
    """Produces a validated address for a coordinate, never a raw provider string."""

    def __init__(
        self,
        city_resolver: CityResolver,
        reverse_geocoder: Optional[ReverseGeocoder] = None,
        validator: Optional[AddressValidator] = None,
        language: str = "fr",
    ):
        self.city_resolver = city_resolver
        self.reverse_geocoder = reverse_geocoder or reverse_geocode
        self.validator = validator or AddressValidator()
        self.language = language

    async def resolve(
        self,
        lat: float,
        lng: float,
        *,
        candidate: Optional[str] = None,
        language: Optional[str] = None,
        allow_lookup: bool = True,
    ) -> str:
        lang = language or self.language
        if candidate:
            try:
                return self.validator.ensure_valid(candidate)
            except ValidationFailure as exc:
                logger.debug("[GEOCODE] candidate rejected: %s", exc)

        if allow_lookup:
            address = await self._from_provider(lat, lng, lang)
            if address:
                return address

        return self.degraded(lang)

    async def _from_provider(self, lat: float, lng: float, language: str) -> Optional[str]:
        region = self.city_resolver.current().country_code
        try:
            result = await asyncio.to_thread(self.reverse_geocoder, lat, lng, language, region)
        except Exception as exc:
            logger.warning("[GEOCODE] reverse geocode failed for %.5f,%.5f: %s", lat, lng, exc)
            return None

        try:
            return self.validator.ensure_valid(result.formatted_address)
        except ValidationFailure:
            logger.debug("[GEOCODE] provider address rejected: %r", result.formatted_address)

        rebuilt = build_from_components(result.components, language)
        try:
            return self.validator.ensure_valid(rebuilt)
        except ValidationFailure:
            logger.warning("[GEOCODE] rebuilt address rejected: %r", rebuilt)
        return None

    def degraded(self, language: Optional[str] = None) -> str:
        city = self.city_resolver.current()
        template = DEGRADED_TEMPLATES.get(language or self.language, DEGRADED_TEMPLATES["en"])
        address = template.format(city=city.name, country=city.country_name or city.country_code)
        if self.validator.validate(address):
            return address
        return city.default_address
