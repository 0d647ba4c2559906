"""
Core domain models for the position resolution engine.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import math


class SourceType(str, Enum):
    """Cascade tier a ResolvedLocation came from."""
    DEVICE = "device"
    NETWORK = "network"
    CACHE = "cache"
    DIRECTORY = "directory"
    DEFAULT = "default"


class CandidateSource(str, Enum):
    """Provider a search candidate came from."""
    DIRECTORY = "directory"
    EXTERNAL = "external"


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def is_sane(self) -> bool:
        """Finite, in range, and not the 0,0 null island sensors report on failure."""
        if not (math.isfinite(self.lat) and math.isfinite(self.lng)):
            return False
        if abs(self.lat) > 90 or abs(self.lng) > 180:
            return False
        return not (self.lat == 0 and self.lng == 0)


@dataclass(frozen=True)
class BoundingBox:
    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east


@dataclass(frozen=True)
class CityProfile:
    """
    A supported city.

    Drives search scope, currency and the default fallback point. Recomputed
    from coordinates, never persisted.
    """
    name: str
    country_code: str
    center: Coordinates
    currency_code: str
    country_name: str = ""
    bounds: Optional[BoundingBox] = None
    communes: Tuple[str, ...] = ()
    timezone: str = "UTC"
    language: str = "fr"
    default_address: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "country_code": self.country_code,
            "country_name": self.country_name,
            "center": {"lat": self.center.lat, "lng": self.center.lng},
            "currency_code": self.currency_code,
            "timezone": self.timezone,
        }


@dataclass
class ResolvedLocation:
    """
    An address + coordinate result tagged with its cascade tier.

    `accuracy_meters` is mandatory for device fixes and left empty for every
    other tier. `message` explains to the user why a coarser tier was used.
    """
    address: str
    lat: float
    lng: float
    source_type: SourceType
    confidence: float
    accuracy_meters: Optional[float] = None
    place_id: Optional[str] = None
    display_name: Optional[str] = None
    city: Optional[str] = None
    message: Optional[str] = None

    def __post_init__(self) -> None:
        self.source_type = SourceType(self.source_type)
        if self.source_type == SourceType.DEVICE and self.accuracy_meters is None:
            raise ValueError("device-sourced locations must carry accuracy_meters")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.lat, self.lng)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "lat": self.lat,
            "lng": self.lng,
            "source_type": self.source_type.value,
            "confidence": self.confidence,
            "accuracy_meters": self.accuracy_meters,
            "place_id": self.place_id,
            "display_name": self.display_name,
            "city": self.city,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolvedLocation":
        return cls(
            address=data.get("address", ""),
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            source_type=SourceType(data["source_type"]),
            confidence=float(data.get("confidence", 0.0)),
            accuracy_meters=data.get("accuracy_meters"),
            place_id=data.get("place_id"),
            display_name=data.get("display_name"),
            city=data.get("city"),
            message=data.get("message"),
        )


@dataclass
class CacheEntry:
    """A cached resolution and the wall-clock time it was written."""
    location: ResolvedLocation
    timestamp: float

    def age(self, now: float) -> float:
        return now - self.timestamp


@dataclass
class SearchCandidate:
    id: str
    title: str
    subtitle: str
    lat: float
    lng: float
    source_type: CandidateSource
    relevance_score: float = 0.0
    is_popular: bool = False
    distance_meters: Optional[float] = None
    address: Optional[str] = None
    city: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "subtitle": self.subtitle,
            "lat": self.lat,
            "lng": self.lng,
            "source_type": CandidateSource(self.source_type).value,
            "relevance_score": self.relevance_score,
            "is_popular": self.is_popular,
            "distance_meters": self.distance_meters,
            "address": self.address,
        }


@dataclass
class PlaceDetails:
    """
    Details for a place identifier.

    Zero coordinates mean "unresolved": the provider could not be reached and
    this is a best-effort placeholder, not a real point.
    """
    place_id: str
    name: str
    formatted_address: str
    lat: float
    lng: float
    types: List[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return not (self.lat == 0 and self.lng == 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "place_id": self.place_id,
            "name": self.name,
            "formatted_address": self.formatted_address,
            "lat": self.lat,
            "lng": self.lng,
            "types": list(self.types),
            "resolved": self.resolved,
        }


@dataclass(frozen=True)
class AcquireAttempt:
    """One rung of the acquisition ladder."""
    timeout_seconds: float
    high_accuracy: bool
    maximum_age_seconds: float


@dataclass
class AcquireOptions:
    attempts: Tuple[AcquireAttempt, ...] = (
        AcquireAttempt(5.0, True, 30.0),
        AcquireAttempt(8.0, True, 30.0),
        AcquireAttempt(12.0, False, 30.0),
    )
    accept_accuracy_m: float = 100.0
    final_accuracy_m: float = 200.0


@dataclass
class ResolveOptions:
    """Which cascade tiers to run. Device acquisition always runs first."""
    acquire: AcquireOptions = field(default_factory=AcquireOptions)
    use_network: bool = True
    use_cache: bool = True
    use_directory: bool = True
    use_default: bool = True
    language: Optional[str] = None
    # public address the network tier looks up; None means this host's own
    client_ip: Optional[str] = None


@dataclass
class SensorReading:
    lat: float
    lng: float
    accuracy_meters: Optional[float]
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class AddressComponents:
    """Structured reverse-geocode output, normalised across providers."""
    street: Optional[str] = None
    neighborhood: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def from_nominatim(cls, address: Dict[str, Any]) -> "AddressComponents":
        street = address.get("road") or address.get("pedestrian") or address.get("street")
        if street and address.get("house_number"):
            street = f"{address['house_number']} {street}"
        return cls(
            street=street,
            neighborhood=(
                address.get("neighbourhood")
                or address.get("suburb")
                or address.get("quarter")
            ),
            district=address.get("city_district") or address.get("county") or address.get("state_district"),
            city=(
                address.get("city")
                or address.get("town")
                or address.get("village")
                or address.get("municipality")
            ),
            country=address.get("country"),
        )
