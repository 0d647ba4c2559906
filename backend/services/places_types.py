from dataclasses import dataclass, field
from typing import List, Optional

from domain.models import AddressComponents


@dataclass
class PlaceResult:
    provider: str  # e.g. "osm"
    place_id: str  # provider-specific place id ("N123", "W456" for OSM)
    name: str
    lat: float
    lon: float
    types: List[str]
    confidence: float
    raw: Optional[dict] = None
    display_name: Optional[str] = None  # cleaned, short name for result lists
    formatted_address: Optional[str] = None


@dataclass
class DirectoryHit:
    """A ranked row from the place directory."""
    id: str
    name: str
    lat: float
    lng: float
    relevance_score: float
    city: Optional[str] = None
    subtitle: Optional[str] = None
    address: Optional[str] = None
    is_popular: bool = False
    distance_meters: Optional[float] = None


@dataclass
class CoarseFix:
    """Network-based position estimate (IP geolocation)."""
    provider: str
    lat: float
    lng: float
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None


@dataclass
class ReverseGeocodeResult:
    formatted_address: str
    components: AddressComponents = field(default_factory=AddressComponents)
