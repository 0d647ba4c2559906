"""
Fixed registry of supported cities and their popular places.

Coordinates come from field surveys of each launch city; a remote
directory deployment should be seeded with the same points.
"""
from __future__ import annotations

from typing import Dict, List

from domain.models import BoundingBox, CityProfile, Coordinates
from services.places_types import DirectoryHit

DRC = "République Démocratique du Congo"
IVORY_COAST = "Côte d'Ivoire"

CITY_REGISTRY: Dict[str, CityProfile] = {
    "Kinshasa": CityProfile(
        name="Kinshasa",
        country_code="CD",
        country_name=DRC,
        center=Coordinates(-4.3217, 15.3069),
        currency_code="CDF",
        bounds=BoundingBox(north=-4.0, south=-4.8, east=15.8, west=14.8),
        communes=(
            "Gombe", "Kalamu", "Kasa-Vubu", "Kintambo", "Lemba", "Limete", "Lingwala",
            "Makala", "Maluku", "Masina", "Matete", "Mont-Ngafula", "Ndjili", "Ngaba",
            "Ngiri-Ngiri", "Barumbu", "Bumbu", "Bandalungwa", "Kimbanseke", "Kisenso",
            "Nsele", "Selembao", "Mont-Amba",
        ),
        timezone="Africa/Kinshasa",
        default_address="Kinshasa Centre, République Démocratique du Congo",
    ),
    "Lubumbashi": CityProfile(
        name="Lubumbashi",
        country_code="CD",
        country_name=DRC,
        center=Coordinates(-11.6708, 27.4794),
        currency_code="CDF",
        bounds=BoundingBox(north=-11.4, south=-11.9, east=27.8, west=27.1),
        communes=("Kampemba", "Katuba", "Kenya", "Rwashi", "Annexe"),
        timezone="Africa/Lubumbashi",
        default_address="Lubumbashi Centre, République Démocratique du Congo",
    ),
    "Kolwezi": CityProfile(
        name="Kolwezi",
        country_code="CD",
        country_name=DRC,
        center=Coordinates(-10.7158, 25.4664),
        currency_code="CDF",
        bounds=BoundingBox(north=-10.5, south=-10.9, east=25.8, west=25.1),
        communes=("Manika", "Dilala", "Mutoshi"),
        timezone="Africa/Lubumbashi",
        default_address="Kolwezi Centre, République Démocratique du Congo",
    ),
    "Abidjan": CityProfile(
        name="Abidjan",
        country_code="CI",
        country_name=IVORY_COAST,
        center=Coordinates(5.3364, -4.0267),
        currency_code="XOF",
        bounds=BoundingBox(north=5.6, south=5.1, east=-3.7, west=-4.3),
        communes=(
            "Plateau", "Cocody", "Yopougon", "Adjamé", "Attécoubé", "Treichville",
            "Marcory", "Koumassi", "Port-Bouët", "Abobo",
        ),
        timezone="Africa/Abidjan",
        default_address="Abidjan Plateau, Côte d'Ivoire",
    ),
}

# Country names and abbreviations that make an address recognisably local.
COUNTRY_TOKENS = (
    DRC,
    "RDC",
    "RD Congo",
    "DR Congo",
    "Congo",
    "Democratic Republic of the Congo",
    IVORY_COAST,
    "Ivory Coast",
)


def _hit(key: str, name: str, city: str, subtitle: str, lat: float, lng: float, score: float) -> DirectoryHit:
    return DirectoryHit(
        id=key,
        name=name,
        lat=lat,
        lng=lng,
        relevance_score=score,
        city=city,
        subtitle=subtitle,
        address=f"{name}, {city}",
        is_popular=True,
    )


# Ordered most popular first.
POPULAR_PLACES: Dict[str, List[DirectoryHit]] = {
    "Kinshasa": [
        _hit("kin-airport", "Aéroport International de N'djili", "Kinshasa", "Ndjili, Kinshasa", -4.3856, 15.4446, 100),
        _hit("kin-center", "Centre-ville Gombe", "Kinshasa", "Gombe, Kinshasa", -4.3217, 15.3069, 95),
        _hit("kin-unikin", "Université de Kinshasa", "Kinshasa", "Mont-Amba, Kinshasa", -4.4324, 15.2973, 90),
        _hit("kin-market", "Marché Central", "Kinshasa", "Gombe, Kinshasa", -4.3276, 15.3086, 85),
        _hit("kin-hospital", "Hôpital Général de Kinshasa", "Kinshasa", "Lingwala, Kinshasa", -4.3398, 15.2943, 80),
        _hit("kin-stadium", "Stade des Martyrs", "Kinshasa", "Kalamu, Kinshasa", -4.3789, 15.3134, 75),
    ],
    "Lubumbashi": [
        _hit("lub-airport", "Aéroport International de la Luano", "Lubumbashi", "Annexe, Lubumbashi", -11.5913, 27.5309, 100),
        _hit("lub-center", "Centre-ville de Lubumbashi", "Lubumbashi", "Lubumbashi", -11.6708, 27.4794, 95),
        _hit("lub-unilu", "Université de Lubumbashi", "Lubumbashi", "Lubumbashi", -11.6098, 27.4826, 85),
    ],
    "Kolwezi": [
        _hit("kol-center", "Centre-ville de Kolwezi", "Kolwezi", "Kolwezi", -10.7158, 25.4664, 95),
        _hit("kol-airport", "Aéroport de Kolwezi", "Kolwezi", "Kolwezi", -10.7686, 25.5057, 90),
    ],
    "Abidjan": [
        _hit("abj-airport", "Aéroport International Félix Houphouët-Boigny", "Abidjan", "Port-Bouët, Abidjan", 5.2539, -3.9263, 100),
        _hit("abj-plateau", "Plateau", "Abidjan", "Plateau, Abidjan", 5.3236, -4.0083, 95),
        _hit("abj-cocody", "Cocody", "Abidjan", "Cocody, Abidjan", 5.3472, -3.9861, 85),
        _hit("abj-treichville", "Marché de Treichville", "Abidjan", "Treichville, Abidjan", 5.2937, -4.0057, 80),
    ],
}


def get_city(name: str | None) -> CityProfile | None:
    if not name:
        return None
    for key, profile in CITY_REGISTRY.items():
        if key.lower() == name.strip().lower():
            return profile
    return None


def popular_places(city_name: str) -> List[DirectoryHit]:
    return list(POPULAR_PLACES.get(city_name, []))
