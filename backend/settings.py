import os

# Basic settings helper to read environment configuration.


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


def _as_float_list(val: str | None, default: tuple[float, ...]) -> tuple[float, ...]:
    if val is None or not val.strip():
        return default
    return tuple(float(part) for part in val.split(",") if part.strip())


class Settings:
    def __init__(self) -> None:
        # Device acquisition. Thresholds were tuned for Kinshasa/Abidjan handsets.
        self.GPS_ACCEPT_ACCURACY_M: float = _as_float(os.getenv("GPS_ACCEPT_ACCURACY_M"), 100.0)
        self.GPS_FINAL_ACCURACY_M: float = _as_float(os.getenv("GPS_FINAL_ACCURACY_M"), 200.0)
        self.GPS_ATTEMPT_TIMEOUTS: tuple[float, ...] = _as_float_list(
            os.getenv("GPS_ATTEMPT_TIMEOUTS"), (5.0, 8.0, 12.0)
        )
        self.GPS_MAXIMUM_AGE_SECONDS: float = _as_float(os.getenv("GPS_MAXIMUM_AGE_SECONDS"), 30.0)

        # Location cache
        self.CACHE_MAX_ACCURACY_M: float = _as_float(os.getenv("CACHE_MAX_ACCURACY_M"), 200.0)
        self.CACHE_DEVICE_TTL_SECONDS: float = _as_float(os.getenv("CACHE_DEVICE_TTL_SECONDS"), 120.0)
        self.CACHE_OTHER_TTL_SECONDS: float = _as_float(os.getenv("CACHE_OTHER_TTL_SECONDS"), 30.0)
        self.LOCATION_CACHE_PATH: str | None = os.getenv("LOCATION_CACHE_PATH")

        # Cascade
        self.NETWORK_LOCATOR_TIMEOUT_SECONDS: float = _as_float(
            os.getenv("NETWORK_LOCATOR_TIMEOUT_SECONDS"), 3.0
        )
        self.NETWORK_CONFIDENCE: float = _as_float(os.getenv("NETWORK_CONFIDENCE"), 0.7)
        self.DIRECTORY_CONFIDENCE: float = _as_float(os.getenv("DIRECTORY_CONFIDENCE"), 0.8)
        self.DEFAULT_CONFIDENCE: float = _as_float(os.getenv("DEFAULT_CONFIDENCE"), 0.5)
        self.CITY_REFRESH_MIN_CONFIDENCE: float = _as_float(
            os.getenv("CITY_REFRESH_MIN_CONFIDENCE"), 0.7
        )
        self.DEFAULT_CITY: str = os.getenv("DEFAULT_CITY", "Kinshasa")
        self.DEFAULT_TIER_ENABLED: bool = _as_bool(os.getenv("DEFAULT_TIER_ENABLED"), True)
        self.LOCATION_LANGUAGE: str = os.getenv("LOCATION_LANGUAGE", "fr")

        # Search
        self.SEARCH_DEBOUNCE_MS: int = _as_int(os.getenv("SEARCH_DEBOUNCE_MS"), 200)
        self.SEARCH_MIN_QUERY_LENGTH: int = _as_int(os.getenv("SEARCH_MIN_QUERY_LENGTH"), 2)
        self.SEARCH_MAX_RESULTS: int = _as_int(os.getenv("SEARCH_MAX_RESULTS"), 8)
        self.SEARCH_DEDUP_RADIUS_M: float = _as_float(os.getenv("SEARCH_DEDUP_RADIUS_M"), 500.0)
        self.PLACE_DETAILS_TTL_SECONDS: float = _as_float(os.getenv("PLACE_DETAILS_TTL_SECONDS"), 600.0)

        # Remote directory; unset means the built-in registry directory is used
        self.DIRECTORY_URL: str | None = os.getenv("DIRECTORY_URL")
        self.DIRECTORY_TIMEOUT_SECONDS: float = _as_float(os.getenv("DIRECTORY_TIMEOUT_SECONDS"), 5.0)

        # HTTP sessions
        self.SESSION_IDLE_TTL_SECONDS: float = _as_float(os.getenv("SESSION_IDLE_TTL_SECONDS"), 1800.0)
        # Only enable behind a reverse proxy that sets X-Forwarded-For itself
        self.TRUST_FORWARDED_FOR: bool = _as_bool(os.getenv("TRUST_FORWARDED_FOR"), False)


settings = Settings()
