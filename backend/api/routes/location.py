"""
Location API routes.

Each client opens a session, then reports its raw device fix (or a
permission refusal) and gets back a validated, tier-tagged position.
Search and place details are scoped by the session's current city.
"""
import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from domain.errors import CascadeExhausted
from domain.models import SensorReading
from services.location_cache import LocationCache
from services.location_session import LocationSession
from services.network_locator import usable_client_ip
from settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()


def _new_session() -> LocationSession:
    # Per-session cache; a shared file would mix users' positions
    cache = LocationCache(
        db_path=":memory:",
        max_accuracy_m=settings.CACHE_MAX_ACCURACY_M,
        device_ttl_seconds=settings.CACHE_DEVICE_TTL_SECONDS,
        other_ttl_seconds=settings.CACHE_OTHER_TTL_SECONDS,
    )
    return LocationSession(cache=cache)


session_factory: Callable[[], LocationSession] = _new_session
_sessions: Dict[str, LocationSession] = {}
_last_used: Dict[str, float] = {}
clock: Callable[[], float] = time.monotonic


class CityResponse(BaseModel):
    name: str
    country_code: str
    country_name: str
    currency_code: str
    timezone: str
    center: Dict[str, float]


class SessionResponse(BaseModel):
    session_id: str
    city: CityResponse


class ResolveRequest(BaseModel):
    lat: float | None = None
    lng: float | None = None
    accuracy: float | None = None
    permission_denied: bool = False
    use_network: bool = True
    use_cache: bool = True
    use_directory: bool = True
    language: str | None = None


class ResolvedLocationResponse(BaseModel):
    address: str
    lat: float
    lng: float
    source_type: str
    confidence: float
    accuracy_meters: float | None = None
    place_id: str | None = None
    display_name: str | None = None
    city: str | None = None
    message: str | None = None


class CandidateResponse(BaseModel):
    id: str
    title: str
    subtitle: str
    lat: float
    lng: float
    source_type: str
    relevance_score: float
    is_popular: bool
    distance_meters: float | None = None
    address: str | None = None


class SearchResponse(BaseModel):
    query: str
    results: List[CandidateResponse]
    error: bool
    superseded: bool


class PlaceDetailsResponse(BaseModel):
    place_id: str
    name: str
    formatted_address: str
    lat: float
    lng: float
    types: List[str]
    resolved: bool


class SetCityRequest(BaseModel):
    name: str


def _drop_session(session_id: str) -> Optional[LocationSession]:
    _last_used.pop(session_id, None)
    session = _sessions.pop(session_id, None)
    if session is not None:
        session.logout()
        session.close()
    return session


def _evict_idle() -> None:
    cutoff = clock() - settings.SESSION_IDLE_TTL_SECONDS
    for session_id in [sid for sid, used in _last_used.items() if used < cutoff]:
        logger.info("Evicting idle session %s", session_id)
        _drop_session(session_id)


def _get_session(session_id: str) -> LocationSession:
    _evict_idle()
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    _last_used[session_id] = clock()
    return session


def _client_ip(request: Request) -> Optional[str]:
    if settings.TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # the last hop is the one our proxy appended
            return usable_client_ip(forwarded.split(",")[-1])
    if request.client is None:
        return None
    return usable_client_ip(request.client.host)


@router.post("", response_model=SessionResponse, status_code=201)
async def open_session():
    _evict_idle()
    session_id = uuid.uuid4().hex
    session = session_factory()
    _sessions[session_id] = session
    _last_used[session_id] = clock()
    return SessionResponse(session_id=session_id, city=CityResponse(**session.city.to_dict()))


@router.post("/{session_id}/resolve", response_model=ResolvedLocationResponse)
async def resolve_position(session_id: str, payload: ResolveRequest, request: Request):
    """
    Resolve the session's position.

    A reported fix feeds the device tier; without one (or with a refusal)
    the cascade falls through to network, cache, directory and default.
    The network tier looks up the caller's public IP and is skipped when
    there is none.
    """
    session = _get_session(session_id)
    reading = None
    if payload.lat is not None and payload.lng is not None:
        reading = SensorReading(lat=payload.lat, lng=payload.lng, accuracy_meters=payload.accuracy)
    session.report(reading, denied=payload.permission_denied)

    client_ip = _client_ip(request)
    if payload.use_network and client_ip is None:
        logger.debug("No public client address; skipping network tier")
    options = session.resolve_options(
        use_network=payload.use_network and client_ip is not None,
        client_ip=client_ip,
        use_cache=payload.use_cache,
        use_directory=payload.use_directory,
    )
    if payload.language:
        options.language = payload.language
    try:
        location = await session.resolve(options)
    except CascadeExhausted as exc:
        raise HTTPException(status_code=503, detail=exc.user_message)
    return ResolvedLocationResponse(**location.to_dict())


@router.get("/{session_id}/search", response_model=SearchResponse)
async def search_places(session_id: str, q: str = ""):
    session = _get_session(session_id)
    results = await session.search(q)
    return SearchResponse(
        query=results.query,
        results=[CandidateResponse(**c.to_dict()) for c in results],
        error=results.error,
        superseded=results.superseded,
    )


@router.get("/{session_id}/places/{place_id}", response_model=PlaceDetailsResponse)
async def place_details(session_id: str, place_id: str):
    session = _get_session(session_id)
    details = await session.get_details(place_id)
    return PlaceDetailsResponse(**details.to_dict())


@router.get("/{session_id}/city", response_model=CityResponse)
async def get_city(session_id: str):
    session = _get_session(session_id)
    return CityResponse(**session.city.to_dict())


@router.put("/{session_id}/city", response_model=CityResponse)
async def set_city(session_id: str, payload: SetCityRequest):
    session = _get_session(session_id)
    try:
        city = session.set_city(payload.name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"City not supported: {payload.name}")
    return CityResponse(**city.to_dict())


@router.delete("/{session_id}")
async def close_session(session_id: str):
    if _drop_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True, "message": "Session closed"}
