"""
Network-based coarse locators (IP geolocation).

Each locator answers with city-level precision (~10 km). The cascade races
all configured locators and keeps the first usable answer.

When the engine runs server-side the address to look up must be the
client's, so every locator can query a specific IP. Without one it asks
about the caller of the request itself, which is only meaningful on the
device.
"""
from __future__ import annotations

import asyncio
import logging
import ipaddress
from typing import Any, Dict, Iterable, List, Optional

import requests

from domain.errors import ProviderUnavailable
from domain.models import Coordinates
from services.places_types import CoarseFix

logger = logging.getLogger(__name__)
_session = requests.Session()

NETWORK_ACCURACY_M = 10_000.0


def usable_client_ip(value: Optional[str]) -> Optional[str]:
    """Normalised IP if `value` is a public address the locators can answer for."""
    if not value:
        return None
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if not address.is_global:
        return None
    return str(address)


class NetworkLocator:
    """Base class: subclasses set `name`, `url`, `ip_url` and implement `_parse`."""

    name = "network"
    url = ""
    ip_url = ""

    def __init__(self, timeout: float = 3.0):
        self.timeout = timeout

    def _parse(self, data: Dict[str, Any]) -> CoarseFix:
        raise NotImplementedError

    def url_for(self, client_ip: Optional[str] = None) -> str:
        if client_ip:
            return self.ip_url.format(ip=client_ip)
        return self.url

    def locate_sync(self, client_ip: Optional[str] = None) -> CoarseFix:
        try:
            resp = _session.get(self.url_for(client_ip), timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ProviderUnavailable(f"{self.name}: {exc}", provider=self.name) from exc
        if not isinstance(data, dict):
            raise ProviderUnavailable(f"{self.name}: unexpected payload", provider=self.name)
        try:
            fix = self._parse(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderUnavailable(f"{self.name}: unreadable payload ({exc})", provider=self.name) from exc
        if not Coordinates(fix.lat, fix.lng).is_sane():
            raise ProviderUnavailable(f"{self.name}: implausible position {fix.lat},{fix.lng}", provider=self.name)
        return fix

    async def locate(self, client_ip: Optional[str] = None) -> CoarseFix:
        return await asyncio.to_thread(self.locate_sync, client_ip)


class IpApiLocator(NetworkLocator):
    name = "ip-api"
    url = "http://ip-api.com/json/?fields=status,message,lat,lon,city,country,regionName"
    ip_url = "http://ip-api.com/json/{ip}?fields=status,message,lat,lon,city,country,regionName"

    def _parse(self, data):
        if data.get("status") != "success":
            raise ValueError(data.get("message") or "status != success")
        return CoarseFix(
            provider=self.name,
            lat=float(data["lat"]),
            lng=float(data["lon"]),
            city=data.get("city"),
            region=data.get("regionName"),
            country=data.get("country"),
        )


class IpInfoLocator(NetworkLocator):
    name = "ipinfo"
    url = "https://ipinfo.io/json"
    ip_url = "https://ipinfo.io/{ip}/json"

    def _parse(self, data):
        # "loc" is a single "lat,lng" string
        lat_s, lng_s = str(data["loc"]).split(",", 1)
        return CoarseFix(
            provider=self.name,
            lat=float(lat_s),
            lng=float(lng_s),
            city=data.get("city"),
            region=data.get("region"),
            country=data.get("country"),
        )


class IpApiCoLocator(NetworkLocator):
    name = "ipapi.co"
    url = "https://ipapi.co/json/"
    ip_url = "https://ipapi.co/{ip}/json/"

    def _parse(self, data):
        if data.get("error"):
            raise ValueError(data.get("reason") or "error")
        return CoarseFix(
            provider=self.name,
            lat=float(data["latitude"]),
            lng=float(data["longitude"]),
            city=data.get("city"),
            region=data.get("region"),
            country=data.get("country_name"),
        )


def default_locators(timeout: float = 3.0) -> List[NetworkLocator]:
    return [IpApiLocator(timeout), IpInfoLocator(timeout), IpApiCoLocator(timeout)]


async def race_locators(
    locators: Iterable[NetworkLocator],
    timeout: Optional[float] = None,
    client_ip: Optional[str] = None,
) -> CoarseFix:
    """
    Query every locator at once and return the first successful fix for
    `client_ip` (or for this host when it is None).

    Losers are cancelled as soon as a winner is known. Raises
    ProviderUnavailable if every locator fails or the deadline passes.
    """
    pending = {asyncio.ensure_future(locator.locate(client_ip)): locator for locator in locators}
    if not pending:
        raise ProviderUnavailable("no network locators configured", provider="network")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout is not None else None
    errors: List[str] = []
    try:
        while pending:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            done, _ = await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            if not done:
                errors.append(f"deadline of {timeout:g}s passed")
                break
            for task in done:
                locator = pending.pop(task)
                try:
                    fix = task.result()
                except Exception as exc:
                    logger.debug("[CASCADE] locator %s failed: %s", locator.name, exc)
                    errors.append(f"{locator.name}: {exc}")
                    continue
                logger.debug("[CASCADE] locator %s won the race", locator.name)
                return fix
    finally:
        for task in pending:
            task.cancel()
    raise ProviderUnavailable("; ".join(errors) or "all network locators failed", provider="network")
