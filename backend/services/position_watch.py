from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from domain.errors import LocationError
from domain.models import ResolvedLocation
from services.geocoding import haversine_m
from services.position_acquirer import PositionAcquirer

logger = logging.getLogger(__name__)


class PositionWatch:
    """
    Continuous tracking on top of the one-shot acquirer.

    Polls every `interval_seconds` and calls `on_update` when the position
    moved at least `distance_filter_m` since the last emitted fix. Updates
    carry coordinates only (empty address). The sensor stays in use until
    `stop()` is awaited.
    """

    def __init__(
        self,
        acquirer: PositionAcquirer,
        on_update: Callable[[ResolvedLocation], None],
        interval_seconds: float = 5.0,
        distance_filter_m: float = 10.0,
        on_error: Optional[Callable[[LocationError], None]] = None,
    ):
        self.acquirer = acquirer
        self.on_update = on_update
        self.on_error = on_error
        self.interval_seconds = interval_seconds
        self.distance_filter_m = distance_filter_m
        self.last: Optional[ResolvedLocation] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _moved_enough(self, location: ResolvedLocation) -> bool:
        if self.last is None:
            return True
        moved = haversine_m(self.last.lat, self.last.lng, location.lat, location.lng)
        return moved >= self.distance_filter_m

    async def _loop(self) -> None:
        while True:
            try:
                location = await self.acquirer.acquire()
            except LocationError as exc:
                logger.debug("[GPS] watch tick failed: %s", exc)
                if self.on_error is not None:
                    self.on_error(exc)
            else:
                if self._moved_enough(location):
                    self.last = location
                    self.on_update(location)
            await asyncio.sleep(self.interval_seconds)
