"""
Device position acquisition.

Platform sensors are callback based (one-shot request, success/error
callbacks, possibly from another thread). `PositionAcquirer` turns each
request into one future and runs the bounded retry ladder over it:

    attempt 1: 5 s, high accuracy    accept < 100 m
    attempt 2: 8 s, high accuracy    accept < 100 m
    attempt 3: 12 s, low-power mode  accept < 200 m

Concurrent callers share a single in-flight acquisition; the sensor is
never queried in parallel.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from domain.errors import (
    LocationError,
    PermissionDenied,
    PositionTimeout,
    SignalUnavailable,
)
from domain.models import (
    AcquireAttempt,
    AcquireOptions,
    Coordinates,
    ResolvedLocation,
    SensorReading,
    SourceType,
)

logger = logging.getLogger(__name__)

DEVICE_CONFIDENCE_MAX = 0.99
DEVICE_CONFIDENCE_MIN = 0.7


class SensorError(Exception):
    """Error reported by a platform sensor, using the W3C geolocation codes."""

    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3

    def __init__(self, code: int, message: str = ""):
        super().__init__(message or f"sensor error {code}")
        self.code = code


class PositionSensor(ABC):
    """Adapter over a callback-based platform sensor."""

    @abstractmethod
    def request_position(
        self,
        on_success: Callable[[SensorReading], None],
        on_error: Callable[[Exception], None],
        *,
        high_accuracy: bool,
        timeout_seconds: float,
        maximum_age_seconds: float,
    ) -> Any:
        """Start a one-shot request. Returns an opaque handle for `cancel`."""

    def cancel(self, handle: Any) -> None:
        """Release a pending request. Default: nothing to release."""


class ReportedPositionSensor(PositionSensor):
    """Sensor fed by a client that read its own GPS and posted the result."""

    def __init__(self, reading: Optional[SensorReading] = None, denied: bool = False):
        self.reading = reading
        self.denied = denied

    def report(self, reading: Optional[SensorReading], denied: bool = False) -> None:
        self.reading = reading
        self.denied = denied

    def request_position(self, on_success, on_error, *, high_accuracy, timeout_seconds, maximum_age_seconds):
        if self.denied:
            on_error(SensorError(SensorError.PERMISSION_DENIED, "client reported permission denied"))
        elif self.reading is None:
            on_error(SensorError(SensorError.POSITION_UNAVAILABLE, "client reported no position"))
        else:
            on_success(self.reading)
        return None


class CancellationToken:
    """Explicit cancellation for `PositionAcquirer.acquire`."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def device_confidence(accuracy_m: float, final_accuracy_m: float = 200.0) -> float:
    """Map reported accuracy to a confidence score (15 m -> ~0.97)."""
    score = DEVICE_CONFIDENCE_MAX - 0.29 * accuracy_m / final_accuracy_m
    return round(max(DEVICE_CONFIDENCE_MIN, min(DEVICE_CONFIDENCE_MAX, score)), 4)


def _translate(error: Exception) -> LocationError:
    if isinstance(error, LocationError):
        return error
    code = getattr(error, "code", None)
    if code == SensorError.PERMISSION_DENIED:
        return PermissionDenied(str(error))
    if code == SensorError.TIMEOUT:
        return PositionTimeout(str(error))
    return SignalUnavailable(str(error))


class PositionAcquirer:
    def __init__(self, sensor: PositionSensor, options: Optional[AcquireOptions] = None):
        self.sensor = sensor
        self.options = options or AcquireOptions()
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_options: Optional[AcquireOptions] = None
        self._waiters = 0

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def acquire(
        self,
        options: Optional[AcquireOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ResolvedLocation:
        """
        Resolve the device position or raise PermissionDenied,
        SignalUnavailable or PositionTimeout.

        The returned location has an empty address; address resolution is
        the caller's concern. Cancelling the token (or the awaiting task)
        detaches this caller; the sensor request is released once no caller
        is left waiting.

        A caller that joins an acquisition already in flight shares its
        result; its own `options` are not applied.
        """
        if not self.busy:
            self._inflight_options = options or self.options
            self._inflight = asyncio.ensure_future(self._run(self._inflight_options))
            self._waiters = 0
        elif options is not None and options != self._inflight_options:
            logger.debug("[GPS] joining in-flight acquisition; its options win over %s", options)
        else:
            logger.debug("[GPS] joining in-flight acquisition")
        task = self._inflight
        self._waiters += 1
        try:
            if cancel_token is None:
                return await asyncio.shield(task)
            cancelled = asyncio.ensure_future(cancel_token.wait())
            try:
                done, _ = await asyncio.wait({task, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                cancelled.cancel()
            if task in done:
                return task.result()
            logger.debug("[GPS] acquisition cancelled by caller")
            raise asyncio.CancelledError()
        finally:
            self._waiters -= 1
            if self._waiters == 0 and not task.done():
                task.cancel()

    async def _run(self, options: AcquireOptions) -> ResolvedLocation:
        attempts = options.attempts
        last_accuracy: Optional[float] = None
        timeouts = 0

        for index, attempt in enumerate(attempts, start=1):
            final = index == len(attempts)
            threshold = options.final_accuracy_m if final else options.accept_accuracy_m
            try:
                reading = await self._attempt(attempt)
            except PermissionDenied:
                logger.info("[GPS] permission denied")
                raise
            except PositionTimeout as exc:
                timeouts += 1
                logger.debug("[GPS] attempt %d/%d timed out: %s", index, len(attempts), exc)
                continue
            except SignalUnavailable as exc:
                logger.debug("[GPS] attempt %d/%d unavailable: %s", index, len(attempts), exc)
                continue

            if not Coordinates(reading.lat, reading.lng).is_sane():
                logger.debug("[GPS] attempt %d/%d returned insane coordinates %s,%s", index, len(attempts), reading.lat, reading.lng)
                continue
            accuracy = reading.accuracy_meters
            if accuracy is None:
                logger.debug("[GPS] attempt %d/%d reported no accuracy", index, len(attempts))
                continue
            last_accuracy = accuracy
            if accuracy < threshold:
                logger.debug("[GPS] attempt %d/%d accepted at %.0fm", index, len(attempts), accuracy)
                return ResolvedLocation(
                    address="",
                    lat=reading.lat,
                    lng=reading.lng,
                    source_type=SourceType.DEVICE,
                    confidence=device_confidence(accuracy, options.final_accuracy_m),
                    accuracy_meters=accuracy,
                )
            logger.debug(
                "[GPS] attempt %d/%d rejected: %.0fm (need < %.0fm)", index, len(attempts), accuracy, threshold
            )

        if attempts and timeouts == len(attempts):
            raise PositionTimeout(f"no fix after {len(attempts)} attempts")
        raise SignalUnavailable(
            f"no fix under {options.final_accuracy_m:.0f}m (last accuracy: {last_accuracy})",
            last_accuracy=last_accuracy,
        )

    async def _attempt(self, attempt: AcquireAttempt) -> SensorReading:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def _resolve(reading: SensorReading) -> None:
            if not future.done():
                future.set_result(reading)

        def _reject(error: Exception) -> None:
            if not future.done():
                future.set_exception(_translate(error))

        handle = self.sensor.request_position(
            lambda reading: loop.call_soon_threadsafe(_resolve, reading),
            lambda error: loop.call_soon_threadsafe(_reject, error),
            high_accuracy=attempt.high_accuracy,
            timeout_seconds=attempt.timeout_seconds,
            maximum_age_seconds=attempt.maximum_age_seconds,
        )
        try:
            return await asyncio.wait_for(future, timeout=attempt.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise PositionTimeout(f"no fix within {attempt.timeout_seconds:g}s") from exc
        finally:
            self.sensor.cancel(handle)
