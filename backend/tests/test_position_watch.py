import asyncio

from domain.errors import PermissionDenied
from domain.models import AcquireAttempt, AcquireOptions, SensorReading
from services.position_acquirer import PositionAcquirer, SensorError
from services.position_watch import PositionWatch

from fakes import ScriptedSensor

FAST = AcquireOptions(attempts=(AcquireAttempt(0.01, True, 0.0),))


def test_watch_filters_small_moves_and_reports_errors():
    sensor = ScriptedSensor(
        [
            SensorReading(-4.3105, 15.3098, 10.0),
            SensorReading(-4.31053, 15.3098, 10.0),  # ~3 m
            SensorReading(-4.3115, 15.3098, 10.0),  # ~110 m
            SensorError(SensorError.PERMISSION_DENIED, "denied"),
        ]
    )
    updates, errors = [], []
    watch = PositionWatch(
        PositionAcquirer(sensor, FAST),
        updates.append,
        interval_seconds=0.001,
        distance_filter_m=10.0,
        on_error=errors.append,
    )

    async def scenario():
        watch.start()
        assert watch.running
        for _ in range(500):
            if any(isinstance(e, PermissionDenied) for e in errors):
                break
            await asyncio.sleep(0.005)
        await watch.stop()

    asyncio.run(scenario())

    assert [u.lat for u in updates] == [-4.3105, -4.3115]
    assert all(u.address == "" for u in updates)
    assert any(isinstance(e, PermissionDenied) for e in errors)
    assert watch.running is False
    assert watch.last.lat == -4.3115


def test_stop_before_start_is_noop():
    watch = PositionWatch(PositionAcquirer(ScriptedSensor([]), FAST), lambda loc: None)
    asyncio.run(watch.stop())
    assert watch.running is False
