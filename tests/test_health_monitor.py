import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from cancellation_service.axiom.health import (
    HealthEvent,
    HealthMonitor,
    HealthStatus,
    StatusChange,
)


def _client(*results) -> MagicMock:
    client = MagicMock()
    client.check_health = AsyncMock(side_effect=list(results))
    return client


def test_constructor_validation():
    with pytest.raises(ValueError, match="client is required"):
        HealthMonitor(None)
    with pytest.raises(ValueError, match="positive"):
        HealthMonitor(MagicMock(), interval=0)


def test_initial_status_is_unknown():
    monitor = HealthMonitor(MagicMock(), interval=10)
    assert monitor.get_status() is HealthStatus.UNKNOWN
    assert monitor.is_running is False


@pytest.mark.asyncio
async def test_notifies_once_per_transition():
    monitor = HealthMonitor(_client(True, True, False, False, True), interval=10)
    changes: list[StatusChange] = []
    healthy_calls = []
    unhealthy_calls = []
    monitor.subscribe(HealthEvent.STATUS_CHANGED, changes.append)
    monitor.subscribe(HealthEvent.HEALTHY, lambda: healthy_calls.append(1))
    monitor.subscribe("unhealthy", lambda: unhealthy_calls.append(1))

    first = await monitor.check()
    changes.clear()
    healthy_calls.clear()
    for _ in range(4):
        await monitor.check()

    assert first is HealthStatus.HEALTHY
    assert [(c.old_status, c.new_status) for c in changes] == [
        (HealthStatus.HEALTHY, HealthStatus.UNHEALTHY),
        (HealthStatus.UNHEALTHY, HealthStatus.HEALTHY),
    ]
    assert len(healthy_calls) == 1
    assert len(unhealthy_calls) == 1
    assert monitor.get_status() is HealthStatus.HEALTHY


@pytest.mark.asyncio
async def test_first_check_reports_transition_from_unknown():
    monitor = HealthMonitor(_client(False), interval=10)
    changes: list[StatusChange] = []
    monitor.subscribe(HealthEvent.STATUS_CHANGED, changes.append)

    await monitor.check()

    assert len(changes) == 1
    assert changes[0].old_status is HealthStatus.UNKNOWN
    assert changes[0].new_status is HealthStatus.UNHEALTHY
    assert changes[0].timestamp.endswith("Z")


@pytest.mark.asyncio
async def test_probe_exception_maps_to_unhealthy_without_duplicates():
    client = MagicMock()
    client.check_health = AsyncMock(side_effect=RuntimeError("boom"))
    monitor = HealthMonitor(client, interval=10)
    unhealthy_calls = []
    monitor.subscribe(HealthEvent.UNHEALTHY, lambda: unhealthy_calls.append(1))

    assert await monitor.check() is HealthStatus.UNHEALTHY
    assert await monitor.check() is HealthStatus.UNHEALTHY
    assert len(unhealthy_calls) == 1


@pytest.mark.asyncio
async def test_async_subscribers_are_awaited_and_failures_isolated():
    monitor = HealthMonitor(_client(True), interval=10)
    received = []

    async def async_subscriber(change: StatusChange) -> None:
        received.append(change.new_status)

    def broken_subscriber(change: StatusChange) -> None:
        raise RuntimeError("subscriber bug")

    monitor.subscribe(HealthEvent.STATUS_CHANGED, broken_subscriber)
    monitor.subscribe(HealthEvent.STATUS_CHANGED, async_subscriber)

    assert await monitor.check() is HealthStatus.HEALTHY
    assert received == [HealthStatus.HEALTHY]


@pytest.mark.asyncio
async def test_unsubscribe_stops_notifications():
    monitor = HealthMonitor(_client(True, False), interval=10)
    changes = []
    unsubscribe = monitor.subscribe(HealthEvent.STATUS_CHANGED, changes.append)

    await monitor.check()
    unsubscribe()
    unsubscribe()
    await monitor.check()

    assert len(changes) == 1


def test_subscribe_rejects_unknown_event():
    monitor = HealthMonitor(MagicMock(), interval=10)
    with pytest.raises(ValueError):
        monitor.subscribe("exploded", lambda: None)


@pytest.mark.asyncio
async def test_start_checks_immediately_and_is_idempotent():
    client = MagicMock()
    client.check_health = AsyncMock(return_value=True)
    monitor = HealthMonitor(client, interval=60)

    monitor.start()
    task = monitor._task
    monitor.start()
    assert monitor._task is task
    assert monitor.is_running is True

    await asyncio.sleep(0.01)
    assert client.check_health.await_count == 1
    assert monitor.get_status() is HealthStatus.HEALTHY

    await monitor.shutdown()
    assert monitor.is_running is False
    monitor.stop()


@pytest.mark.asyncio
async def test_schedule_repeats_on_interval():
    client = MagicMock()
    client.check_health = AsyncMock(return_value=False)
    monitor = HealthMonitor(client, interval=0.01)

    monitor.start()
    await asyncio.sleep(0.1)
    await monitor.shutdown()

    assert client.check_health.await_count >= 3
