"""Periodic health monitoring of the Axiom integration."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from cancellation_service.axiom.client import AxiomClient
from cancellation_service.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 300.0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class HealthEvent(str, Enum):
    STATUS_CHANGED = "status-changed"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class StatusChange:
    old_status: HealthStatus
    new_status: HealthStatus
    timestamp: str


Subscriber = Callable[..., Any]


class HealthMonitor:
    """Tracks Axiom availability and notifies subscribers on transitions.

    Status starts as ``unknown``. Subscribers hear about a status only when it
    changes: ``status-changed`` callbacks receive a :class:`StatusChange`,
    ``healthy``/``unhealthy`` callbacks are called without arguments.
    Callbacks may be coroutine functions.
    """

    def __init__(self, client: AxiomClient, interval: float = DEFAULT_INTERVAL_SECONDS) -> None:
        if client is None:
            raise ValueError("Axiom client is required")
        if interval <= 0:
            raise ValueError("Health check interval must be positive")
        self._client = client
        self._interval = interval
        self._status = HealthStatus.UNKNOWN
        self._task: asyncio.Task[None] | None = None
        self._subscribers: dict[HealthEvent, list[Subscriber]] = {event: [] for event in HealthEvent}

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_status(self) -> HealthStatus:
        return self._status

    def subscribe(self, event: HealthEvent | str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``event``; returns a function that unregisters it."""
        key = HealthEvent(event)
        self._subscribers[key].append(callback)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers[key].remove(callback)

        return unsubscribe

    def start(self) -> "HealthMonitor":
        """Check now and then every ``interval`` seconds. No-op when running."""
        if self.is_running:
            return self
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="axiom-health-monitor"
        )
        return self

    def stop(self) -> "HealthMonitor":
        if self._task is not None:
            self._task.cancel()
            self._task = None
        return self

    async def shutdown(self) -> None:
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self._interval)

    async def check(self) -> HealthStatus:
        """Probe Axiom once and publish a transition if the status moved."""
        try:
            healthy = await self._client.check_health()
        except Exception:
            logger.exception("Axiom health probe raised")
            healthy = False

        new_status = HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY
        if new_status != self._status:
            change = StatusChange(
                old_status=self._status,
                new_status=new_status,
                timestamp=utc_now_iso(),
            )
            self._status = new_status
            await self._notify(HealthEvent.STATUS_CHANGED, change)
            await self._notify(
                HealthEvent.HEALTHY if healthy else HealthEvent.UNHEALTHY,
            )
        return self._status

    async def _notify(self, event: HealthEvent, *args: Any) -> None:
        for callback in list(self._subscribers[event]):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Health subscriber for %s failed", event.value)
