"""End-to-end quality probe of the cancellation logging pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable

import httpx

from cancellation_service.axiom.client import AxiomClient
from cancellation_service.axiom.log_service import CancellationLogService
from cancellation_service.utils.time import utc_now, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 3600.0
SUCCESS_PROBE_AMOUNT = 500
FAILURE_PROBE_AMOUNT = 1500
REQUIRED_RECORD_FIELDS = (
    "orderId",
    "totalAmount",
    "orderStatus",
    "success",
    "message",
    "timestamp",
)


class QualityCheckError(Exception):
    """A quality check step found a problem."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message


@dataclass
class StepResult:
    name: str
    passed: bool
    duration_ms: int
    detail: str | None = None


@dataclass
class QualityReport:
    started_at: str
    finished_at: str | None = None
    passed: bool = False
    steps: list[StepResult] = field(default_factory=list)
    error: str | None = None

    @property
    def failed_step(self) -> str | None:
        for step in self.steps:
            if not step.passed:
                return step.name
        return None


class QualityChecker:
    """Periodically exercises the HTTP surface and the Axiom pipeline.

    One cycle runs five steps in order and stops at the first failure:
    health endpoint, a cancellation that must succeed, one that must fail,
    structure of the latest stored success, and statistics consistency.
    A failed cycle is logged and reported; the schedule keeps running.
    """

    def __init__(
        self,
        api_base_url: str,
        log_service: CancellationLogService,
        axiom_client: AxiomClient,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        http_client: httpx.AsyncClient | None = None,
        settle_seconds: float = 1.0,
        request_timeout: float = 10.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("Quality check interval must be positive")
        self._base_url = api_base_url.rstrip("/")
        self._log_service = log_service
        self._axiom_client = axiom_client
        self._interval = interval
        self._settle_seconds = settle_seconds
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=request_timeout)
        self._task: asyncio.Task[None] | None = None
        self.last_report: QualityReport | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, initial_delay: float = 0.0) -> "QualityChecker":
        """Schedule cycles every ``interval`` seconds, the first after ``initial_delay``.

        No-op when already running.
        """
        if self.is_running:
            return self
        if initial_delay < 0:
            raise ValueError("Initial delay must not be negative")
        logger.info(
            "Starting Axiom quality checks every %.1f minutes (first in %.0f s)",
            self._interval / 60,
            initial_delay,
        )
        self._task = asyncio.get_running_loop().create_task(
            self._run(initial_delay), name="axiom-quality-check"
        )
        return self

    def stop(self) -> "QualityChecker":
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Quality checks stopped")
        return self

    async def shutdown(self) -> None:
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._owns_client:
            await self._http.aclose()

    async def _run(self, initial_delay: float = 0.0) -> None:
        if initial_delay > 0:
            await asyncio.sleep(initial_delay)
        while True:
            await self.run_cycle()
            await asyncio.sleep(self._interval)

    async def run_cycle(self) -> QualityReport:
        """Run one quality cycle. Never raises."""
        report = QualityReport(started_at=utc_now_iso())
        logger.info("Quality check started at %s", report.started_at)

        steps: list[tuple[str, Callable[[], Awaitable[str | None]]]] = [
            ("health", self._check_health_endpoint),
            ("successful_cancellation", self._check_successful_cancellation),
            ("failed_cancellation", self._check_failed_cancellation),
            ("data_consistency", self._check_data_consistency),
            ("statistics", self._check_statistics),
        ]

        try:
            for name, step in steps:
                started = time.monotonic()
                try:
                    detail = await step()
                except Exception as exc:
                    report.steps.append(
                        StepResult(
                            name=name,
                            passed=False,
                            duration_ms=_elapsed_ms(started),
                            detail=str(exc),
                        )
                    )
                    raise
                report.steps.append(
                    StepResult(
                        name=name,
                        passed=True,
                        duration_ms=_elapsed_ms(started),
                        detail=detail,
                    )
                )
            report.passed = True
        except Exception as exc:
            report.error = str(exc)
            logger.error(
                "Quality check FAILED at step %s: %s",
                report.failed_step,
                exc,
                exc_info=True,
            )
        finally:
            report.finished_at = utc_now_iso()

        if report.passed:
            logger.info(
                "Quality check passed (%d steps) at %s", len(report.steps), report.finished_at
            )
        self.last_report = report
        return report

    async def _check_health_endpoint(self) -> str:
        resp = await self._http.get(f"{self._base_url}/health/axiom")
        body = _json_body(resp)
        logger.info("Health status: %s (healthy=%s)", body.get("status"), body.get("healthy"))
        if not body.get("healthy"):
            raise QualityCheckError("health", "Axiom integration is not healthy")
        return str(body.get("status"))

    async def _check_successful_cancellation(self) -> str:
        body = await self._submit_probe_order(SUCCESS_PROBE_AMOUNT)
        if not body.get("success"):
            raise QualityCheckError(
                "successful_cancellation",
                f"Unexpected cancellation failure: {body.get('message')}",
            )
        await asyncio.sleep(self._settle_seconds)
        return str(body.get("message"))

    async def _check_failed_cancellation(self) -> str:
        body = await self._submit_probe_order(FAILURE_PROBE_AMOUNT)
        if body.get("success"):
            raise QualityCheckError(
                "failed_cancellation",
                "Cancellation succeeded although the amount is above the limit",
            )
        await asyncio.sleep(self._settle_seconds)
        return str(body.get("message"))

    async def _check_data_consistency(self) -> str:
        if not await self._axiom_client.check_health():
            raise QualityCheckError("data_consistency", "Axiom client is not healthy")

        now = utc_now()
        logs = await self._log_service.list_successful(now - timedelta(hours=24), now, 1)
        if not logs:
            logger.info("No successful cancellation in the last 24 hours to inspect")
            return "no records"

        missing = [name for name in REQUIRED_RECORD_FIELDS if name not in logs[0]]
        if missing:
            raise QualityCheckError(
                "data_consistency",
                f"Required fields missing from log record: {', '.join(missing)}",
            )
        return f"record {logs[0].get('orderId')} complete"

    async def _check_statistics(self) -> str:
        now = utc_now()
        stats = await self._log_service.compute_statistics(now - timedelta(days=7), now)
        logger.info("Cancellation statistics: %s", stats.to_dict())

        if stats.total_attempts != stats.successful_cancellations + stats.failed_cancellations:
            raise QualityCheckError(
                "statistics",
                "totalAttempts does not match successful plus failed cancellations",
            )
        if stats.total_attempts > 0 and not 0 <= stats.success_rate <= 1:
            raise QualityCheckError("statistics", "successRate must be between 0 and 1")
        return f"{stats.total_attempts} attempts"

    async def _submit_probe_order(self, amount: float) -> dict[str, Any]:
        order = {
            "id": f"test-{int(time.time() * 1000)}",
            "totalAmount": amount,
            "status": "PENDING",
        }
        resp = await self._http.post(f"{self._base_url}/cancel", json=order)
        resp.raise_for_status()
        body = _json_body(resp)
        logger.info("Cancellation probe response for %s: %s", order["id"], body)
        return body


def _json_body(resp: httpx.Response) -> dict[str, Any]:
    payload = resp.json()
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object from {resp.request.url}")
    return payload


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
