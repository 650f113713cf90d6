"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from cancellation_service.axiom.client import AxiomClient
from cancellation_service.axiom.health import HealthMonitor
from cancellation_service.axiom.log_service import CancellationLogService
from cancellation_service.config import Settings, load_settings
from cancellation_service.domain.cancellation import CancellationService
from cancellation_service.quality.checker import QualityChecker


@dataclass
class AppContext:
    """Application-wide dependency container.

    Built once from settings. The health monitor is created stopped; the
    HTTP server lifespan starts it.
    """

    settings: Settings
    axiom_client: AxiomClient
    log_service: CancellationLogService
    health_monitor: HealthMonitor
    cancellation_service: CancellationService

    def create_quality_checker(self) -> QualityChecker:
        monitoring = self.settings.monitoring
        return QualityChecker(
            api_base_url=monitoring.api_base_url,
            log_service=self.log_service,
            axiom_client=self.axiom_client,
            interval=monitoring.quality_check_interval_seconds,
        )

    async def aclose(self) -> None:
        await self.health_monitor.shutdown()
        await self.cancellation_service.drain()
        await self.axiom_client.aclose()


def build_app_context(settings: Settings) -> AppContext:
    axiom_client = AxiomClient(
        api_token=settings.axiom.api_token,
        dataset=settings.axiom.dataset,
        region=settings.axiom.region,
        timeout=settings.axiom.timeout_seconds,
    )
    log_service = CancellationLogService(axiom_client)
    return AppContext(
        settings=settings,
        axiom_client=axiom_client,
        log_service=log_service,
        health_monitor=HealthMonitor(
            axiom_client,
            interval=settings.monitoring.health_check_interval_seconds,
        ),
        cancellation_service=CancellationService(log_service),
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the cached application context."""
    return build_app_context(load_settings())
