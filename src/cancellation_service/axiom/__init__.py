"""Axiom integration: dataset client, cancellation log service, health monitor."""

from cancellation_service.axiom.client import AxiomClient, AxiomQueryError
from cancellation_service.axiom.health import (
    HealthEvent,
    HealthMonitor,
    HealthStatus,
    StatusChange,
)
from cancellation_service.axiom.log_service import (
    CancellationLogError,
    CancellationLogService,
    LogQueryError,
    StatisticsError,
)
from cancellation_service.axiom.models import (
    CancellationAttempt,
    CancellationStatistics,
    IngestFailure,
    IngestResult,
    QueryResult,
)

__all__ = [
    "AxiomClient",
    "AxiomQueryError",
    "CancellationAttempt",
    "CancellationLogError",
    "CancellationLogService",
    "CancellationStatistics",
    "HealthEvent",
    "HealthMonitor",
    "HealthStatus",
    "IngestFailure",
    "IngestResult",
    "LogQueryError",
    "QueryResult",
    "StatisticsError",
    "StatusChange",
]
