"""Recording and retrieval of cancellation attempts stored in Axiom."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any

from cancellation_service.axiom.client import AxiomClient
from cancellation_service.axiom.models import CancellationAttempt, CancellationStatistics
from cancellation_service.utils.time import normalize_instant, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100
STATS_FETCH_LIMIT = 1000
UNKNOWN_FAILURE_REASON = "Unknown"

TimeBound = datetime | str


class CancellationLogError(Exception):
    """Base error for cancellation log retrieval."""


class LogQueryError(CancellationLogError):
    """Cancellation logs could not be queried."""


class StatisticsError(CancellationLogError):
    """Cancellation statistics could not be computed."""


class CancellationLogService:
    """Writes attempt records and reads them back for listings and statistics."""

    def __init__(self, client: AxiomClient) -> None:
        if client is None:
            raise ValueError("Axiom client is required")
        self._client = client
        self._dataset = client.dataset
        logger.info("Using Axiom dataset: %s", self._dataset)

    @property
    def dataset(self) -> str:
        return self._dataset

    async def record_attempt(self, record: CancellationAttempt | dict[str, Any]) -> bool:
        """Ingest one attempt; returns whether Axiom accepted it.

        Never raises. A missing ``timestamp`` is filled with the current time
        and ``_time`` is always set to the ingestion instant.
        """
        try:
            event = record.to_event() if isinstance(record, CancellationAttempt) else dict(record)
            now = utc_now_iso()
            if not event.get("timestamp"):
                event["timestamp"] = now
            event["_time"] = now

            logger.debug("Logging cancellation attempt for order %s", event.get("orderId"))
            result = await self._client.ingest_events([event])
            if result.failed:
                logger.warning(
                    "Axiom rejected %d cancellation event(s): %s",
                    result.failed,
                    "; ".join(f.error for f in result.failures),
                )
            return result.ingested > 0
        except Exception:
            logger.exception("Failed to log cancellation attempt")
            return False

    async def list_successful(
        self, start_time: TimeBound, end_time: TimeBound, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[dict[str, Any]]:
        """Successful attempts among the first ``limit`` records of the window.

        Filtering happens after the capped fetch, so fewer than ``limit``
        records may come back even when more successes exist.
        """
        logs = await self._query_logs(self._limited_query(limit), start_time, end_time)
        return [log for log in logs if log.get("success") is True]

    async def list_failed(
        self, start_time: TimeBound, end_time: TimeBound, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[dict[str, Any]]:
        """Failed attempts among the first ``limit`` records of the window."""
        logs = await self._query_logs(self._limited_query(limit), start_time, end_time)
        return [log for log in logs if log.get("success") is False]

    async def compute_statistics(
        self, start_time: TimeBound, end_time: TimeBound
    ) -> CancellationStatistics:
        try:
            logs = await self._query_logs(
                self._limited_query(STATS_FETCH_LIMIT), start_time, end_time
            )
            return summarize(logs)
        except Exception as exc:
            logger.error("Failed to get cancellation stats: %s", exc)
            raise StatisticsError(f"Failed to get cancellation statistics: {exc}") from exc

    def _limited_query(self, limit: int) -> str:
        return f"['{self._dataset}'] | limit {limit}"

    async def _query_logs(
        self,
        query: str,
        start_time: TimeBound,
        end_time: TimeBound,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Follow continuation tokens until exhausted or ``limit`` records are held."""
        try:
            full_query = (
                f"{query} | limit {limit}" if limit and "limit" not in query else query
            )
            start = normalize_instant(start_time)
            end = normalize_instant(end_time)
            logger.debug("Executing query: %s with time range %s to %s", full_query, start, end)

            results: list[dict[str, Any]] = []
            token: str | None = None
            while True:
                page = await self._client.query_apl(full_query, start, end, token)
                results.extend(page.matches)
                token = page.continuation_token

                if limit and len(results) >= limit:
                    results = results[:limit]
                    break
                if not token:
                    break

            logger.debug("Found %d logs", len(results))
            return results
        except Exception as exc:
            logger.error("Cancellation log query error: %s", exc)
            raise LogQueryError(f"Failed to query cancellation logs: {exc}") from exc


def summarize(logs: list[dict[str, Any]]) -> CancellationStatistics:
    """Aggregate raw attempt records.

    Records without a boolean ``success`` count toward the total only.
    """
    successful = [log for log in logs if log.get("success") is True]
    failed = [log for log in logs if log.get("success") is False]

    total_attempts = len(logs)
    total_tax = sum(_number(log.get("tax")) for log in successful)
    total_amount = sum(_number(log.get("totalAmount")) for log in logs)

    reasons = Counter(log.get("failureReason") or UNKNOWN_FAILURE_REASON for log in failed)
    # most_common keeps first-seen order among equal counts.
    top_reason = reasons.most_common(1)[0][0] if reasons else None

    return CancellationStatistics(
        total_attempts=total_attempts,
        successful_cancellations=len(successful),
        failed_cancellations=len(failed),
        success_rate=len(successful) / total_attempts if total_attempts else 0,
        average_tax=total_tax / len(successful) if successful else 0,
        total_tax_collected=total_tax,
        average_order_amount=total_amount / total_attempts if total_attempts else 0,
        top_failure_reason=top_reason,
    )


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value
