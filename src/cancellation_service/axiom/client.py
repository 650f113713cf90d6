"""Async client for the Axiom ingest and query REST API."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from cancellation_service.axiom.models import IngestFailure, IngestResult, QueryResult

logger = logging.getLogger(__name__)

_REGION_BASE_URLS = {
    "us": "https://api.axiom.co",
    "eu": "https://api.eu.axiom.co",
}


class AxiomQueryError(Exception):
    """An APL query could not be executed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AxiomClient:
    """Thin async wrapper over the Axiom REST API for a single dataset.

    Ingestion and the health probe never raise: logging must not disturb the
    request path. Query failures are raised as :class:`AxiomQueryError` so
    callers can tell an empty window from a broken query.
    """

    def __init__(
        self,
        api_token: str,
        dataset: str,
        region: str = "us",
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_token:
            raise ValueError("Axiom API token is required")
        if not dataset:
            raise ValueError("Axiom dataset name is required")
        if region not in _REGION_BASE_URLS:
            raise ValueError('Axiom region must be "us" or "eu"')

        self._dataset = dataset
        self._base_url = _REGION_BASE_URLS[region]
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
        )
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }

    @property
    def dataset(self) -> str:
        return self._dataset

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def ingest_events(self, events: Sequence[dict[str, Any]]) -> IngestResult:
        """Send a batch of events to the dataset."""
        events = list(events)
        try:
            resp = await self._http.post(
                self._url(f"/v1/datasets/{self._dataset}/ingest"),
                json=events,
                headers=self._headers,
            )
            resp.raise_for_status()
        except Exception as exc:
            logger.error("Error ingesting %d event(s) to Axiom: %s", len(events), exc)
            return IngestResult(
                ingested=0,
                failed=len(events),
                failures=[IngestFailure(error=str(exc) or type(exc).__name__)],
            )

        result = _parse_ingest_status(resp, len(events))
        logger.debug(
            "Axiom ingest finished: ingested=%d failed=%d", result.ingested, result.failed
        )
        return result

    async def query_apl(
        self,
        apl: str,
        start_time: str,
        end_time: str,
        continuation_token: str | None = None,
    ) -> QueryResult:
        """Run an APL query over ``[start_time, end_time]``."""
        body: dict[str, Any] = {
            "apl": apl,
            "startTime": start_time,
            "endTime": end_time,
        }
        if continuation_token:
            body["cursor"] = continuation_token

        try:
            resp = await self._http.post(
                self._url("/v1/datasets/_apl"),
                params={"format": "legacy"},
                json=body,
                headers=self._headers,
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("Axiom APL query rejected (%s): %s", exc.response.status_code, apl)
            raise AxiomQueryError(
                f"Axiom query failed with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error querying Axiom with APL: %s", exc)
            raise AxiomQueryError(f"Axiom query failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise AxiomQueryError("Axiom query returned an unexpected payload")
        return QueryResult.from_legacy_payload(payload)

    async def check_health(self) -> bool:
        """Return True when Axiom answers and the dataset exists."""
        try:
            resp = await self._http.get(self._url("/v1/datasets"), headers=self._headers)
            resp.raise_for_status()
            datasets = resp.json()
        except Exception as exc:
            logger.error("Error checking Axiom health status: %s", exc)
            return False

        if not isinstance(datasets, list):
            logger.warning("Failed to retrieve datasets list from Axiom.")
            return False

        if not any(
            isinstance(ds, dict) and ds.get("name") == self._dataset for ds in datasets
        ):
            logger.warning('Dataset "%s" not found in Axiom account.', self._dataset)
            return False

        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


def _parse_ingest_status(resp: httpx.Response, sent: int) -> IngestResult:
    """Read Axiom's ingest status body, assuming full success when absent."""
    try:
        payload = resp.json()
    except ValueError:
        payload = None

    if not isinstance(payload, dict) or "ingested" not in payload:
        return IngestResult(ingested=sent, failed=0)

    failures = [
        IngestFailure(error=str(item.get("error", "unknown error")))
        for item in payload.get("failures") or []
        if isinstance(item, dict)
    ]
    return IngestResult(
        ingested=int(payload.get("ingested", 0)),
        failed=int(payload.get("failed", 0)),
        failures=failures,
    )
