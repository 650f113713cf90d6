"""Records exchanged with the Axiom dataset."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CancellationAttempt(BaseModel):
    """One cancellation attempt, successful or not.

    Serialised with the camelCase field names already used in the dataset.
    ``tax`` only accompanies successes and ``failure_reason`` only failures.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    order_id: str = Field(alias="orderId")
    total_amount: float = Field(alias="totalAmount")
    order_status: str = Field(alias="orderStatus")
    success: bool
    message: str
    tax: float | None = None
    timestamp: str | None = None
    failure_reason: str | None = Field(default=None, alias="failureReason")
    client_ip: str | None = Field(default=None, alias="clientIp")
    user_agent: str | None = Field(default=None, alias="userAgent")

    @model_validator(mode="after")
    def _check_outcome_fields(self) -> "CancellationAttempt":
        if self.success and self.failure_reason is not None:
            raise ValueError("failureReason is only allowed on failed attempts")
        if not self.success and self.tax is not None:
            raise ValueError("tax is only allowed on successful attempts")
        return self

    def to_event(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CancellationStatistics(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    total_attempts: int = Field(alias="totalAttempts")
    successful_cancellations: int = Field(alias="successfulCancellations")
    failed_cancellations: int = Field(alias="failedCancellations")
    success_rate: float = Field(alias="successRate")
    average_tax: float = Field(alias="averageTax")
    total_tax_collected: float = Field(alias="totalTaxCollected")
    average_order_amount: float = Field(alias="averageOrderAmount")
    top_failure_reason: str | None = Field(default=None, alias="topFailureReason")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class IngestFailure:
    error: str


@dataclass
class IngestResult:
    ingested: int
    failed: int
    failures: list[IngestFailure] = field(default_factory=list)


@dataclass
class QueryResult:
    matches: list[dict[str, Any]]
    continuation_token: str | None = None

    @classmethod
    def from_legacy_payload(cls, payload: dict[str, Any]) -> "QueryResult":
        """Build a result from Axiom's legacy query format.

        Each match carries the stored event under ``data``; the cursor for the
        next page, if any, sits in ``status.continuationToken``.
        """
        matches: list[dict[str, Any]] = []
        for match in payload.get("matches") or []:
            data = match.get("data") if isinstance(match, dict) else None
            if isinstance(data, dict):
                matches.append(data)
        status = payload.get("status") or {}
        token = status.get("continuationToken") if isinstance(status, dict) else None
        return cls(matches=matches, continuation_token=token or None)
