"""Order cancellation rule and attempt logging."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any

from cancellation_service.axiom.log_service import CancellationLogService
from cancellation_service.axiom.models import CancellationAttempt
from cancellation_service.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

CANCELED = "CANCELED"
MAX_CANCELLABLE_AMOUNT = 1000
CANCELLATION_FEE_RATE_DIVISOR = 10

MSG_CANCELLED = "Order cancelled successfully"
MSG_ABOVE_LIMIT = "Orders above 1000.00 cannot be cancelled"
MSG_ALREADY_CANCELLED = "Order is already cancelled"
REASON_ABOVE_LIMIT = "Amount above the allowed limit"
REASON_ALREADY_CANCELLED = "Order already cancelled"


@dataclass(frozen=True)
class Order:
    id: str
    total_amount: float
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "totalAmount": self.total_amount, "status": self.status}


@dataclass(frozen=True)
class ClientInfo:
    ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class CancellationResult:
    success: bool
    message: str
    tax: float | None = None
    order: Order | None = None
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.tax is not None:
            body["tax"] = self.tax
        if self.order is not None:
            body["order"] = self.order.to_dict()
        return body


class CancellationService:
    """Applies the cancellation rule and logs every attempt in the background.

    The log service is optional; without one, attempts are not recorded.
    Log writes run as tasks on the current event loop and are never awaited
    by :meth:`cancel_order`.
    """

    def __init__(self, log_service: CancellationLogService | None = None) -> None:
        self._log_service = log_service
        self._pending: set[asyncio.Task[bool]] = set()

    @staticmethod
    def can_cancel_order(order: Order) -> bool:
        return order.total_amount <= MAX_CANCELLABLE_AMOUNT

    def cancel_order(self, order: Order, client: ClientInfo | None = None) -> CancellationResult:
        if not self.can_cancel_order(order):
            result = CancellationResult(
                success=False, message=MSG_ABOVE_LIMIT, failure_reason=REASON_ABOVE_LIMIT
            )
            self._log_attempt(order, order.status, result, client)
            return result

        if order.status == CANCELED:
            result = CancellationResult(
                success=False,
                message=MSG_ALREADY_CANCELLED,
                failure_reason=REASON_ALREADY_CANCELLED,
            )
            self._log_attempt(order, order.status, result, client)
            return result

        canceled_order = replace(order, status=CANCELED)
        result = CancellationResult(
            success=True,
            message=MSG_CANCELLED,
            tax=order.total_amount / CANCELLATION_FEE_RATE_DIVISOR,
            order=canceled_order,
        )
        self._log_attempt(order, canceled_order.status, result, client)
        return result

    async def drain(self) -> None:
        """Wait for in-flight log writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _log_attempt(
        self,
        order: Order,
        order_status: str,
        result: CancellationResult,
        client: ClientInfo | None,
    ) -> None:
        if self._log_service is None:
            return

        try:
            attempt = CancellationAttempt(
                order_id=order.id,
                total_amount=order.total_amount,
                order_status=order_status,
                success=result.success,
                message=result.message,
                tax=result.tax if result.success else None,
                failure_reason=None if result.success else result.failure_reason,
                timestamp=utc_now_iso(),
                client_ip=client.ip if client else None,
                user_agent=client.user_agent if client else None,
            )
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; cancellation attempt for %s not logged", order.id)
            return
        except Exception:
            logger.exception("Failed to prepare cancellation log for order %s", order.id)
            return

        task = loop.create_task(self._log_service.record_attempt(attempt))
        self._pending.add(task)
        task.add_done_callback(self._on_log_done)

    def _on_log_done(self, task: asyncio.Task[bool]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Failed to record cancellation attempt: %s", exc)
        elif not task.result():
            logger.warning("Cancellation attempt was not ingested by Axiom")
