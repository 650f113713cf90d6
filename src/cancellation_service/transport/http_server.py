"""Starlette HTTP surface for order cancellation and Axiom log inspection."""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from cancellation_service.app import AppContext, get_app_context
from cancellation_service.axiom.health import HealthEvent, HealthStatus, StatusChange
from cancellation_service.domain.cancellation import ClientInfo, Order
from cancellation_service.logging_utils import reset_request_id, set_request_id
from cancellation_service.quality.checker import QualityChecker
from cancellation_service.utils.http import get_client_ip, get_user_agent
from cancellation_service.utils.time import parse_iso, trailing_window

logger = logging.getLogger(__name__)

AMOUNT_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")
STATS_DEFAULT_DAYS = 30
LOGS_DEFAULT_DAYS = 7
LOGS_DEFAULT_LIMIT = 100
LOGS_MAX_LIMIT = 1000

_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


class OrderPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    total_amount: float = Field(alias="totalAmount", allow_inf_nan=False)
    status: str

    def to_order(self) -> Order:
        return Order(id=self.id, total_amount=self.total_amount, status=self.status)


class BadRequest(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def _sanitize_log_value(value: str) -> str:
    return _CONTROL_CHAR_RE.sub("_", value)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration of every request."""

    EXEMPT_PATHS = frozenset({"/health"})

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        request_id = _sanitize_log_value(request.headers.get("x-request-id", str(uuid.uuid4())))
        safe_path = _sanitize_log_value(request.url.path)
        token = set_request_id(request_id)
        try:
            start_time = time.time()
            response = await call_next(request)
            duration_ms = int((time.time() - start_time) * 1000)
            logger.info(
                "method=%s path=%s status=%d duration_ms=%d",
                request.method,
                safe_path,
                response.status_code,
                duration_ms,
            )
        finally:
            reset_request_id(token)
        response.headers.setdefault("x-request-id", request_id)
        return response


def _time_window(request: Request, default_days: int) -> tuple[datetime, datetime]:
    default_start, default_end = trailing_window(default_days)
    start = _parse_date_param(request, "startDate") or default_start
    end = _parse_date_param(request, "endDate") or default_end
    return start, end


def _parse_date_param(request: Request, name: str) -> datetime | None:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return parse_iso(raw)
    except ValueError as exc:
        raise BadRequest(f"Invalid {name} parameter. Must be an ISO-8601 date-time.") from exc


def _parse_limit(request: Request) -> int:
    raw = request.query_params.get("limit")
    if raw is None or raw == "":
        return LOGS_DEFAULT_LIMIT
    try:
        limit = int(raw)
    except ValueError as exc:
        raise BadRequest("Invalid limit parameter. Must be an integer.") from exc
    if not 1 <= limit <= LOGS_MAX_LIMIT:
        raise BadRequest(f"Invalid limit parameter. Must be between 1 and {LOGS_MAX_LIMIT}.")
    return limit


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


def create_http_app(context: AppContext | None = None) -> Starlette:
    """Create the HTTP application around an application context."""
    ctx = context or get_app_context()
    settings = ctx.settings
    cancellation_service = ctx.cancellation_service
    log_service = ctx.log_service
    health_monitor = ctx.health_monitor

    def _client_info(request: Request) -> ClientInfo:
        return ClientInfo(
            ip=get_client_ip(
                request, trust_forwarded_headers=settings.server.trust_forwarded_headers
            ),
            user_agent=get_user_agent(request),
        )

    async def cancel_handler(request: Request) -> Response:
        try:
            payload = OrderPayload.model_validate(await request.json())
        except json.JSONDecodeError:
            return JSONResponse(
                {"error": "invalid_json", "message": "Request body must be JSON"},
                status_code=400,
            )
        except ValidationError as exc:
            return JSONResponse(
                {
                    "error": "invalid_order",
                    "message": "; ".join(
                        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                        for err in exc.errors()
                    ),
                },
                status_code=400,
            )

        result = cancellation_service.cancel_order(payload.to_order(), _client_info(request))
        return JSONResponse(result.to_dict())

    async def can_cancel_handler(request: Request) -> Response:
        raw_amount = request.path_params["total_amount"]
        if not AMOUNT_PATTERN.match(raw_amount):
            return _bad_request("Invalid amount parameter. Must be a positive number.")

        order = Order(
            id=request.path_params["order_id"],
            total_amount=float(raw_amount),
            status="PENDING",
        )
        can_cancel = cancellation_service.can_cancel_order(order)
        return JSONResponse(
            {
                "canCancel": can_cancel,
                "message": (
                    "Order can be cancelled"
                    if can_cancel
                    else "Order cannot be cancelled (amount above 1000.00)"
                ),
            }
        )

    async def axiom_health_handler(request: Request) -> Response:
        status = health_monitor.get_status()
        healthy = status == HealthStatus.HEALTHY
        return JSONResponse(
            {"status": status.value, "healthy": healthy},
            status_code=200 if healthy else 503,
        )

    async def liveness_handler(request: Request) -> Response:
        return JSONResponse({"status": "ok"})

    async def stats_handler(request: Request) -> Response:
        try:
            start, end = _time_window(request, STATS_DEFAULT_DAYS)
        except BadRequest as exc:
            return _bad_request(exc.message)

        try:
            stats = await log_service.compute_statistics(start, end)
        except Exception:
            logger.exception("Failed to get cancellation statistics")
            return JSONResponse(
                {"error": "Failed to get cancellation statistics"}, status_code=500
            )
        return JSONResponse(stats.to_dict())

    def _logs_handler(kind: str) -> Callable[[Request], Any]:
        async def handler(request: Request) -> Response:
            try:
                start, end = _time_window(request, LOGS_DEFAULT_DAYS)
                limit = _parse_limit(request)
            except BadRequest as exc:
                return _bad_request(exc.message)

            fetch = log_service.list_successful if kind == "successful" else log_service.list_failed
            try:
                logs = await fetch(start, end, limit)
            except Exception:
                logger.exception("Failed to get %s cancellation logs", kind)
                return JSONResponse(
                    {"error": f"Failed to get {kind} cancellation logs"}, status_code=500
                )
            return JSONResponse(logs)

        return handler

    async def http_exception_handler(request: Request, exc: HTTPException) -> Response:
        return JSONResponse(
            {"error": exc.detail, "message": exc.detail, "statusCode": exc.status_code},
            status_code=exc.status_code,
        )

    async def unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        logger.error("Error occurred: %s", exc, exc_info=exc)
        return JSONResponse(
            {
                "error": "Internal Server Error",
                "message": "An unknown error occurred",
                "statusCode": 500,
            },
            status_code=500,
        )

    def _on_status_changed(change: StatusChange) -> None:
        logger.info(
            "Axiom integration status changed from %s to %s at %s",
            change.old_status.value,
            change.new_status.value,
            change.timestamp,
        )

    def _on_unhealthy() -> None:
        logger.error("Axiom integration is unavailable. Cancellation logs may be lost.")

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Starting Axiom health monitoring for dataset %s", ctx.axiom_client.dataset)
        unsubscribers = [
            health_monitor.subscribe(HealthEvent.STATUS_CHANGED, _on_status_changed),
            health_monitor.subscribe(HealthEvent.UNHEALTHY, _on_unhealthy),
        ]
        health_monitor.start()

        quality_checker: QualityChecker | None = None
        if settings.monitoring.quality_check_enabled:
            # The first cycle calls back into this server, which is not listening yet.
            quality_checker = ctx.create_quality_checker().start(
                initial_delay=settings.monitoring.quality_check_initial_delay_seconds
            )
        app.state.quality_checker = quality_checker

        try:
            yield
        finally:
            logger.info("Stopping cancellation service...")
            if quality_checker is not None:
                await quality_checker.shutdown()
            for unsubscribe in unsubscribers:
                unsubscribe()
            await ctx.aclose()

    routes = [
        Route("/cancel", endpoint=cancel_handler, methods=["POST"]),
        Route(
            "/can-cancel/{order_id}/{total_amount}",
            endpoint=can_cancel_handler,
            methods=["GET"],
        ),
        Route("/health", endpoint=liveness_handler, methods=["GET"]),
        Route("/health/axiom", endpoint=axiom_health_handler, methods=["GET"]),
        Route("/stats/cancellations", endpoint=stats_handler, methods=["GET"]),
        Route(
            "/logs/cancellations/successful",
            endpoint=_logs_handler("successful"),
            methods=["GET"],
        ),
        Route(
            "/logs/cancellations/failed",
            endpoint=_logs_handler("failed"),
            methods=["GET"],
        ),
    ]

    app = Starlette(
        routes=routes,
        middleware=[Middleware(RequestLoggingMiddleware)],
        exception_handlers={
            HTTPException: http_exception_handler,
            Exception: unhandled_exception_handler,
        },
        lifespan=lifespan,
    )
    app.state.context = ctx
    return app
