"""Logging helpers for the order cancellation service.

Every record carries the id of the HTTP request it was emitted under
(``-`` outside a request). The request logging middleware sets the id;
background tasks spawned while serving a request inherit it, so the Axiom
write for a cancellation logs under the same id as the request itself.
"""

from __future__ import annotations

import logging
import sys
import threading
from contextvars import ContextVar, Token
from pathlib import Path

from cancellation_service.config import LoggingSettings, load_settings

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(request_id)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
NO_REQUEST_ID = "-"

_request_id: ContextVar[str] = ContextVar("request_id", default=NO_REQUEST_ID)


def set_request_id(request_id: str) -> Token[str]:
    """Bind ``request_id`` to the current context and return the reset token."""
    return _request_id.set(request_id)


def reset_request_id(token: Token[str]) -> None:
    _request_id.reset(token)


def current_request_id() -> str:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Stamps ``record.request_id`` from the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


def _with_format(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(RequestIdFilter())
    return handler


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Install stderr (and optional file) handlers on the root logger.

    uvicorn runs with ``log_config=None`` and propagates into these handlers.
    """
    global _logging_configured

    if settings is None:
        settings = load_settings().logging
    level = getattr(logging, settings.level.upper(), logging.INFO)

    handlers = [_with_format(logging.StreamHandler(sys.stderr))]
    if settings.file:
        try:
            Path(settings.file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(_with_format(logging.FileHandler(settings.file)))
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", settings.file, exc)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # httpx logs every request at INFO; keep health polling quiet.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)
