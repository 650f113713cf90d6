"""Standalone runner for the Axiom quality checker."""

from __future__ import annotations

import asyncio
import logging
import signal

from cancellation_service.app import build_app_context
from cancellation_service.config import load_settings
from cancellation_service.logging_utils import get_logger

logger = logging.getLogger(__name__)


async def run_quality_checks(stop_event: asyncio.Event | None = None) -> None:
    """Run quality cycles on schedule until ``stop_event`` is set or a signal arrives."""
    settings = load_settings()
    context = build_app_context(settings)
    checker = context.create_quality_checker()
    stop = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, stop, sig)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(sig)

    checker.start()
    try:
        await stop.wait()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await checker.shutdown()
        await context.aclose()


def _request_stop(stop: asyncio.Event, sig: signal.Signals) -> None:
    logger.info("Received %s, stopping quality checker...", sig.name)
    stop.set()


def main() -> None:
    get_logger(__name__).info("Starting Axiom quality checker")
    asyncio.run(run_quality_checks())


if __name__ == "__main__":  # pragma: no cover
    main()
