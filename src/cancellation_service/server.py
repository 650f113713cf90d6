"""Entrypoint for the order cancellation HTTP service."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

if __package__ in (None, ""):
    sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # pragma: no cover

from cancellation_service import __version__
from cancellation_service.config import load_settings
from cancellation_service.logging_utils import configure_logging


def run_entrypoint() -> None:
    """Validate configuration, then serve the HTTP app with uvicorn."""
    settings = load_settings()
    configure_logging(settings.logging)

    from cancellation_service.transport.http_server import create_http_app

    try:
        import uvicorn
    except ImportError as exc:
        raise RuntimeError("uvicorn is required to serve the cancellation service") from exc

    logging.info("Starting Cancellation Service with Axiom logging v%s", __version__)
    logging.info("Axiom dataset: %s (region %s)", settings.axiom.dataset, settings.axiom.region)

    app = create_http_app()
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        ws="none",
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
