"""
FleetGate — API server entrypoint.

Configures structured logging and serves ``fleetgate.api.app`` with
uvicorn. This is the entrypoint for the API container:

    python -m fleetgate.server
"""

from __future__ import annotations

import logging
import sys

import structlog
import uvicorn

from fleetgate.config import settings

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure structured logging for structlog and stdlib loggers alike."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.log_format != "json"
        else structlog.processors.JSONRenderer()
    )
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    level = logging.getLevelName(settings.log_level.upper())

    structlog.configure(
        processors=[*shared, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Module loggers use logging.getLogger(__name__); render them the same way
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.add_logger_name, *shared],
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


def main() -> None:
    configure_logging()
    log = structlog.get_logger()
    log.info(
        "fleetgate.server.starting",
        host=settings.api_host,
        port=settings.api_port,
        dispatch_prefix=settings.dispatch_code_prefix,
        identity_prefix=settings.identity_code_prefix,
        throttle_limit=settings.attempt_limit,
    )
    uvicorn.run(
        "fleetgate.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
