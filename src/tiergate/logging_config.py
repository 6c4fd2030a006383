"""Structured logging setup."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, cast

import structlog

from tiergate.config import Settings
from tiergate.sentry import init_sentry


def configure_logging(
    service_name: str = "tiergate",
    log_level: int | str = logging.INFO,
    json_format: bool | None = None,
) -> structlog.stdlib.BoundLogger:
    """
    Configure stdlib logging and structlog together.

    Call this once at process startup. Library modules only ever call
    ``structlog.get_logger()`` and never configure anything themselves.

    Args:
        service_name: Name bound to the returned logger
        log_level: Minimum log level, as a level number or name
        json_format: Use JSON output (True) or console format (False).
                     If None, JSON everywhere except ENVIRONMENT=development.

    Returns:
        Configured structlog logger
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO)
    if json_format is None:
        environment = os.environ.get("ENVIRONMENT", "development")
        json_format = environment != "development"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates when called twice
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return cast("structlog.stdlib.BoundLogger", structlog.get_logger(service_name))


def configure_logging_from_settings(settings: Settings) -> structlog.stdlib.BoundLogger:
    """Initialize Sentry when ``SENTRY_DSN`` is set, then configure logging from settings."""
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )
    json_format = settings.LOG_JSON
    if json_format is None:
        json_format = settings.ENVIRONMENT != "development"
    return configure_logging(log_level=settings.LOG_LEVEL, json_format=json_format)
