"""Sentry error reporting for processes embedding tiergate."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

if TYPE_CHECKING:
    from sentry_sdk.types import Event

DEFAULT_TRACES_SAMPLE_RATE = 0.2  # 20% of transactions in production
DEV_TRACES_SAMPLE_RATE = 1.0

SENSITIVE_KEYS = ("password", "token", "secret", "api_key", "apikey", "credentials")


def scrub_event(event: Event, _hint: dict[str, Any]) -> Event | None:
    """Mask secrets in extra context before an event leaves the process."""
    extra = event.get("extra")
    if extra is not None and isinstance(extra, dict):
        for key in list(extra.keys()):
            if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
                extra[key] = "[Filtered]"
    return event


def init_sentry(
    service_name: str = "tiergate",
    dsn: str | None = None,
    environment: str | None = None,
    traces_sample_rate: float | None = None,
) -> bool:
    """
    Initialize the Sentry SDK.

    Call before ``configure_logging`` so ERROR records logged through the
    stdlib bridge are reported.

    Args:
        service_name: Reported as server name and release prefix
        dsn: Sentry DSN; falls back to the SENTRY_DSN environment variable
        environment: Defaults to the ENVIRONMENT environment variable
        traces_sample_rate: Defaults by environment

    Returns:
        True if Sentry was initialized, False if no DSN is configured
    """
    effective_dsn = dsn or os.environ.get("SENTRY_DSN")
    if not effective_dsn:
        return False

    effective_env = environment or os.environ.get("ENVIRONMENT", "development")
    if traces_sample_rate is None:
        traces_sample_rate = (
            DEFAULT_TRACES_SAMPLE_RATE if effective_env == "production" else DEV_TRACES_SAMPLE_RATE
        )

    sentry_sdk.init(
        dsn=effective_dsn,
        environment=effective_env,
        release=f"{service_name}@{os.environ.get('VERSION', '0.1.0')}",
        traces_sample_rate=traces_sample_rate,
        integrations=[
            HttpxIntegration(),
            AsyncioIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            SqlalchemyIntegration(),
            RedisIntegration(),
        ],
        before_send=scrub_event,
        send_default_pii=False,
        attach_stacktrace=True,
        server_name=service_name,
    )
    sentry_sdk.set_tag("service", service_name)
    return True
