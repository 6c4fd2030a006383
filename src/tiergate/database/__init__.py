"""Database models and connection helpers."""

from tiergate.database.connection import (
    close_database,
    create_engine,
    create_session_factory,
    init_database,
)
from tiergate.database.models import Base, CustomerLink, Subscription, WebhookEvent

__all__ = [
    "Base",
    "CustomerLink",
    "Subscription",
    "WebhookEvent",
    "close_database",
    "create_engine",
    "create_session_factory",
    "init_database",
]
