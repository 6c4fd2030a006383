"""Subscription, customer link and webhook event stores."""

from tiergate.storage.base import CustomerLinkStore, SubscriptionStore, WebhookEventStore
from tiergate.storage.memory import (
    InMemoryCustomerLinkStore,
    InMemorySubscriptionStore,
    InMemoryWebhookEventStore,
)
from tiergate.storage.sql import SqlCustomerLinkStore, SqlSubscriptionStore, SqlWebhookEventStore

__all__ = [
    "CustomerLinkStore",
    "InMemoryCustomerLinkStore",
    "InMemorySubscriptionStore",
    "InMemoryWebhookEventStore",
    "SqlCustomerLinkStore",
    "SqlSubscriptionStore",
    "SqlWebhookEventStore",
    "SubscriptionStore",
    "WebhookEventStore",
]
