"""Storage interfaces used by the entitlement engine and the reconciler."""

from datetime import datetime
from typing import Protocol, runtime_checkable

from tiergate.models.billing import (
    SubscriptionRecord,
    SubscriptionState,
    WebhookEventRecord,
    WebhookEventStatus,
)


@runtime_checkable
class SubscriptionStore(Protocol):
    async def find_by_user(self, user_id: str) -> SubscriptionRecord | None: ...

    async def find_by_external_id(
        self, external_subscription_id: str
    ) -> SubscriptionRecord | None: ...

    async def upsert_if_newer(self, state: SubscriptionState) -> SubscriptionRecord | None:
        """Insert, or overwrite only when ``state.last_event_at`` is strictly newer.

        Must be a single atomic operation. Returns the stored record, or None
        when an equal or newer event was already applied.
        """
        ...


@runtime_checkable
class CustomerLinkStore(Protocol):
    async def find_user_by_customer(self, external_customer_id: str) -> str | None: ...

    async def link_customer(self, user_id: str, external_customer_id: str) -> None: ...


@runtime_checkable
class WebhookEventStore(Protocol):
    async def insert_pending(self, event: WebhookEventRecord) -> bool:
        """Insert a pending event. Returns False when the event id already exists."""
        ...

    async def claim_next(self, worker_id: str, now: datetime) -> WebhookEventRecord | None:
        """Atomically move the oldest pending event to processing and return it."""
        ...

    async def mark(
        self,
        id: str,
        status: WebhookEventStatus,
        now: datetime,
        fail_reason: str | None = None,
        user_id: str | None = None,
    ) -> None: ...

    async def get(self, event_id: str) -> WebhookEventRecord | None: ...
