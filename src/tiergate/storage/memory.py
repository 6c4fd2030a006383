"""In-process stores for tests and single-process deployments."""

import asyncio
from datetime import datetime

from tiergate.models.billing import (
    SubscriptionRecord,
    SubscriptionState,
    WebhookEventRecord,
    WebhookEventStatus,
)


class InMemorySubscriptionStore:
    def __init__(self) -> None:
        self._by_user: dict[str, SubscriptionRecord] = {}
        self._lock = asyncio.Lock()

    async def find_by_user(self, user_id: str) -> SubscriptionRecord | None:
        return self._by_user.get(user_id)

    async def find_by_external_id(self, external_subscription_id: str) -> SubscriptionRecord | None:
        for record in self._by_user.values():
            if record.external_subscription_id == external_subscription_id:
                return record
        return None

    async def upsert_if_newer(self, state: SubscriptionState) -> SubscriptionRecord | None:
        async with self._lock:
            existing = self._by_user.get(state.user_id)
            if existing is not None and existing.last_event_at >= state.last_event_at:
                return None
            record = SubscriptionRecord(
                **state.model_dump(),
                created_at=existing.created_at if existing else state.last_event_at,
                updated_at=state.last_event_at,
            )
            self._by_user[state.user_id] = record
            return record


class InMemoryCustomerLinkStore:
    def __init__(self) -> None:
        self._users_by_customer: dict[str, str] = {}

    async def find_user_by_customer(self, external_customer_id: str) -> str | None:
        return self._users_by_customer.get(external_customer_id)

    async def link_customer(self, user_id: str, external_customer_id: str) -> None:
        # One customer per user and one user per customer
        for customer_id, linked_user in list(self._users_by_customer.items()):
            if linked_user == user_id:
                del self._users_by_customer[customer_id]
        self._users_by_customer[external_customer_id] = user_id


class InMemoryWebhookEventStore:
    def __init__(self) -> None:
        self._events: dict[str, WebhookEventRecord] = {}
        self._lock = asyncio.Lock()

    async def insert_pending(self, event: WebhookEventRecord) -> bool:
        async with self._lock:
            if event.event_id in self._events:
                return False
            self._events[event.event_id] = event.model_copy(
                update={"status": WebhookEventStatus.PENDING}
            )
            return True

    async def claim_next(self, worker_id: str, now: datetime) -> WebhookEventRecord | None:
        async with self._lock:
            pending = [e for e in self._events.values() if e.status == WebhookEventStatus.PENDING]
            if not pending:
                return None
            oldest = min(pending, key=lambda e: e.occurred_at)
            claimed = oldest.model_copy(
                update={
                    "status": WebhookEventStatus.PROCESSING,
                    "claimed_at": now,
                    "claimed_by": worker_id,
                }
            )
            self._events[claimed.event_id] = claimed
            return claimed

    async def mark(
        self,
        id: str,
        status: WebhookEventStatus,
        now: datetime,
        fail_reason: str | None = None,
        user_id: str | None = None,
    ) -> None:
        async with self._lock:
            for event_id, event in self._events.items():
                if event.id == id:
                    self._events[event_id] = event.model_copy(
                        update={
                            "status": status,
                            "processed_at": now,
                            "fail_reason": fail_reason,
                            "user_id": user_id or event.user_id,
                        }
                    )
                    return

    async def get(self, event_id: str) -> WebhookEventRecord | None:
        return self._events.get(event_id)

    def all(self) -> list[WebhookEventRecord]:
        return list(self._events.values())
