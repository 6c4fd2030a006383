"""Webhook reconciler.

Turns an unordered, at-least-once stream of billing events into ordered,
idempotent subscription state:

* persist: store every delivery once, keyed by event id
* claim: atomically take the oldest pending event
* process: derive the subscription state and apply it only when the event is
  newer than the last applied one
* drain: claim and process a bounded number of events per call
"""

import os
import socket
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from tiergate.exceptions import WebhookPayloadError
from tiergate.models.billing import (
    BillingEvent,
    DrainResult,
    IgnoreReason,
    ProcessOutcome,
    SubscriptionRecord,
    SubscriptionState,
    SubscriptionStatus,
    WebhookEventRecord,
    WebhookEventStatus,
)
from tiergate.models.plans import PlanCatalog
from tiergate.paddle import (
    HANDLED_EVENT_TYPES,
    SubscriptionPayload,
    derive_event_id,
    map_status,
    parse_subscription_payload,
)
from tiergate.periods import to_utc
from tiergate.storage.base import CustomerLinkStore, SubscriptionStore, WebhookEventStore

logger = structlog.get_logger()

DEFAULT_GRACE_PERIOD_DAYS = 3
DEFAULT_MAX_BATCHES = 50
DEFAULT_FAIL_REASON_MAX_LENGTH = 500


def _default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class _Ignored(Exception):
    """Internal signal that an event is an expected skip, not a failure."""

    def __init__(self, reason: IgnoreReason) -> None:
        self.reason = reason
        super().__init__(reason.value)


class WebhookReconciler:
    """Persists billing webhooks and applies them to subscriptions in order."""

    def __init__(
        self,
        events: WebhookEventStore,
        subscriptions: SubscriptionStore,
        customers: CustomerLinkStore,
        catalog: PlanCatalog,
        grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS,
        max_batches: int = DEFAULT_MAX_BATCHES,
        fail_reason_max_length: int = DEFAULT_FAIL_REASON_MAX_LENGTH,
        worker_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._events = events
        self._subscriptions = subscriptions
        self._customers = customers
        self._catalog = catalog
        self._grace_period = timedelta(days=grace_period_days)
        self._max_batches = max_batches
        self._fail_reason_max_length = fail_reason_max_length
        self._worker_id = worker_id or _default_worker_id()
        self._clock = clock or (lambda: datetime.now(UTC))

    # Persist

    async def persist_webhook_event(self, event: BillingEvent | Mapping[str, Any]) -> bool:
        """Store a received event as pending.

        Returns:
            True when stored, False for a duplicate delivery (not an error)
        """
        if isinstance(event, BillingEvent):
            raw: Mapping[str, Any] = event.model_dump()
            parsed = event
        else:
            raw = event
            parsed = BillingEvent.model_validate(event)
        event_id = parsed.event_id or derive_event_id(raw)

        try:
            payload = parse_subscription_payload(parsed.type, parsed.data)
        except WebhookPayloadError:
            # Malformed fields fail later, during processing, where they are recorded
            payload = SubscriptionPayload()
        record = WebhookEventRecord(
            id=str(uuid.uuid4()),
            event_id=event_id,
            provider=parsed.provider,
            type=parsed.type,
            occurred_at=to_utc(parsed.occurred_at),
            payload=parsed.data,
            external_customer_id=payload.customer_id,
            external_subscription_id=payload.subscription_id,
            user_id=payload.user_id,
        )
        inserted = await self._events.insert_pending(record)
        if inserted:
            logger.info("Stored webhook event", event_id=event_id, event_type=parsed.type)
        else:
            logger.info("Duplicate webhook event ignored", event_id=event_id)
        return inserted

    # Claim

    async def claim_next_event(self) -> WebhookEventRecord | None:
        return await self._events.claim_next(self._worker_id, self._clock())

    # Process

    async def _resolve_user(self, payload: SubscriptionPayload) -> str | None:
        if payload.user_id:
            return payload.user_id
        if payload.customer_id:
            user_id = await self._customers.find_user_by_customer(payload.customer_id)
            if user_id:
                return user_id
        if payload.subscription_id:
            existing = await self._subscriptions.find_by_external_id(payload.subscription_id)
            if existing:
                return existing.user_id
        return None

    def _grace_period_until(
        self,
        status: SubscriptionStatus,
        payload: SubscriptionPayload,
        existing: SubscriptionRecord | None,
        occurred_at: datetime,
    ) -> datetime | None:
        if status != SubscriptionStatus.PAST_DUE:
            return None
        if payload.grace_period_until:
            return payload.grace_period_until
        # Repeated payment failures do not extend the original grace period
        if existing and existing.status == SubscriptionStatus.PAST_DUE:
            if existing.grace_period_until:
                return existing.grace_period_until
        return occurred_at + self._grace_period

    async def _build_state(self, event: WebhookEventRecord) -> SubscriptionState:
        """Derive the subscription state an event asks for.

        Raises:
            _Ignored: for events that are skipped on purpose
        """
        if event.type not in HANDLED_EVENT_TYPES:
            raise _Ignored(IgnoreReason.UNHANDLED_EVENT_TYPE)

        payload = parse_subscription_payload(event.type, event.payload)
        user_id = await self._resolve_user(payload)
        if not user_id:
            raise _Ignored(IgnoreReason.USER_NOT_FOUND)
        if not payload.subscription_id:
            raise _Ignored(IgnoreReason.NO_SUBSCRIPTION_ID)

        if payload.user_id and payload.customer_id:
            await self._customers.link_customer(payload.user_id, payload.customer_id)

        existing = await self._subscriptions.find_by_user(user_id)
        plan = self._catalog.plan_for_price(payload.price_id)
        if plan is not None:
            plan_id, price_id = plan.id, payload.price_id
        elif existing is not None:
            # Unmapped or missing price on a known subscriber keeps the current plan
            plan_id, price_id = existing.plan_id, existing.price_id
        else:
            raise _Ignored(IgnoreReason.PRICE_NOT_MAPPED)

        occurred_at = to_utc(event.occurred_at)
        status = map_status(event.type, payload.status)
        canceled_at = payload.canceled_at
        if status == SubscriptionStatus.CANCELED and canceled_at is None:
            canceled_at = (existing.canceled_at if existing else None) or occurred_at

        return SubscriptionState(
            user_id=user_id,
            external_subscription_id=payload.subscription_id,
            external_customer_id=payload.customer_id
            or (existing.external_customer_id if existing else None),
            plan_id=plan_id,
            price_id=price_id,
            status=status,
            current_period_start=payload.period_start
            or (existing.current_period_start if existing else None),
            current_period_end=payload.period_end
            or (existing.current_period_end if existing else None),
            grace_period_until=self._grace_period_until(status, payload, existing, occurred_at),
            canceled_at=canceled_at,
            last_event_at=occurred_at,
        )

    async def _apply(self, event: WebhookEventRecord) -> tuple[ProcessOutcome, str | None]:
        try:
            state = await self._build_state(event)
        except _Ignored as ignored:
            return ProcessOutcome(WebhookEventStatus.IGNORED, ignored.reason.value), None

        stored = await self._subscriptions.upsert_if_newer(state)
        if stored is None:
            return (
                ProcessOutcome(WebhookEventStatus.IGNORED, IgnoreReason.STALE_EVENT.value),
                state.user_id,
            )
        logger.info(
            "Applied subscription state",
            event_id=event.event_id,
            user_id=state.user_id,
            plan_id=state.plan_id,
            status=state.status.value,
        )
        return ProcessOutcome(WebhookEventStatus.PROCESSED), state.user_id

    async def process_one(self, event: WebhookEventRecord) -> ProcessOutcome:
        """Apply one claimed event and record its terminal status."""
        user_id: str | None = None
        try:
            outcome, user_id = await self._apply(event)
        except Exception as e:
            logger.exception("Webhook event processing failed", event_id=event.event_id)
            reason = str(e) or type(e).__name__
            outcome = ProcessOutcome(
                WebhookEventStatus.FAILED, reason[: self._fail_reason_max_length]
            )
        if outcome.status == WebhookEventStatus.IGNORED:
            logger.info("Webhook event ignored", event_id=event.event_id, reason=outcome.reason)

        await self._events.mark(
            event.id,
            outcome.status,
            self._clock(),
            fail_reason=outcome.reason,
            user_id=user_id,
        )
        return outcome

    # Drain

    async def apply_subscription_state(self, max_batches: int | None = None) -> DrainResult:
        """Claim and process up to ``max_batches`` pending events, oldest first.

        A failing event never stops the rest of the batch.
        """
        limit = self._max_batches if max_batches is None else max_batches
        result = DrainResult()
        for _ in range(limit):
            event = await self.claim_next_event()
            if event is None:
                break
            result.claimed += 1
            try:
                outcome = await self.process_one(event)
            except Exception:
                logger.exception("Could not record webhook outcome", event_id=event.event_id)
                result.failed += 1
                continue
            if outcome.status == WebhookEventStatus.PROCESSED:
                result.processed += 1
            elif outcome.status == WebhookEventStatus.IGNORED:
                result.ignored += 1
            else:
                result.failed += 1

        if result.claimed:
            logger.info(
                "Drained webhook events",
                claimed=result.claimed,
                processed=result.processed,
                ignored=result.ignored,
                failed=result.failed,
            )
        return result
