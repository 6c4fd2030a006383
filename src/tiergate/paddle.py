"""Paddle webhook payload interpretation.

Paddle delivers snake_case JSON (``current_billing_period.starts_at``); some
relays re-serialize events in camelCase (``currentPeriod.startsAt``). Both
shapes are accepted here so the reconciler only deals with
``SubscriptionPayload``.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError

from tiergate.exceptions import WebhookPayloadError
from tiergate.models.billing import SubscriptionStatus
from tiergate.periods import to_epoch_ms, to_utc

logger = structlog.get_logger()

_datetime_adapter = TypeAdapter(datetime)

SUBSCRIPTION_EVENT_TYPES = frozenset(
    {
        "subscription.created",
        "subscription.activated",
        "subscription.updated",
        "subscription.trialing",
        "subscription.paused",
        "subscription.resumed",
        "subscription.past_due",
        "subscription.canceled",
    }
)
TRANSACTION_EVENT_TYPES = frozenset({"transaction.completed", "transaction.payment_failed"})
HANDLED_EVENT_TYPES = SUBSCRIPTION_EVENT_TYPES | TRANSACTION_EVENT_TYPES

# Provider status -> local status. The only place statuses are translated.
STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "paused": SubscriptionStatus.PAUSED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "cancelled": SubscriptionStatus.CANCELED,
    "inactive": SubscriptionStatus.CANCELED,
}

# Status implied by the event type when the payload carries none
# (transaction events always use this, their own status is a payment status)
EVENT_TYPE_STATUS: dict[str, SubscriptionStatus] = {
    "subscription.created": SubscriptionStatus.ACTIVE,
    "subscription.activated": SubscriptionStatus.ACTIVE,
    "subscription.resumed": SubscriptionStatus.ACTIVE,
    "subscription.trialing": SubscriptionStatus.TRIALING,
    "subscription.paused": SubscriptionStatus.PAUSED,
    "subscription.past_due": SubscriptionStatus.PAST_DUE,
    "subscription.canceled": SubscriptionStatus.CANCELED,
    "transaction.completed": SubscriptionStatus.ACTIVE,
    "transaction.payment_failed": SubscriptionStatus.PAST_DUE,
}

# Unknown statuses keep access only through the grace period
UNKNOWN_STATUS_FALLBACK = SubscriptionStatus.PAST_DUE


@dataclass
class SubscriptionPayload:
    """Subscription fields extracted from one event's ``data``."""

    subscription_id: str | None = None
    customer_id: str | None = None
    status: str | None = None
    price_id: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    user_id: str | None = None
    canceled_at: datetime | None = None
    grace_period_until: datetime | None = None


def _pick(mapping: Any, *names: str) -> Any:
    """First non-empty value among ``names`` in ``mapping``."""
    if not isinstance(mapping, Mapping):
        return None
    for name in names:
        value = mapping.get(name)
        if value not in (None, ""):
            return value
    return None


def _as_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return to_utc(_datetime_adapter.validate_python(value))


def _as_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def map_status(event_type: str, raw_status: str | None) -> SubscriptionStatus:
    """Translate a provider status (or, without one, the event type) to a local status."""
    if event_type in TRANSACTION_EVENT_TYPES or not raw_status:
        implied = EVENT_TYPE_STATUS.get(event_type)
        if implied is not None:
            return implied
        if not raw_status:
            logger.warning("Event carries no subscription status", event_type=event_type)
            return UNKNOWN_STATUS_FALLBACK

    status = STATUS_MAP.get(str(raw_status).lower())
    if status is None:
        logger.warning(
            "Unknown provider subscription status",
            event_type=event_type,
            status=raw_status,
            mapped_to=UNKNOWN_STATUS_FALLBACK.value,
        )
        return UNKNOWN_STATUS_FALLBACK
    return status


def parse_subscription_payload(event_type: str, data: Mapping[str, Any]) -> SubscriptionPayload:
    """Extract subscription fields from a subscription or transaction event.

    Raises:
        WebhookPayloadError: if a timestamp field cannot be parsed
    """
    if event_type in TRANSACTION_EVENT_TYPES:
        subscription_id = _pick(data, "subscription_id", "subscriptionId")
    else:
        subscription_id = _pick(data, "id", "subscription_id", "subscriptionId")

    items = data.get("items") or []
    first_item = items[0] if items and isinstance(items[0], Mapping) else {}
    price_id = _pick(first_item.get("price"), "id") or _pick(first_item, "price_id", "priceId")

    period = _pick(data, "current_billing_period", "currentPeriod", "billing_period")
    custom_data = _pick(data, "custom_data", "customData")

    cancellation = _pick(data, "cancellation", "scheduled_change", "scheduledChange")
    canceled_at = _pick(data, "canceled_at", "canceledAt")
    if canceled_at is None and isinstance(cancellation, Mapping):
        action = cancellation.get("action")
        if action in (None, "cancel"):
            canceled_at = _pick(
                cancellation, "effective_at", "effectiveAt", "canceled_at", "canceledAt"
            )

    grace = _pick(data, "grace_period", "gracePeriod", "grace_period_until", "gracePeriodUntil")
    if isinstance(grace, Mapping):
        grace = _pick(grace, "ends_at", "endsAt", "until")

    try:
        return SubscriptionPayload(
            subscription_id=_as_str(subscription_id),
            customer_id=_as_str(_pick(data, "customer_id", "customerId")),
            status=_as_str(data.get("status")),
            price_id=_as_str(price_id),
            period_start=_as_datetime(_pick(period, "starts_at", "startsAt")),
            period_end=_as_datetime(_pick(period, "ends_at", "endsAt")),
            user_id=_as_str(_pick(custom_data, "userId", "user_id")),
            canceled_at=_as_datetime(canceled_at),
            grace_period_until=_as_datetime(grace),
        )
    except ValidationError as e:
        bad_value = e.errors()[0].get("input")
        raise WebhookPayloadError(event_type, f"invalid timestamp {bad_value!r}") from e


def derive_event_id(raw: Mapping[str, Any]) -> str:
    """Stable idempotency key for an incoming event.

    Provider ids win; otherwise ``{type}:{occurredAtMs}:{data.id}`` so that a
    redelivery of the same event still collides.
    """
    provided = _pick(raw, "event_id", "eventId", "id", "notification_id")
    if provided is not None:
        return str(provided)
    event_type = _pick(raw, "type", "event_type", "eventType") or "unknown"
    occurred_at = _as_datetime(_pick(raw, "occurred_at", "occurredAt"))
    occurred_ms = to_epoch_ms(occurred_at) if occurred_at else 0
    data_id = _pick(raw.get("data"), "id") or "no-data-id"
    return f"{event_type}:{occurred_ms}:{data_id}"
