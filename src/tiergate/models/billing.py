"""Billing state and decision result models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from tiergate.models.plans import ModelTier


class SubscriptionStatus(str, Enum):
    """Local subscription status."""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAUSED = "paused"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class WebhookEventStatus(str, Enum):
    """Processing state of a stored webhook event.

    pending -> processing -> processed | failed | ignored. Terminal states are
    never revisited automatically.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    IGNORED = "ignored"


class AccessReason(str, Enum):
    """Why an entitlement check passed or failed."""

    OK = "ok"
    WINDOW_CAP = "window_cap"
    WEEKLY_CAP = "weekly_cap"
    SOFT_CAP = "soft_cap"
    COST_GUARD = "cost_guard"
    ERROR = "error"


class BudgetReason(str, Enum):
    OK = "ok"
    WARNING = "cost_guard_warning"
    BLOCKED = "cost_guard_blocked"


class IgnoreReason(str, Enum):
    """Expected, non-retried reasons for skipping a webhook event."""

    USER_NOT_FOUND = "user_not_found"
    NO_SUBSCRIPTION_ID = "no_subscription_id"
    PRICE_NOT_MAPPED = "price_not_mapped"
    STALE_EVENT = "stale_event"
    UNHANDLED_EVENT_TYPE = "unhandled_event_type"


@dataclass
class AllowanceResult:
    """Result of a single tier entitlement check."""

    allowed: bool
    reason: AccessReason
    reset_eta: datetime | None = None

    @classmethod
    def ok(cls) -> "AllowanceResult":
        return cls(allowed=True, reason=AccessReason.OK)

    @classmethod
    def blocked(cls, reason: AccessReason, reset_eta: datetime | None = None) -> "AllowanceResult":
        return cls(allowed=False, reason=reason, reset_eta=reset_eta)


@dataclass
class TierSelectionResult:
    """The tier a request should be served on and why."""

    effective_tier: ModelTier
    reason: AccessReason
    reset_eta: datetime | None = None


@dataclass
class BudgetStatus:
    """Monthly cost versus budget, in the reference currency."""

    allowed: bool
    reason: BudgetReason
    current_cost: float
    budget: float
    percentage_used: float
    message: str | None = None


@dataclass
class DrainResult:
    """Counts from one bounded drain of the webhook backlog."""

    claimed: int = 0
    processed: int = 0
    ignored: int = 0
    failed: int = 0


@dataclass
class ProcessOutcome:
    status: WebhookEventStatus
    reason: str | None = None


class BillingEvent(BaseModel):
    """A verified, unwrapped webhook event as delivered by the billing provider."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_id: str | None = Field(
        default=None, validation_alias=AliasChoices("event_id", "eventId", "id", "notification_id")
    )
    type: str = Field(validation_alias=AliasChoices("type", "event_type", "eventType"))
    occurred_at: datetime = Field(validation_alias=AliasChoices("occurred_at", "occurredAt"))
    data: dict[str, Any] = Field(default_factory=dict)
    provider: str = "paddle"


class SubscriptionState(BaseModel):
    """Subscription fields derived from one webhook event, ready to upsert."""

    user_id: str
    external_subscription_id: str
    external_customer_id: str | None = None
    plan_id: str
    price_id: str | None = None
    status: SubscriptionStatus
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    grace_period_until: datetime | None = None
    canceled_at: datetime | None = None
    last_event_at: datetime


class SubscriptionRecord(SubscriptionState):
    """Stored subscription, a local cache of provider state."""

    model_config = ConfigDict(from_attributes=True)

    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_entitled(self, now: datetime) -> bool:
        """Whether this subscription currently grants its plan.

        Past-due subscriptions keep access until the grace period ends.
        """
        if self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
            return True
        if self.status == SubscriptionStatus.PAST_DUE:
            return self.grace_period_until is not None and now < self.grace_period_until
        return False


class WebhookEventRecord(BaseModel):
    """Stored webhook event."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    provider: str = "paddle"
    type: str
    occurred_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)
    status: WebhookEventStatus = WebhookEventStatus.PENDING
    claimed_at: datetime | None = None
    claimed_by: str | None = None
    processed_at: datetime | None = None
    fail_reason: str | None = None
    external_customer_id: str | None = None
    external_subscription_id: str | None = None
    user_id: str | None = None
    created_at: datetime | None = None
