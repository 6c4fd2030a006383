"""Plan catalog and billing models."""

from tiergate.models.billing import (
    AccessReason,
    AllowanceResult,
    BillingEvent,
    BudgetReason,
    BudgetStatus,
    DrainResult,
    IgnoreReason,
    ProcessOutcome,
    SubscriptionRecord,
    SubscriptionState,
    SubscriptionStatus,
    TierSelectionResult,
    WebhookEventRecord,
    WebhookEventStatus,
)
from tiergate.models.plans import ModelTier, Plan, PlanCatalog, default_plans

__all__ = [
    "AccessReason",
    "AllowanceResult",
    "BillingEvent",
    "BudgetReason",
    "BudgetStatus",
    "DrainResult",
    "IgnoreReason",
    "ModelTier",
    "Plan",
    "PlanCatalog",
    "ProcessOutcome",
    "SubscriptionRecord",
    "SubscriptionState",
    "SubscriptionStatus",
    "TierSelectionResult",
    "WebhookEventRecord",
    "WebhookEventStatus",
    "default_plans",
]
