"""Subscription entitlements, usage limits and billing webhook reconciliation."""

from tiergate.cost_guard import CostGuard
from tiergate.currency import CurrencyRateSource
from tiergate.entitlements import EntitlementEngine
from tiergate.models import AccessReason, ModelTier, Plan, PlanCatalog, default_plans
from tiergate.pricing import PriceTable
from tiergate.reconciler import WebhookReconciler
from tiergate.service import BillingService, build_billing_service
from tiergate.usage_ledger import UsageLedger

__version__ = "0.1.0"

__all__ = [
    "AccessReason",
    "BillingService",
    "CostGuard",
    "CurrencyRateSource",
    "EntitlementEngine",
    "ModelTier",
    "Plan",
    "PlanCatalog",
    "PriceTable",
    "UsageLedger",
    "WebhookReconciler",
    "build_billing_service",
    "default_plans",
]
