"""Entitlement engine: can this user use this tier right now, and if not, what instead."""

from datetime import datetime, timedelta

import structlog

from tiergate.cost_guard import CostGuard
from tiergate.models.billing import AccessReason, AllowanceResult, TierSelectionResult
from tiergate.models.plans import ModelTier, Plan, PlanCatalog
from tiergate.periods import end_of_iso_week, end_of_month
from tiergate.storage.base import SubscriptionStore
from tiergate.usage_ledger import UsageLedger

logger = structlog.get_logger()

# Served when the decision itself fails
TERMINAL_FALLBACK_TIER = ModelTier.ECONOMY_MINI


class EntitlementEngine:
    """Evaluates plan limits against recorded usage.

    Checks run in a fixed order and stop at the first failure: rolling
    windows, ISO weekly limits, monthly soft caps, then the cost guard.
    Access checks fail closed; tier selection always yields a tier.
    """

    def __init__(
        self,
        ledger: UsageLedger,
        cost_guard: CostGuard,
        catalog: PlanCatalog,
        subscriptions: SubscriptionStore | None = None,
    ) -> None:
        self._ledger = ledger
        self._cost_guard = cost_guard
        self._catalog = catalog
        self._subscriptions = subscriptions

    async def resolve_plan(self, user_id: str, now: datetime | None = None) -> Plan:
        """The plan the user's subscription entitles them to, else the default plan."""
        if self._subscriptions is None:
            return self._catalog.default_plan
        now = now or self._ledger.now()
        subscription = await self._subscriptions.find_by_user(user_id)
        if subscription is None or not subscription.is_entitled(now):
            return self._catalog.default_plan
        plan = self._catalog.find(subscription.plan_id)
        if plan is None:
            logger.warning(
                "Subscription references unknown plan, using default",
                user_id=user_id,
                plan_id=subscription.plan_id,
            )
            return self._catalog.default_plan
        return plan

    async def _evaluate(
        self,
        user_id: str,
        tier: ModelTier,
        plan: Plan,
        now: datetime,
    ) -> AllowanceResult:
        for window in plan.window_limits_for(tier):
            used = await self._ledger.rolling_window_usage(
                user_id, tier, window.window_seconds, now
            )
            if used >= window.limit:
                return AllowanceResult.blocked(
                    AccessReason.WINDOW_CAP, now + timedelta(seconds=window.window_seconds)
                )

        for weekly in plan.weekly_limits_for(tier):
            if await self._ledger.weekly_usage(user_id, tier, now) >= weekly.limit:
                return AllowanceResult.blocked(AccessReason.WEEKLY_CAP, end_of_iso_week(now))

        for soft_cap in plan.soft_caps_for(tier):
            if await self._ledger.monthly_soft_cap(user_id, tier, now) >= soft_cap.cap:
                return AllowanceResult.blocked(AccessReason.SOFT_CAP, end_of_month(now))

        budget = await self._cost_guard.check_budget(user_id, plan.monthly_cogs_budget, now)
        if not budget.allowed:
            return AllowanceResult.blocked(AccessReason.COST_GUARD, end_of_month(now))

        return AllowanceResult.ok()

    async def _is_allowed_on_plan(
        self,
        user_id: str,
        tier: ModelTier | str,
        plan: Plan,
        now: datetime,
    ) -> AllowanceResult:
        try:
            result = await self._evaluate(user_id, ModelTier(tier), plan, now)
        except Exception:
            logger.exception("Entitlement check failed", user_id=user_id, tier=str(tier))
            return AllowanceResult.blocked(AccessReason.ERROR)
        if not result.allowed:
            logger.debug(
                "Tier denied",
                user_id=user_id,
                tier=ModelTier(tier).value,
                plan_id=plan.id,
                reason=result.reason.value,
            )
        return result

    async def is_allowed(self, user_id: str, tier: ModelTier | str) -> AllowanceResult:
        """Check one tier for one user. Never raises."""
        try:
            now = self._ledger.now()
            plan = await self.resolve_plan(user_id, now)
        except Exception:
            logger.exception("Plan resolution failed", user_id=user_id)
            return AllowanceResult.blocked(AccessReason.ERROR)
        return await self._is_allowed_on_plan(user_id, tier, plan, now)

    async def choose_tier(
        self,
        user_id: str,
        requested_tier: ModelTier | str,
    ) -> TierSelectionResult:
        """Pick the first allowed tier from the request and the plan's fallback chain.

        When nothing is allowed the last candidate is still returned, with the
        reason it was denied, so a request is always served on some tier.
        """
        try:
            now = self._ledger.now()
            plan = await self.resolve_plan(user_id, now)
            candidates = [ModelTier(requested_tier), *plan.fallback_chain]

            result = AllowanceResult.blocked(AccessReason.ERROR)
            for candidate in candidates:
                result = await self._is_allowed_on_plan(user_id, candidate, plan, now)
                if result.allowed:
                    return TierSelectionResult(effective_tier=candidate, reason=AccessReason.OK)

            logger.info(
                "All candidate tiers denied, serving terminal tier",
                user_id=user_id,
                requested_tier=candidates[0].value,
                effective_tier=candidates[-1].value,
                reason=result.reason.value,
            )
            return TierSelectionResult(
                effective_tier=candidates[-1],
                reason=result.reason,
                reset_eta=result.reset_eta,
            )
        except Exception:
            logger.exception("Tier selection failed", user_id=user_id)
            return TierSelectionResult(
                effective_tier=TERMINAL_FALLBACK_TIER,
                reason=AccessReason.ERROR,
            )
