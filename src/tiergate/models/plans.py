"""Subscription plan catalog.

Plans are immutable and loaded once per process. Every limit list is keyed by
model tier; a tier that appears in no list of a plan is unlimited on that
horizon (the fallback chain still applies when another check fails).
"""

from collections.abc import Iterator, Mapping
from decimal import Decimal
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from tiergate.exceptions import InvalidPlanError, PlanNotFoundError

logger = structlog.get_logger()

FIVE_HOURS = 5 * 60 * 60
THREE_HOURS = 3 * 60 * 60

# Share of the plan price that may be spent on model cost each month
COGS_BUDGET_RATIO = Decimal("0.6")


class ModelTier(str, Enum):
    """AI model tiers, from cheapest to most capable, plus the mini variants."""

    ECONOMY = "economy"
    STANDARD = "standard"
    PREMIUM = "premium"
    FLAGSHIP = "flagship"
    ECONOMY_MINI = "economy_mini"
    STANDARD_MINI = "standard_mini"
    PREMIUM_MINI = "premium_mini"


class WindowLimit(BaseModel):
    """At most ``limit`` requests within any rolling ``window_seconds``."""

    model_config = ConfigDict(frozen=True)

    tier: ModelTier
    limit: int = Field(ge=0)
    window_seconds: int = Field(gt=0)


class WeeklyLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: ModelTier
    limit: int = Field(ge=0)


class MonthlySoftCap(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: ModelTier
    cap: int = Field(ge=0)


class Plan(BaseModel):
    """A subscription plan and its usage policy."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price_in_minor_units: int = Field(ge=0)  # EUR cents
    price_id: str | None = None  # Paddle price id
    window_limits: tuple[WindowLimit, ...] = ()
    weekly_limits: tuple[WeeklyLimit, ...] = ()
    monthly_soft_caps: tuple[MonthlySoftCap, ...] = ()
    fallback_chain: tuple[ModelTier, ...]
    monthly_cogs_budget: float = Field(ge=0)  # EUR

    @model_validator(mode="after")
    def validate_fallback_chain(self) -> "Plan":
        if not self.fallback_chain:
            raise InvalidPlanError(self.id, "fallback chain must not be empty")
        if len(set(self.fallback_chain)) != len(self.fallback_chain):
            raise InvalidPlanError(self.id, "fallback chain contains duplicates")
        return self

    def window_limits_for(self, tier: ModelTier) -> list[WindowLimit]:
        return [w for w in self.window_limits if w.tier == tier]

    def weekly_limits_for(self, tier: ModelTier) -> list[WeeklyLimit]:
        return [w for w in self.weekly_limits if w.tier == tier]

    def soft_caps_for(self, tier: ModelTier) -> list[MonthlySoftCap]:
        return [c for c in self.monthly_soft_caps if c.tier == tier]


def _budget(price_in_minor_units: int) -> float:
    return float(Decimal(price_in_minor_units) / 100 * COGS_BUDGET_RATIO)


def default_plans(price_ids: Mapping[str, str | None] | None = None) -> dict[str, Plan]:
    """Build the standard catalog, attaching provider price ids where configured."""
    price_ids = price_ids or {}
    t = ModelTier
    plans = [
        Plan(
            id="free",
            name="Free",
            price_in_minor_units=0,
            window_limits=(WindowLimit(tier=t.ECONOMY, limit=10, window_seconds=FIVE_HOURS),),
            monthly_soft_caps=(MonthlySoftCap(tier=t.ECONOMY, cap=300),),
            fallback_chain=(t.ECONOMY_MINI,),
            monthly_cogs_budget=0,
        ),
        Plan(
            id="basic",
            name="Basic",
            price_in_minor_units=1200,
            window_limits=(
                WindowLimit(tier=t.PREMIUM, limit=15, window_seconds=THREE_HOURS),
                WindowLimit(tier=t.STANDARD, limit=60, window_seconds=THREE_HOURS),
            ),
            weekly_limits=(WeeklyLimit(tier=t.PREMIUM, limit=300),),
            monthly_soft_caps=(MonthlySoftCap(tier=t.ECONOMY, cap=2000),),
            fallback_chain=(t.STANDARD, t.STANDARD_MINI),
            monthly_cogs_budget=_budget(1200),
        ),
        Plan(
            id="pro",
            name="Pro",
            price_in_minor_units=2200,
            window_limits=(
                WindowLimit(tier=t.PREMIUM, limit=160, window_seconds=THREE_HOURS),
                WindowLimit(tier=t.STANDARD, limit=120, window_seconds=THREE_HOURS),
            ),
            weekly_limits=(WeeklyLimit(tier=t.PREMIUM, limit=1000),),
            monthly_soft_caps=(MonthlySoftCap(tier=t.ECONOMY, cap=2000),),
            fallback_chain=(t.STANDARD, t.STANDARD_MINI),
            monthly_cogs_budget=_budget(2200),
        ),
        Plan(
            id="pro_plus",
            name="Pro Plus",
            price_in_minor_units=4800,
            window_limits=(
                WindowLimit(tier=t.FLAGSHIP, limit=60, window_seconds=THREE_HOURS),
                WindowLimit(tier=t.PREMIUM, limit=300, window_seconds=THREE_HOURS),
                WindowLimit(tier=t.STANDARD, limit=120, window_seconds=THREE_HOURS),
            ),
            weekly_limits=(
                WeeklyLimit(tier=t.FLAGSHIP, limit=300),
                WeeklyLimit(tier=t.PREMIUM, limit=2000),
            ),
            monthly_soft_caps=(
                MonthlySoftCap(tier=t.ECONOMY, cap=2000),
                MonthlySoftCap(tier=t.FLAGSHIP, cap=80),
            ),
            fallback_chain=(t.PREMIUM, t.STANDARD, t.STANDARD_MINI),
            monthly_cogs_budget=_budget(4800),
        ),
    ]
    return {
        plan.id: plan.model_copy(update={"price_id": price_ids.get(plan.id)}) for plan in plans
    }


class PlanCatalog:
    """Read-only lookup of plans by id and by provider price id."""

    def __init__(self, plans: Mapping[str, Plan], default_plan_id: str = "free") -> None:
        if default_plan_id not in plans:
            raise PlanNotFoundError(default_plan_id)
        self._plans = dict(plans)
        self._default_plan_id = default_plan_id
        self._by_price_id: dict[str, Plan] = {}
        for plan in self._plans.values():
            if not plan.price_id:
                if plan.price_in_minor_units > 0:
                    logger.warning("Paid plan has no price id configured", plan_id=plan.id)
                continue
            if plan.price_id in self._by_price_id:
                raise InvalidPlanError(plan.id, f"price id {plan.price_id} is already mapped")
            self._by_price_id[plan.price_id] = plan

    @property
    def default_plan(self) -> Plan:
        return self._plans[self._default_plan_id]

    def get(self, plan_id: str) -> Plan:
        try:
            return self._plans[plan_id]
        except KeyError:
            raise PlanNotFoundError(plan_id) from None

    def find(self, plan_id: str | None) -> Plan | None:
        if plan_id is None:
            return None
        return self._plans.get(plan_id)

    def plan_for_price(self, price_id: str | None) -> Plan | None:
        """Map a provider price id to a local plan, or None when unmapped."""
        if not price_id:
            return None
        return self._by_price_id.get(price_id)

    def __iter__(self) -> Iterator[Plan]:
        return iter(self._plans.values())

    def __len__(self) -> int:
        return len(self._plans)
