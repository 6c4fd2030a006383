"""Cost guard: turns token spend into a monthly budget signal."""

from datetime import datetime
from decimal import Decimal

import structlog

from tiergate.currency import CurrencyRateSource
from tiergate.models.billing import BudgetReason, BudgetStatus
from tiergate.pricing import PriceTable
from tiergate.usage_ledger import UsageLedger

logger = structlog.get_logger()

# Fixed policy, not per-plan
WARNING_THRESHOLD_PERCENT = Decimal(90)
BLOCK_THRESHOLD_PERCENT = Decimal(110)

SOURCE_CURRENCY = "USD"
REFERENCE_CURRENCY = "EUR"


class CostGuard:
    """Tracks model cost per user and month and checks it against a budget."""

    def __init__(
        self,
        ledger: UsageLedger,
        price_table: PriceTable,
        rate_source: CurrencyRateSource,
    ) -> None:
        self._ledger = ledger
        self._price_table = price_table
        self._rate_source = rate_source

    async def track_token_cost(
        self,
        user_id: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        endpoint: str | None = None,
        now: datetime | None = None,
    ) -> float:
        """Add the EUR cost of one completion to the user's monthly total.

        Args:
            user_id: User the tokens are billed to
            model: Model name used for price lookup
            prompt_tokens: Number of prompt tokens
            completion_tokens: Number of completion tokens
            endpoint: Optional endpoint for endpoint-specific pricing
            now: Overrides the ledger clock

        Returns:
            The cost added, in the reference currency. Zero-token calls add
            nothing and return 0.0.
        """
        if max(prompt_tokens, 0) + max(completion_tokens, 0) == 0:
            return 0.0

        cost_usd = self._price_table.cost_usd(model, prompt_tokens, completion_tokens, endpoint)
        rate = await self._rate_source.current_rate(SOURCE_CURRENCY, REFERENCE_CURRENCY)
        cost = float(cost_usd) * rate
        total = await self._ledger.increment_monthly_cost(user_id, cost, now)
        logger.debug(
            "Tracked token cost",
            user_id=user_id,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=cost,
            monthly_total=total,
        )
        return cost

    async def check_budget(
        self,
        user_id: str,
        monthly_budget: float,
        now: datetime | None = None,
    ) -> BudgetStatus:
        """Compare this month's spend to ``monthly_budget``.

        A zero budget means the plan is not cost guarded: always allowed.
        """
        current_cost = await self._ledger.monthly_cost(user_id, now)
        if monthly_budget <= 0:
            return BudgetStatus(
                allowed=True,
                reason=BudgetReason.OK,
                current_cost=current_cost,
                budget=monthly_budget,
                percentage_used=0.0,
            )

        # Bands are decided in Decimal; 7.92 / 7.2 * 100 is 109.99... as a float
        spent_percent = Decimal(str(current_cost)) * 100
        budget = Decimal(str(monthly_budget))
        percentage_used = current_cost / monthly_budget * 100
        if spent_percent >= budget * BLOCK_THRESHOLD_PERCENT:
            return BudgetStatus(
                allowed=False,
                reason=BudgetReason.BLOCKED,
                current_cost=current_cost,
                budget=monthly_budget,
                percentage_used=percentage_used,
                message=(
                    "Monthly budget exceeded by 110%. "
                    "Please upgrade your plan to continue using premium models."
                ),
            )
        if spent_percent >= budget * WARNING_THRESHOLD_PERCENT:
            return BudgetStatus(
                allowed=True,
                reason=BudgetReason.WARNING,
                current_cost=current_cost,
                budget=monthly_budget,
                percentage_used=percentage_used,
                message=(
                    f"Warning: You've used {percentage_used:.1f}% of your monthly budget. "
                    "Consider upgrading to avoid service interruptions."
                ),
            )
        return BudgetStatus(
            allowed=True,
            reason=BudgetReason.OK,
            current_cost=current_cost,
            budget=monthly_budget,
            percentage_used=percentage_used,
        )
