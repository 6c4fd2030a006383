"""Usage ledger: request counts over three horizons plus monthly model cost.

Key families (``ns`` defaults to ``usage``):

    {ns}:{user}:{tier}:z                   rolling window, sorted set of epoch-ms markers
    {ns}:{user}:{tier}:week:{isoYear}-{WW} ISO week counter, expires end of Sunday UTC
    {ns}:{user}:{tier}:month:{YYYY}-{MM}   calendar month counter, expires end of month
    {ns}:cogs:{user}:{YYYY}-{MM}           monthly cost (float), ``:cents`` integer fallback

Period counters get their expiry on the first write only, so a key never
outlives the period it belongs to.
"""

import time
import uuid
from collections.abc import Callable
from datetime import datetime

import structlog

from tiergate.counter_store import TTL_NONE, CounterStore
from tiergate.models.plans import ModelTier
from tiergate.periods import (
    end_of_iso_week,
    end_of_month,
    expire_at_seconds,
    from_epoch_ms,
    iso_week_id,
    month_id,
    to_epoch_ms,
)

logger = structlog.get_logger()


def _system_now_ms() -> int:
    return int(time.time() * 1000)


def _tier_value(tier: ModelTier | str) -> str:
    return tier.value if isinstance(tier, ModelTier) else str(tier)


class UsageLedger:
    """Records and reads per-user usage in a counter store."""

    def __init__(
        self,
        store: CounterStore,
        namespace: str = "usage",
        now_ms: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the ledger.

        Args:
            store: Counter store holding all keys
            namespace: Key prefix
            now_ms: Clock returning epoch milliseconds, used when no ``now`` is passed
        """
        self._store = store
        self._namespace = namespace
        self._now_ms = now_ms or _system_now_ms

    def now(self) -> datetime:
        return from_epoch_ms(self._now_ms())

    def _resolve_now(self, now: datetime | None) -> datetime:
        return now if now is not None else self.now()

    # Keys

    def rolling_key(self, user_id: str, tier: ModelTier | str) -> str:
        return f"{self._namespace}:{user_id}:{_tier_value(tier)}:z"

    def weekly_key(self, user_id: str, tier: ModelTier | str, now: datetime) -> str:
        return f"{self._namespace}:{user_id}:{_tier_value(tier)}:week:{iso_week_id(now)}"

    def monthly_key(self, user_id: str, tier: ModelTier | str, now: datetime) -> str:
        return f"{self._namespace}:{user_id}:{_tier_value(tier)}:month:{month_id(now)}"

    def cost_key(self, user_id: str, now: datetime) -> str:
        return f"{self._namespace}:cogs:{user_id}:{month_id(now)}"

    async def _expire_once(self, key: str, boundary: datetime) -> None:
        # Check-then-set; two first writers compute the same boundary
        if await self._store.ttl(key) == TTL_NONE:
            await self._store.expireat(key, expire_at_seconds(boundary))

    # Rolling window

    async def record_event(
        self,
        user_id: str,
        tier: ModelTier | str,
        timestamp: datetime | None = None,
    ) -> None:
        """Add one uniquely keyed marker to the rolling set. Never prunes."""
        ms = to_epoch_ms(timestamp) if timestamp is not None else self._now_ms()
        await self._store.zadd(self.rolling_key(user_id, tier), f"{ms}:{uuid.uuid4()}", ms)

    async def rolling_window_usage(
        self,
        user_id: str,
        tier: ModelTier | str,
        window_seconds: int,
        now: datetime | None = None,
    ) -> int:
        """Prune markers at or before ``now - window`` and return how many remain."""
        now_ms = to_epoch_ms(now) if now is not None else self._now_ms()
        cutoff = now_ms - window_seconds * 1000
        return await self._store.prune_and_count(self.rolling_key(user_id, tier), cutoff)

    # ISO week

    async def increment_weekly(
        self,
        user_id: str,
        tier: ModelTier | str,
        by: int = 1,
        now: datetime | None = None,
    ) -> int:
        now = self._resolve_now(now)
        key = self.weekly_key(user_id, tier, now)
        count = await self._store.incrby(key, by)
        await self._expire_once(key, end_of_iso_week(now))
        return count

    async def weekly_usage(
        self,
        user_id: str,
        tier: ModelTier | str,
        now: datetime | None = None,
    ) -> int:
        value = await self._store.get(self.weekly_key(user_id, tier, self._resolve_now(now)))
        return int(value) if value is not None else 0

    # Calendar month

    async def increment_monthly_soft_cap(
        self,
        user_id: str,
        tier: ModelTier | str,
        by: int = 1,
        now: datetime | None = None,
    ) -> int:
        now = self._resolve_now(now)
        key = self.monthly_key(user_id, tier, now)
        count = await self._store.incrby(key, by)
        await self._expire_once(key, end_of_month(now))
        return count

    async def monthly_soft_cap(
        self,
        user_id: str,
        tier: ModelTier | str,
        now: datetime | None = None,
    ) -> int:
        value = await self._store.get(self.monthly_key(user_id, tier, self._resolve_now(now)))
        return int(value) if value is not None else 0

    # Monthly cost

    async def increment_monthly_cost(
        self,
        user_id: str,
        cost: float,
        now: datetime | None = None,
    ) -> float:
        """Add ``cost`` to this month's total and return the new total.

        Stores without float increments accumulate integer cents instead.
        """
        now = self._resolve_now(now)
        key = self.cost_key(user_id, now)
        if self._store.supports_float:
            total = await self._store.incrbyfloat(key, cost)
        else:
            key = f"{key}:cents"
            total = await self._store.incrby(key, round(cost * 100)) / 100
        await self._expire_once(key, end_of_month(now))
        return total

    async def monthly_cost(self, user_id: str, now: datetime | None = None) -> float:
        key = self.cost_key(user_id, self._resolve_now(now))
        value = await self._store.get(key)
        if value is not None:
            return float(value)
        cents = await self._store.get(f"{key}:cents")
        if cents is not None:
            return int(cents) / 100
        return 0.0

    async def record_request(
        self,
        user_id: str,
        tier: ModelTier | str,
        now: datetime | None = None,
    ) -> None:
        """Count one served request on every horizon."""
        now = self._resolve_now(now)
        await self.record_event(user_id, tier, now)
        await self.increment_weekly(user_id, tier, 1, now)
        await self.increment_monthly_soft_cap(user_id, tier, 1, now)
        logger.debug("Recorded usage", user_id=user_id, tier=_tier_value(tier))
