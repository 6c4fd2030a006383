"""Tests for the usage ledger."""

from datetime import UTC, datetime

import pytest

from tiergate.counter_store import TTL_NONE, InMemoryCounterStore
from tiergate.models.plans import ModelTier
from tiergate.periods import end_of_iso_week, end_of_month, expire_at_seconds
from tiergate.usage_ledger import UsageLedger

from tests.conftest import START, FakeClock

USER = "user-123"


class TestKeys:
    """Tests for the three key families."""

    def test_key_layout(self, ledger: UsageLedger) -> None:
        assert ledger.rolling_key(USER, ModelTier.PREMIUM) == "usage:user-123:premium:z"
        assert ledger.weekly_key(USER, ModelTier.PREMIUM, START) == (
            "usage:user-123:premium:week:2025-11"
        )
        assert ledger.monthly_key(USER, "economy", START) == "usage:user-123:economy:month:2025-03"
        assert ledger.cost_key(USER, START) == "usage:cogs:user-123:2025-03"

    def test_custom_namespace(self, store: InMemoryCounterStore) -> None:
        ledger = UsageLedger(store, namespace="billing")
        assert ledger.rolling_key(USER, ModelTier.FLAGSHIP) == "billing:user-123:flagship:z"


class TestRollingWindow:
    """Tests for the rolling window."""

    @pytest.mark.asyncio
    async def test_counts_events_inside_window(self, ledger: UsageLedger) -> None:
        for _ in range(3):
            await ledger.record_event(USER, ModelTier.PREMIUM)

        assert await ledger.rolling_window_usage(USER, ModelTier.PREMIUM, 3600) == 3

    @pytest.mark.asyncio
    async def test_same_millisecond_events_are_distinct(self, ledger: UsageLedger) -> None:
        await ledger.record_event(USER, ModelTier.PREMIUM, START)
        await ledger.record_event(USER, ModelTier.PREMIUM, START)

        assert await ledger.rolling_window_usage(USER, ModelTier.PREMIUM, 60) == 2

    @pytest.mark.asyncio
    async def test_old_events_are_pruned(self, ledger: UsageLedger, clock: FakeClock) -> None:
        await ledger.record_event(USER, ModelTier.PREMIUM)
        clock.advance(minutes=30)
        await ledger.record_event(USER, ModelTier.PREMIUM)
        clock.advance(minutes=31)

        # The first event is now 61 minutes old
        assert await ledger.rolling_window_usage(USER, ModelTier.PREMIUM, 3600) == 1

    @pytest.mark.asyncio
    async def test_event_exactly_window_old_is_pruned(
        self, ledger: UsageLedger, clock: FakeClock
    ) -> None:
        await ledger.record_event(USER, ModelTier.PREMIUM)
        clock.advance(seconds=3600)

        assert await ledger.rolling_window_usage(USER, ModelTier.PREMIUM, 3600) == 0

    @pytest.mark.asyncio
    async def test_repeated_reads_are_stable(self, ledger: UsageLedger) -> None:
        for _ in range(4):
            await ledger.record_event(USER, ModelTier.STANDARD)

        first = await ledger.rolling_window_usage(USER, ModelTier.STANDARD, 600)
        second = await ledger.rolling_window_usage(USER, ModelTier.STANDARD, 600)

        assert first == second == 4

    @pytest.mark.asyncio
    async def test_tiers_are_independent(self, ledger: UsageLedger) -> None:
        await ledger.record_event(USER, ModelTier.PREMIUM)

        assert await ledger.rolling_window_usage(USER, ModelTier.STANDARD, 600) == 0


class TestWeekly:
    """Tests for ISO week counters."""

    @pytest.mark.asyncio
    async def test_increment_and_read(self, ledger: UsageLedger) -> None:
        assert await ledger.increment_weekly(USER, ModelTier.PREMIUM) == 1
        assert await ledger.increment_weekly(USER, ModelTier.PREMIUM, by=2) == 3
        assert await ledger.weekly_usage(USER, ModelTier.PREMIUM) == 3

    @pytest.mark.asyncio
    async def test_unused_week_reads_zero(self, ledger: UsageLedger) -> None:
        assert await ledger.weekly_usage(USER, ModelTier.PREMIUM) == 0

    @pytest.mark.asyncio
    async def test_sunday_and_monday_land_in_different_counters(self, ledger: UsageLedger) -> None:
        sunday = datetime(2025, 3, 16, 23, 59, 59, tzinfo=UTC)
        monday = datetime(2025, 3, 17, 0, 0, 1, tzinfo=UTC)

        await ledger.increment_weekly(USER, ModelTier.PREMIUM, now=sunday)
        await ledger.increment_weekly(USER, ModelTier.PREMIUM, now=monday)

        assert await ledger.weekly_usage(USER, ModelTier.PREMIUM, now=sunday) == 1
        assert await ledger.weekly_usage(USER, ModelTier.PREMIUM, now=monday) == 1

    @pytest.mark.asyncio
    async def test_expiry_set_to_end_of_week(
        self, ledger: UsageLedger, store: InMemoryCounterStore
    ) -> None:
        await ledger.increment_weekly(USER, ModelTier.PREMIUM)

        key = ledger.weekly_key(USER, ModelTier.PREMIUM, START)
        expected = expire_at_seconds(end_of_iso_week(START))
        assert await store.ttl(key) == int(expected - START.timestamp())

    @pytest.mark.asyncio
    async def test_write_in_last_second_of_week_survives(
        self, ledger: UsageLedger, clock: FakeClock
    ) -> None:
        clock.set(datetime(2025, 3, 16, 23, 59, 59, tzinfo=UTC))

        assert await ledger.increment_weekly(USER, ModelTier.PREMIUM) == 1
        assert await ledger.weekly_usage(USER, ModelTier.PREMIUM) == 1

        clock.set(datetime(2025, 3, 16, 23, 59, 59, 999000, tzinfo=UTC))
        assert await ledger.weekly_usage(USER, ModelTier.PREMIUM) == 1

    @pytest.mark.asyncio
    async def test_weekly_key_expires_at_start_of_next_week(
        self, ledger: UsageLedger, store: InMemoryCounterStore, clock: FakeClock
    ) -> None:
        sunday = datetime(2025, 3, 16, 23, 59, 59, tzinfo=UTC)
        clock.set(sunday)
        await ledger.increment_weekly(USER, ModelTier.PREMIUM)
        key = ledger.weekly_key(USER, ModelTier.PREMIUM, sunday)

        assert await store.ttl(key) == 1
        clock.set(datetime(2025, 3, 17, tzinfo=UTC))
        assert await store.get(key) is None

    @pytest.mark.asyncio
    async def test_expiry_set_only_once(
        self, ledger: UsageLedger, store: InMemoryCounterStore, clock: FakeClock
    ) -> None:
        await ledger.increment_weekly(USER, ModelTier.PREMIUM)
        key = ledger.weekly_key(USER, ModelTier.PREMIUM, START)
        await store.expireat(key, int(START.timestamp()) + 100)

        clock.advance(seconds=10)
        await ledger.increment_weekly(USER, ModelTier.PREMIUM)

        assert await store.ttl(key) == 90


class TestMonthly:
    """Tests for calendar month soft caps."""

    @pytest.mark.asyncio
    async def test_increment_and_read(self, ledger: UsageLedger) -> None:
        await ledger.increment_monthly_soft_cap(USER, ModelTier.ECONOMY)
        await ledger.increment_monthly_soft_cap(USER, ModelTier.ECONOMY)
        assert await ledger.monthly_soft_cap(USER, ModelTier.ECONOMY) == 2

    @pytest.mark.asyncio
    async def test_month_boundary(self, ledger: UsageLedger) -> None:
        last = datetime(2025, 3, 31, 23, 59, 59, 999000, tzinfo=UTC)
        first = datetime(2025, 4, 1, tzinfo=UTC)

        await ledger.increment_monthly_soft_cap(USER, ModelTier.ECONOMY, now=last)
        await ledger.increment_monthly_soft_cap(USER, ModelTier.ECONOMY, now=first)

        assert await ledger.monthly_soft_cap(USER, ModelTier.ECONOMY, now=last) == 1
        assert await ledger.monthly_soft_cap(USER, ModelTier.ECONOMY, now=first) == 1

    @pytest.mark.asyncio
    async def test_expiry_set_to_end_of_month(
        self, ledger: UsageLedger, store: InMemoryCounterStore
    ) -> None:
        await ledger.increment_monthly_soft_cap(USER, ModelTier.ECONOMY)

        key = ledger.monthly_key(USER, ModelTier.ECONOMY, START)
        ttl = await store.ttl(key)
        assert ttl != TTL_NONE
        assert ttl == int(expire_at_seconds(end_of_month(START)) - START.timestamp())

    @pytest.mark.asyncio
    async def test_write_in_last_second_of_month_survives(
        self, ledger: UsageLedger, clock: FakeClock
    ) -> None:
        clock.set(datetime(2025, 3, 31, 23, 59, 59, 500000, tzinfo=UTC))

        await ledger.increment_monthly_soft_cap(USER, ModelTier.ECONOMY)
        await ledger.increment_monthly_cost(USER, 2.0)

        assert await ledger.monthly_soft_cap(USER, ModelTier.ECONOMY) == 1
        assert await ledger.monthly_cost(USER) == pytest.approx(2.0)


class TestMonthlyCost:
    """Tests for the monthly cost accumulator."""

    @pytest.mark.asyncio
    async def test_accumulates_float(self, ledger: UsageLedger) -> None:
        await ledger.increment_monthly_cost(USER, 0.1)
        total = await ledger.increment_monthly_cost(USER, 0.2)

        assert total == pytest.approx(0.3)
        assert await ledger.monthly_cost(USER) == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_unused_month_is_zero(self, ledger: UsageLedger) -> None:
        assert await ledger.monthly_cost(USER) == 0.0

    @pytest.mark.asyncio
    async def test_cents_fallback_without_float_support(self, clock: FakeClock) -> None:
        store = InMemoryCounterStore(clock=clock.seconds, supports_float=False)
        ledger = UsageLedger(store, now_ms=clock.now_ms)

        await ledger.increment_monthly_cost(USER, 1.234)
        total = await ledger.increment_monthly_cost(USER, 0.5)

        assert total == pytest.approx(1.73)
        assert await store.get(f"{ledger.cost_key(USER, START)}:cents") == "173"
        assert await ledger.monthly_cost(USER) == pytest.approx(1.73)

    @pytest.mark.asyncio
    async def test_month_boundary(self, ledger: UsageLedger) -> None:
        last = datetime(2025, 3, 31, 23, 59, 59, 999000, tzinfo=UTC)
        first = datetime(2025, 4, 1, tzinfo=UTC)

        await ledger.increment_monthly_cost(USER, 2.0, now=last)
        await ledger.increment_monthly_cost(USER, 3.0, now=first)

        assert await ledger.monthly_cost(USER, now=last) == pytest.approx(2.0)
        assert await ledger.monthly_cost(USER, now=first) == pytest.approx(3.0)


class TestRecordRequest:
    """Tests for counting one served request everywhere."""

    @pytest.mark.asyncio
    async def test_updates_every_horizon(self, ledger: UsageLedger) -> None:
        await ledger.record_request(USER, ModelTier.PREMIUM)

        assert await ledger.rolling_window_usage(USER, ModelTier.PREMIUM, 60) == 1
        assert await ledger.weekly_usage(USER, ModelTier.PREMIUM) == 1
        assert await ledger.monthly_soft_cap(USER, ModelTier.PREMIUM) == 1
