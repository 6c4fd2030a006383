"""Tests for the in-memory counter store."""

import pytest

from tiergate.counter_store import TTL_MISSING, TTL_NONE, CounterStore, InMemoryCounterStore

from tests.conftest import FakeClock


class TestInMemoryCounterStore:
    """Tests for Redis-compatible semantics of InMemoryCounterStore."""

    def test_satisfies_protocol(self, store: InMemoryCounterStore) -> None:
        assert isinstance(store, CounterStore)

    @pytest.mark.asyncio
    async def test_incrby_starts_from_zero(self, store: InMemoryCounterStore) -> None:
        assert await store.incrby("k") == 1
        assert await store.incrby("k", 4) == 5
        assert await store.get("k") == "5"

    @pytest.mark.asyncio
    async def test_incrbyfloat(self, store: InMemoryCounterStore) -> None:
        await store.incrbyfloat("cost", 0.25)
        assert await store.incrbyfloat("cost", 0.5) == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_incrbyfloat_unsupported(self, clock: FakeClock) -> None:
        store = InMemoryCounterStore(clock=clock.seconds, supports_float=False)
        with pytest.raises(NotImplementedError):
            await store.incrbyfloat("cost", 1.0)

    @pytest.mark.asyncio
    async def test_zadd_and_prune(self, store: InMemoryCounterStore) -> None:
        await store.zadd("z", "a", 100)
        await store.zadd("z", "b", 200)
        await store.zadd("z", "c", 300)

        assert await store.prune_and_count("z", 200) == 1
        assert await store.zcard("z") == 1

    @pytest.mark.asyncio
    async def test_zremrangebyscore_is_inclusive(self, store: InMemoryCounterStore) -> None:
        for member, score in (("a", 100), ("b", 200), ("c", 300)):
            await store.zadd("z", member, score)

        assert await store.zremrangebyscore("z", 100, 200) == 2
        assert await store.zcard("z") == 1
        assert await store.zremrangebyscore("z", 0, 50) == 0

    @pytest.mark.asyncio
    async def test_zadd_same_member_is_not_duplicated(self, store: InMemoryCounterStore) -> None:
        assert await store.zadd("z", "a", 100) == 1
        assert await store.zadd("z", "a", 150) == 0
        assert await store.zcard("z") == 1

    @pytest.mark.asyncio
    async def test_ttl_codes(self, store: InMemoryCounterStore, clock: FakeClock) -> None:
        assert await store.ttl("missing") == TTL_MISSING
        await store.incrby("k")
        assert await store.ttl("k") == TTL_NONE
        await store.expireat("k", int(clock.seconds()) + 60)
        assert await store.ttl("k") == 60

    @pytest.mark.asyncio
    async def test_key_expires(self, store: InMemoryCounterStore, clock: FakeClock) -> None:
        await store.incrby("k")
        await store.expireat("k", int(clock.seconds()) + 10)

        clock.advance(seconds=11)

        assert await store.get("k") is None
        assert await store.ttl("k") == TTL_MISSING
        assert await store.incrby("k") == 1

    @pytest.mark.asyncio
    async def test_expire_relative(self, store: InMemoryCounterStore, clock: FakeClock) -> None:
        await store.incrby("k")
        assert await store.expire("k", 30) is True
        assert await store.ttl("k") == 30
        assert await store.expire("missing", 30) is False

    @pytest.mark.asyncio
    async def test_expireat_missing_key(self, store: InMemoryCounterStore) -> None:
        assert await store.expireat("missing", 10) is False

    @pytest.mark.asyncio
    async def test_set_with_ex(self, store: InMemoryCounterStore, clock: FakeClock) -> None:
        await store.set("rate", "0.9", ex=30)
        clock.advance(seconds=29)
        assert await store.get("rate") == "0.9"
        clock.advance(seconds=2)
        assert await store.get("rate") is None

    @pytest.mark.asyncio
    async def test_delete(self, store: InMemoryCounterStore) -> None:
        await store.set("k", "v")
        assert await store.delete("k") == 1
        assert await store.delete("k") == 0
