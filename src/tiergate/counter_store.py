"""Counter store interface and an in-process implementation.

The usage ledger only talks to a ``CounterStore``. Production uses the Redis
adapter in ``tiergate.redis_client``; tests and single-process tools use
``InMemoryCounterStore`` which mirrors Redis semantics for the primitives the
ledger needs (including TTL return codes).
"""

import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

# Redis TTL return codes
TTL_MISSING = -2
TTL_NONE = -1


@runtime_checkable
class CounterStore(Protocol):
    """Atomic counter and sorted-set primitives."""

    supports_float: bool

    async def zadd(self, key: str, member: str, score: float) -> int: ...

    async def zcard(self, key: str) -> int: ...

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int: ...

    async def prune_and_count(self, key: str, max_score: float) -> int:
        """Remove members with score <= max_score and return the remaining size atomically."""
        ...

    async def incrby(self, key: str, amount: int = 1) -> int: ...

    async def incrbyfloat(self, key: str, amount: float) -> float: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ex: int | None = None) -> bool: ...

    async def delete(self, key: str) -> int: ...

    async def ttl(self, key: str) -> int: ...

    async def expire(self, key: str, seconds: int) -> bool: ...

    async def expireat(self, key: str, when: int) -> bool: ...


class InMemoryCounterStore:
    """Dict-backed counter store with lazy expiry.

    No method awaits internally, so every operation is atomic with respect to
    other coroutines on the same event loop.
    """

    def __init__(
        self,
        clock: Callable[[], float] | None = None,
        supports_float: bool = True,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Returns the current epoch time in seconds (defaults to time.time)
            supports_float: Whether incrbyfloat is available, to exercise integer fallbacks
        """
        self._clock = clock or time.time
        self.supports_float = supports_float
        self._values: dict[str, Any] = {}
        self._expires: dict[str, float] = {}

    def _evict(self, key: str) -> None:
        expires_at = self._expires.get(key)
        if expires_at is not None and expires_at <= self._clock():
            self._values.pop(key, None)
            self._expires.pop(key, None)

    def _zset(self, key: str) -> dict[str, float]:
        self._evict(key)
        value = self._values.setdefault(key, {})
        if not isinstance(value, dict):
            raise TypeError(f"WRONGTYPE key {key} does not hold a sorted set")
        return value

    async def zadd(self, key: str, member: str, score: float) -> int:
        zset = self._zset(key)
        added = 0 if member in zset else 1
        zset[member] = score
        return added

    async def zcard(self, key: str) -> int:
        self._evict(key)
        value = self._values.get(key)
        return len(value) if isinstance(value, dict) else 0

    def _remove_range(self, key: str, min_score: float, max_score: float) -> int:
        zset = self._zset(key)
        doomed = [m for m, score in zset.items() if min_score <= score <= max_score]
        for member in doomed:
            del zset[member]
        if not zset:
            self._values.pop(key, None)
            self._expires.pop(key, None)
        return len(doomed)

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        return self._remove_range(key, min_score, max_score)

    async def prune_and_count(self, key: str, max_score: float) -> int:
        self._remove_range(key, float("-inf"), max_score)
        value = self._values.get(key)
        return len(value) if isinstance(value, dict) else 0

    async def incrby(self, key: str, amount: int = 1) -> int:
        self._evict(key)
        current = int(self._values.get(key, 0))
        current += amount
        self._values[key] = str(current)
        return current

    async def incrbyfloat(self, key: str, amount: float) -> float:
        if not self.supports_float:
            raise NotImplementedError("incrbyfloat is not supported by this store")
        self._evict(key)
        current = float(self._values.get(key, 0.0))
        current += amount
        self._values[key] = repr(current)
        return current

    async def get(self, key: str) -> str | None:
        self._evict(key)
        value = self._values.get(key)
        if value is None or isinstance(value, dict):
            return None
        return str(value)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._values[key] = value
        if ex is not None:
            self._expires[key] = self._clock() + ex
        else:
            self._expires.pop(key, None)
        return True

    async def delete(self, key: str) -> int:
        existed = key in self._values
        self._values.pop(key, None)
        self._expires.pop(key, None)
        return 1 if existed else 0

    async def ttl(self, key: str) -> int:
        self._evict(key)
        if key not in self._values:
            return TTL_MISSING
        expires_at = self._expires.get(key)
        if expires_at is None:
            return TTL_NONE
        return max(int(expires_at - self._clock()), 0)

    def _expire_at(self, key: str, when: float) -> bool:
        self._evict(key)
        if key not in self._values:
            return False
        self._expires[key] = when
        self._evict(key)
        return True

    async def expire(self, key: str, seconds: int) -> bool:
        return self._expire_at(key, self._clock() + seconds)

    async def expireat(self, key: str, when: int) -> bool:
        return self._expire_at(key, float(when))
