"""Redis-backed counter store."""

from typing import Any, cast

import redis.asyncio as redis
import structlog

from tiergate.exceptions import StoreNotConnectedError

logger = structlog.get_logger()

# Remove expired window markers and count the rest in one round trip
PRUNE_AND_COUNT_SCRIPT = """
redis.call('zremrangebyscore', KEYS[1], '-inf', ARGV[1])
return redis.call('zcard', KEYS[1])
"""


class RedisCounterStore:
    """Async Redis client exposing the counter store primitives.

    Every operation maps onto a single Redis command (or one Lua script), so
    concurrent callers across processes never do read-increment-write.
    """

    supports_float = True

    def __init__(self, url: str, decode_responses: bool = True) -> None:
        """Initialize Redis counter store.

        Args:
            url: Redis connection URL (e.g., redis://localhost:6379)
            decode_responses: Whether to decode responses as strings
        """
        self._url = url
        self._decode_responses = decode_responses
        self._client: Any = None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is not None:
            return

        self._client = redis.from_url(  # type: ignore[no-untyped-call]
            self._url,
            decode_responses=self._decode_responses,
        )
        logger.info("Connected to Redis", url=self._url)

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None

        logger.info("Disconnected from Redis")

    @property
    def client(self) -> Any:
        """Get the underlying Redis client."""
        if self._client is None:
            raise StoreNotConnectedError("Redis counter store")
        return self._client

    # Sorted sets (rolling windows)

    async def zadd(self, key: str, member: str, score: float) -> int:
        return cast("int", await self.client.zadd(key, {member: score}))

    async def zcard(self, key: str) -> int:
        return cast("int", await self.client.zcard(key))

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        return cast("int", await self.client.zremrangebyscore(key, min_score, max_score))

    async def prune_and_count(self, key: str, max_score: float) -> int:
        """Drop members scored at or below max_score and return the remaining cardinality."""
        result = await self.client.eval(PRUNE_AND_COUNT_SCRIPT, 1, key, max_score)
        return int(result)

    # Counters

    async def incrby(self, key: str, amount: int = 1) -> int:
        return cast("int", await self.client.incrby(key, amount))

    async def incrbyfloat(self, key: str, amount: float) -> float:
        return float(await self.client.incrbyfloat(key, amount))

    # Key-value operations

    async def get(self, key: str) -> str | None:
        result = await self.client.get(key)
        if result is None:
            return None
        return cast("str", result)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        """Set a value with an optional expiration in seconds."""
        result = await self.client.set(key, value, ex=ex)
        return bool(result)

    async def delete(self, key: str) -> int:
        return cast("int", await self.client.delete(key))

    # Expiry

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -1 when the key has no expiry, -2 when missing."""
        return cast("int", await self.client.ttl(key))

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self.client.expire(key, seconds))

    async def expireat(self, key: str, when: int) -> bool:
        return bool(await self.client.expireat(key, when))

