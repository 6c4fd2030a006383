"""Exchange rates for converting model cost into the billing currency.

``current_rate`` never raises. It walks a fixed chain and returns the first
usable rate:

1. cached rate (counter store, 8h TTL)
2. previous-day historical rate, if a live failure was recorded within the hour
3. live rate from Frankfurter
4. live rate from exchangerate-api (only with an API key)
5. record the failure, then the previous-day historical rate
6. a constant fallback rate

Each step is its own method so it can be exercised on its own.
"""

import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

import httpx
import structlog

from tiergate.counter_store import CounterStore
from tiergate.exceptions import RateFetchError
from tiergate.periods import from_epoch_ms

logger = structlog.get_logger()

DEFAULT_CACHE_TTL = 8 * 60 * 60
DEFAULT_FAILURE_TTL = 60 * 60
DEFAULT_FALLBACK_RATE = 0.92
FRANKFURTER_API_URL = "https://api.frankfurter.dev/v1"
EXCHANGERATE_API_URL = "https://v6.exchangerate-api.com/v6"

FetchJson = Callable[[str], Awaitable[dict[str, Any]]]


def _positive_rate(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value) if value > 0 else None


class CurrencyRateSource:
    """Cached, multi-provider exchange rate lookup."""

    def __init__(
        self,
        store: CounterStore,
        namespace: str = "currency",
        now_ms: Callable[[], int] | None = None,
        fetch_json: FetchJson | None = None,
        cache_ttl: int = DEFAULT_CACHE_TTL,
        failure_ttl: int = DEFAULT_FAILURE_TTL,
        fallback_rate: float = DEFAULT_FALLBACK_RATE,
        frankfurter_url: str = FRANKFURTER_API_URL,
        exchangerate_url: str = EXCHANGERATE_API_URL,
        exchangerate_api_key: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the rate source.

        Args:
            store: Counter store used for the rate cache and failure marker
            namespace: Key prefix
            now_ms: Clock returning epoch milliseconds
            fetch_json: Coroutine fetching a URL and returning its JSON body;
                defaults to an httpx GET that raises on non-2xx responses
            cache_ttl: Seconds a fetched live rate stays cached
            failure_ttl: Seconds a live failure keeps diverting to historical rates
            fallback_rate: Rate used when every provider fails
            frankfurter_url: Frankfurter API base URL
            exchangerate_url: exchangerate-api base URL
            exchangerate_api_key: exchangerate-api key; the provider is skipped without one
            timeout: HTTP timeout in seconds for the default fetcher
        """
        self._store = store
        self._namespace = namespace.rstrip(":")
        self._now_ms = now_ms or (lambda: int(time.time() * 1000))
        self._fetch_json = fetch_json or self._http_get_json
        self._cache_ttl = cache_ttl
        self._failure_ttl = failure_ttl
        self._fallback_rate = fallback_rate
        self._frankfurter_url = frankfurter_url.rstrip("/")
        self._exchangerate_url = exchangerate_url.rstrip("/")
        self._exchangerate_api_key = exchangerate_api_key
        self._timeout = timeout

    async def _http_get_json(self, url: str) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url)
            response.raise_for_status()
            data: dict[str, Any] = response.json()
            return data

    def _cache_key(self, source: str, target: str) -> str:
        return f"{self._namespace}:exchange_rate:{source.lower()}_{target.lower()}"

    def _failure_key(self, source: str, target: str) -> str:
        return f"{self._namespace}:exchange_rate_failure:{source.lower()}_{target.lower()}"

    async def current_rate(self, source: str = "USD", target: str = "EUR") -> float:
        """Return how many ``target`` units one ``source`` unit buys."""
        if source == target:
            return 1.0
        try:
            rate = await self.cached_rate(source, target)
            if rate is not None:
                return rate

            if await self.had_recent_failure(source, target):
                rate = await self.historical_rate(source, target)
                if rate is not None:
                    return rate

            rate = await self.primary_live_rate(source, target)
            if rate is None:
                rate = await self.secondary_live_rate(source, target)
            if rate is not None:
                await self._store.set(
                    self._cache_key(source, target), repr(rate), ex=self._cache_ttl
                )
                return rate

            await self.record_failure(source, target)
            rate = await self.historical_rate(source, target)
            if rate is not None:
                return rate
        except Exception:
            logger.exception("Exchange rate lookup failed", source=source, target=target)
            rate = await self.historical_rate(source, target)
            if rate is not None:
                return rate

        logger.warning(
            "All exchange rate sources failed, using fallback rate",
            source=source,
            target=target,
            rate=self._fallback_rate,
        )
        return self._fallback_rate

    async def cached_rate(self, source: str, target: str) -> float | None:
        value = await self._store.get(self._cache_key(source, target))
        if value is None:
            return None
        try:
            return _positive_rate(float(value))
        except ValueError:
            return None

    async def had_recent_failure(self, source: str, target: str) -> bool:
        """Whether a live failure was recorded less than ``failure_ttl`` ago.

        Older markers are deleted.
        """
        failure_key = self._failure_key(source, target)
        value = await self._store.get(failure_key)
        if value is None:
            return False
        if self._now_ms() - int(value) < self._failure_ttl * 1000:
            return True
        await self._store.delete(failure_key)
        return False

    async def record_failure(self, source: str, target: str) -> None:
        await self._store.set(
            self._failure_key(source, target),
            str(self._now_ms()),
            ex=self._failure_ttl,
        )

    async def _fetch_rate(self, provider: str, url: str, path: tuple[str, ...]) -> float | None:
        try:
            data: Any = await self._fetch_json(url)
            for part in path:
                data = data.get(part) if isinstance(data, dict) else None
            rate = _positive_rate(data)
            if rate is None:
                raise RateFetchError(provider, "response has no positive rate")
        except Exception as e:
            logger.warning("Exchange rate provider failed", provider=provider, error=str(e))
            return None
        logger.debug("Fetched exchange rate", provider=provider, rate=rate)
        return rate

    async def primary_live_rate(self, source: str, target: str) -> float | None:
        url = f"{self._frankfurter_url}/latest?base={source}&symbols={target}"
        return await self._fetch_rate("frankfurter", url, ("rates", target))

    async def secondary_live_rate(self, source: str, target: str) -> float | None:
        if not self._exchangerate_api_key:
            return None
        url = f"{self._exchangerate_url}/{self._exchangerate_api_key}/latest/{source}"
        return await self._fetch_rate("exchangerate-api", url, ("conversion_rates", target))

    async def historical_rate(self, source: str, target: str) -> float | None:
        """Previous UTC day's rate from Frankfurter."""
        day = (from_epoch_ms(self._now_ms()) - timedelta(days=1)).date().isoformat()
        url = f"{self._frankfurter_url}/{day}?base={source}&symbols={target}"
        return await self._fetch_rate("frankfurter-historical", url, ("rates", target))
