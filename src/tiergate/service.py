"""Construction of the billing components from settings.

Nothing here is global: callers build a ``BillingService`` once at startup,
``start()`` it, and pass it (or its parts) to request handlers and the
webhook drain job.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from tiergate.config import Settings, get_settings
from tiergate.cost_guard import CostGuard
from tiergate.counter_store import CounterStore
from tiergate.currency import CurrencyRateSource
from tiergate.database.connection import close_database, create_engine, create_session_factory
from tiergate.entitlements import EntitlementEngine
from tiergate.exceptions import ConfigurationError
from tiergate.models.plans import PlanCatalog, default_plans
from tiergate.pricing import PriceTable
from tiergate.reconciler import WebhookReconciler
from tiergate.redis_client import RedisCounterStore
from tiergate.storage.base import CustomerLinkStore, SubscriptionStore, WebhookEventStore
from tiergate.storage.memory import (
    InMemoryCustomerLinkStore,
    InMemorySubscriptionStore,
    InMemoryWebhookEventStore,
)
from tiergate.storage.sql import SqlCustomerLinkStore, SqlSubscriptionStore, SqlWebhookEventStore
from tiergate.usage_ledger import UsageLedger

logger = structlog.get_logger()


@dataclass
class BillingService:
    """All billing components, wired together."""

    settings: Settings
    catalog: PlanCatalog
    counter_store: CounterStore
    ledger: UsageLedger
    rate_source: CurrencyRateSource
    cost_guard: CostGuard
    entitlements: EntitlementEngine
    reconciler: WebhookReconciler
    engine: AsyncEngine | None = None

    async def start(self) -> None:
        if isinstance(self.counter_store, RedisCounterStore):
            await self.counter_store.connect()
        logger.info(
            "Billing service started",
            plans=len(self.catalog),
            environment=self.settings.ENVIRONMENT,
        )

    async def stop(self) -> None:
        if isinstance(self.counter_store, RedisCounterStore):
            await self.counter_store.disconnect()
        if self.engine is not None:
            await close_database(self.engine)


def build_catalog(settings: Settings) -> PlanCatalog:
    return PlanCatalog(default_plans(settings.plan_price_ids), settings.DEFAULT_PLAN_ID)


def build_billing_service(
    settings: Settings | None = None,
    counter_store: CounterStore | None = None,
    subscriptions: SubscriptionStore | None = None,
    customers: CustomerLinkStore | None = None,
    events: WebhookEventStore | None = None,
    strict: bool = False,
) -> BillingService:
    """Wire every component from settings.

    Any store passed in is used as is. Otherwise the counter store is Redis
    (``REDIS_URL``) and the document stores are PostgreSQL (``DATABASE_URL``),
    or in-memory when ``DATABASE_URL`` is ``memory://``.

    Args:
        strict: Raise ConfigurationError when ``validate_configuration`` reports issues
    """
    settings = settings or get_settings()
    issues = settings.validate_configuration()
    for issue in issues:
        logger.warning("Billing configuration issue", issue=issue)
    if strict and issues:
        raise ConfigurationError("; ".join(issues))

    catalog = build_catalog(settings)
    counter_store = counter_store or RedisCounterStore(settings.REDIS_URL)

    engine: AsyncEngine | None = None
    if subscriptions is None or customers is None or events is None:
        if settings.DATABASE_URL.startswith("memory://"):
            subscriptions = subscriptions or InMemorySubscriptionStore()
            customers = customers or InMemoryCustomerLinkStore()
            events = events or InMemoryWebhookEventStore()
        else:
            engine = create_engine(settings.DATABASE_URL)
            session_factory = create_session_factory(engine)
            subscriptions = subscriptions or SqlSubscriptionStore(session_factory)
            customers = customers or SqlCustomerLinkStore(session_factory)
            events = events or SqlWebhookEventStore(session_factory)

    ledger = UsageLedger(counter_store, namespace=settings.USAGE_NAMESPACE)
    rate_source = CurrencyRateSource(
        counter_store,
        cache_ttl=settings.EXCHANGE_RATE_CACHE_TTL,
        failure_ttl=settings.EXCHANGE_RATE_FAILURE_TTL,
        fallback_rate=settings.EXCHANGE_RATE_FALLBACK,
        frankfurter_url=settings.FRANKFURTER_API_URL,
        exchangerate_url=settings.EXCHANGERATE_API_URL,
        exchangerate_api_key=settings.EXCHANGE_RATE_API_KEY,
        timeout=settings.HTTP_TIMEOUT_RATES,
    )
    cost_guard = CostGuard(ledger, PriceTable(), rate_source)
    entitlements = EntitlementEngine(ledger, cost_guard, catalog, subscriptions)
    reconciler = WebhookReconciler(
        events,
        subscriptions,
        customers,
        catalog,
        grace_period_days=settings.GRACE_PERIOD_DAYS,
        max_batches=settings.WEBHOOK_DRAIN_MAX_BATCHES,
        fail_reason_max_length=settings.FAIL_REASON_MAX_LENGTH,
    )
    return BillingService(
        settings=settings,
        catalog=catalog,
        counter_store=counter_store,
        ledger=ledger,
        rate_source=rate_source,
        cost_guard=cost_guard,
        entitlements=entitlements,
        reconciler=reconciler,
        engine=engine,
    )
