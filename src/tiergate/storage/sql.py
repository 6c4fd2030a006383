"""PostgreSQL stores built on SQLAlchemy async sessions."""

from datetime import datetime
from typing import Any

from sqlalchemy import Delete, Update, delete, func, select, update
from sqlalchemy.dialects.postgresql import Insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tiergate.database.models import CustomerLink, Subscription, WebhookEvent
from tiergate.models.billing import (
    SubscriptionRecord,
    SubscriptionState,
    WebhookEventRecord,
    WebhookEventStatus,
)

# Columns an applied event may overwrite
SUBSCRIPTION_UPDATE_COLUMNS = (
    "external_subscription_id",
    "external_customer_id",
    "plan_id",
    "price_id",
    "status",
    "current_period_start",
    "current_period_end",
    "grace_period_until",
    "canceled_at",
    "last_event_at",
)


def _subscription_values(state: SubscriptionState) -> dict[str, Any]:
    values = state.model_dump()
    values["status"] = state.status.value
    return values


def build_conditional_upsert(state: SubscriptionState) -> Insert:
    """INSERT ... ON CONFLICT (user_id) DO UPDATE ... WHERE last_event_at < excluded.

    The WHERE clause makes the upsert a compare-and-swap on the watermark:
    when it is false PostgreSQL returns no row.
    """
    stmt = pg_insert(Subscription).values(**_subscription_values(state))
    set_: dict[str, Any] = {
        col: getattr(stmt.excluded, col) for col in SUBSCRIPTION_UPDATE_COLUMNS
    }
    set_["updated_at"] = func.now()
    return stmt.on_conflict_do_update(
        index_elements=[Subscription.user_id],
        set_=set_,
        where=Subscription.last_event_at < stmt.excluded.last_event_at,
    ).returning(Subscription)


def build_release_customer(user_id: str, external_customer_id: str) -> Delete:
    """Drop a link that ties the customer to some other user."""
    return delete(CustomerLink).where(
        CustomerLink.external_customer_id == external_customer_id,
        CustomerLink.user_id != user_id,
    )


def build_link_upsert(user_id: str, external_customer_id: str) -> Insert:
    stmt = pg_insert(CustomerLink).values(
        user_id=user_id, external_customer_id=external_customer_id
    )
    return stmt.on_conflict_do_update(
        index_elements=[CustomerLink.user_id],
        set_={"external_customer_id": stmt.excluded.external_customer_id},
    )


def build_claim_statement(worker_id: str, now: datetime) -> Update:
    """Single-statement claim of the oldest pending event.

    ``FOR UPDATE SKIP LOCKED`` in the subquery lets concurrent workers each
    take a different row instead of blocking on the same one.
    """
    oldest_pending = (
        select(WebhookEvent.id)
        .where(WebhookEvent.status == WebhookEventStatus.PENDING.value)
        .order_by(WebhookEvent.occurred_at, WebhookEvent.created_at)
        .limit(1)
        .with_for_update(skip_locked=True)
        .correlate(None)
        .scalar_subquery()
    )
    return (
        update(WebhookEvent)
        .where(WebhookEvent.id == oldest_pending)
        .values(
            status=WebhookEventStatus.PROCESSING.value,
            claimed_at=now,
            claimed_by=worker_id,
        )
        .returning(WebhookEvent)
        .execution_options(synchronize_session=False)
    )


class SqlSubscriptionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_user(self, user_id: str) -> SubscriptionRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Subscription).where(Subscription.user_id == user_id)
            )
            row = result.scalar_one_or_none()
            return SubscriptionRecord.model_validate(row) if row else None

    async def find_by_external_id(self, external_subscription_id: str) -> SubscriptionRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Subscription).where(
                    Subscription.external_subscription_id == external_subscription_id
                )
            )
            row = result.scalar_one_or_none()
            return SubscriptionRecord.model_validate(row) if row else None

    async def upsert_if_newer(self, state: SubscriptionState) -> SubscriptionRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(build_conditional_upsert(state))
            row = result.scalar_one_or_none()
            record = SubscriptionRecord.model_validate(row) if row else None
            await session.commit()
            return record


class SqlCustomerLinkStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_user_by_customer(self, external_customer_id: str) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CustomerLink.user_id).where(
                    CustomerLink.external_customer_id == external_customer_id
                )
            )
            return result.scalar_one_or_none()

    async def link_customer(self, user_id: str, external_customer_id: str) -> None:
        """Link a customer to a user. The newest link wins on both sides."""
        async with self._session_factory() as session:
            # external_customer_id is unique too; free it before the upsert
            await session.execute(build_release_customer(user_id, external_customer_id))
            await session.execute(build_link_upsert(user_id, external_customer_id))
            await session.commit()


class SqlWebhookEventStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert_pending(self, event: WebhookEventRecord) -> bool:
        values = event.model_dump(exclude={"created_at"})
        values["status"] = WebhookEventStatus.PENDING.value
        async with self._session_factory() as session:
            # Unique event_id absorbs duplicate deliveries without an IntegrityError
            stmt = (
                pg_insert(WebhookEvent)
                .values(**values)
                .on_conflict_do_nothing(index_elements=[WebhookEvent.event_id])
                .returning(WebhookEvent.id)
            )
            result = await session.execute(stmt)
            inserted = result.scalar_one_or_none() is not None
            await session.commit()
            return inserted

    async def claim_next(self, worker_id: str, now: datetime) -> WebhookEventRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(build_claim_statement(worker_id, now))
            row = result.scalar_one_or_none()
            record = WebhookEventRecord.model_validate(row) if row else None
            await session.commit()
            return record

    async def mark(
        self,
        id: str,
        status: WebhookEventStatus,
        now: datetime,
        fail_reason: str | None = None,
        user_id: str | None = None,
    ) -> None:
        values: dict[str, Any] = {
            "status": status.value,
            "processed_at": now,
            "fail_reason": fail_reason,
        }
        if user_id is not None:
            values["user_id"] = user_id
        async with self._session_factory() as session:
            await session.execute(
                update(WebhookEvent).where(WebhookEvent.id == id).values(**values)
            )
            await session.commit()

    async def get(self, event_id: str) -> WebhookEventRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebhookEvent).where(WebhookEvent.event_id == event_id)
            )
            row = result.scalar_one_or_none()
            return WebhookEventRecord.model_validate(row) if row else None
