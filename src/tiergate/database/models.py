"""SQLAlchemy models: Subscription, WebhookEvent, CustomerLink."""

from datetime import datetime
from typing import Any, ClassVar
from uuid import uuid4

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map: ClassVar[dict[type, type]] = {
        dict[str, Any]: JSONB,
    }


class Subscription(Base):
    """Local cache of a user's subscription at the billing provider.

    One row per user. Rows are only ever overwritten by a webhook event that
    occurred after ``last_event_at``; they are never deleted.
    """

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_generate_uuid)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    external_subscription_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    external_customer_id: Mapped[str | None] = mapped_column(String(255), index=True)
    plan_id: Mapped[str] = mapped_column(String(50), nullable=False)
    price_id: Mapped[str | None] = mapped_column(String(255))

    # trialing, active, paused, past_due, canceled
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    grace_period_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Watermark: occurred_at of the newest applied event
    last_event_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class WebhookEvent(Base):
    """Append-only log of received billing webhooks, one row per provider event id."""

    __tablename__ = "webhook_events"
    __table_args__ = (Index("ix_webhook_events_status_occurred_at", "status", "occurred_at"),)

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_generate_uuid)
    provider: Mapped[str] = mapped_column(String(50), default="paddle", nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    # pending, processing, processed, failed, ignored
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    claimed_by: Mapped[str | None] = mapped_column(String(255))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    fail_reason: Mapped[str | None] = mapped_column(Text)

    # Denormalized for lookups and debugging
    external_customer_id: Mapped[str | None] = mapped_column(String(255), index=True)
    external_subscription_id: Mapped[str | None] = mapped_column(String(255), index=True)
    user_id: Mapped[str | None] = mapped_column(String(255), index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class CustomerLink(Base):
    """Maps a billing provider customer to a local user."""

    __tablename__ = "customer_links"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_generate_uuid)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    external_customer_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
