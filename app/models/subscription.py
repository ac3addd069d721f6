"""SQLModel mapping for Stripe subscription snapshots."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from app.models.billing import SubscriptionRecord, utcnow

JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SubscriptionRow(SQLModel, table=True):
    """Persisted subscription state, one row per profile."""

    __tablename__ = "stripe_subscriptions"
    __table_args__ = (
        sa.Index("ix_stripe_subscriptions_customer_id", "stripe_customer_id"),
        sa.Index("ix_stripe_subscriptions_subscription_id", "stripe_subscription_id"),
    )

    user_id: str = Field(
        sa_column=Column(
            String(length=255),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        )
    )
    stripe_customer_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    stripe_subscription_id: str = Field(
        default="", sa_column=Column(String(length=255), nullable=False, server_default="")
    )
    subscription_item_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    price_id: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    price_amount: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(12, 2), nullable=True)
    )
    currency: str | None = Field(default=None, sa_column=Column(String(length=16), nullable=True))
    interval: str | None = Field(default=None, sa_column=Column(String(length=16), nullable=True))
    interval_count: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    subscription_period_start: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    subscription_period_end: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    billing_cycle_anchor: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    cancel_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    canceled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    cancel_at_period_end: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    payment_method: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    status: str | None = Field(default=None, sa_column=Column(String(length=64), nullable=True))
    is_active: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    subscription_metadata: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON_BACKING_TYPE, nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    @staticmethod
    def column_values(record: SubscriptionRecord) -> dict[str, Any]:
        """Map a record onto table column names (``metadata`` keeps its SQL name)."""
        values = record.model_dump(exclude={"metadata"})
        values["metadata"] = dict(record.metadata)
        return values

    def to_record(self) -> SubscriptionRecord:
        return SubscriptionRecord(
            user_id=self.user_id,
            stripe_customer_id=self.stripe_customer_id,
            stripe_subscription_id=self.stripe_subscription_id,
            subscription_item_id=self.subscription_item_id,
            price_id=self.price_id,
            price_amount=self.price_amount,
            currency=self.currency,
            interval=self.interval,
            interval_count=self.interval_count,
            subscription_period_start=_as_utc(self.subscription_period_start),
            subscription_period_end=_as_utc(self.subscription_period_end),
            billing_cycle_anchor=_as_utc(self.billing_cycle_anchor),
            cancel_at=_as_utc(self.cancel_at),
            canceled_at=_as_utc(self.canceled_at),
            cancel_at_period_end=self.cancel_at_period_end,
            payment_method=self.payment_method,
            status=self.status,
            metadata=dict(self.subscription_metadata or {}),
            updated_at=_as_utc(self.updated_at) or utcnow(),
        )
