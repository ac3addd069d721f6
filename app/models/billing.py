"""Domain models shared by the webhook reconciler, checkout flow, and stores."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

ACTIVE_STATUSES = frozenset({"active", "trialing"})

STRIPE_SUBSCRIPTION_STATUSES = (
    "incomplete",
    "incomplete_expired",
    "trialing",
    "active",
    "past_due",
    "canceled",
    "unpaid",
    "paused",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_subscription_active(status: str | None) -> bool:
    """Premium access is granted only while Stripe reports active or trialing."""
    return status in ACTIVE_STATUSES


class Profile(BaseModel):
    """Application user profile keyed by the identity provider's user id."""

    id: str
    email: str | None = None
    is_premium: bool = False
    updated_at: datetime | None = None


class SubscriptionRecord(BaseModel):
    """Denormalized snapshot of one profile's Stripe subscription."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    stripe_customer_id: str
    stripe_subscription_id: str = ""
    subscription_item_id: str | None = None
    price_id: str | None = None
    price_amount: Decimal | None = None
    currency: str | None = None
    interval: str | None = None
    interval_count: int | None = None
    subscription_period_start: datetime | None = None
    subscription_period_end: datetime | None = None
    billing_cycle_anchor: datetime | None = None
    cancel_at: datetime | None = None
    canceled_at: datetime | None = None
    cancel_at_period_end: bool = False
    payment_method: str | None = None
    status: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("metadata", mode="before")
    @classmethod
    def _null_metadata(cls, value: Any) -> Any:
        # Placeholder rows written before checkout completes may carry NULL metadata.
        return {} if value is None else value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_active(self) -> bool:
        return is_subscription_active(self.status)

    def content_fields(self) -> dict[str, Any]:
        """Return every persisted field except the wall-clock ``updated_at``."""
        return self.model_dump(exclude={"updated_at"})
