"""Pure mapping from Stripe subscription payloads to SubscriptionRecord."""
# ruff: noqa: UP017

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from app.models.billing import SubscriptionRecord, utcnow

MINOR_UNITS_PER_MAJOR = Decimal(100)


def epoch_to_utc(value: Any) -> datetime | None:
    """Convert Stripe epoch seconds into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def minor_to_decimal(amount: Any) -> Decimal | None:
    """Convert minor units (cents) into decimal currency units."""
    if amount is None or isinstance(amount, bool):
        return None
    try:
        return Decimal(int(amount)) / MINOR_UNITS_PER_MAJOR
    except (TypeError, ValueError):
        return None


def reference_id(value: Any) -> str | None:
    """Return the id of a Stripe reference that may be a bare id or an expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        found = value.get("id")
        return found if isinstance(found, str) and found else None
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def first_subscription_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = _mapping(subscription.get("items")).get("data") or []
    if isinstance(items, list) and items:
        return _mapping(items[0])
    return {}


def payment_method_kind(subscription: Mapping[str, Any]) -> str | None:
    """Return the default payment method type when Stripe expanded it; bare ids yield None."""
    method = subscription.get("default_payment_method")
    if not isinstance(method, Mapping):
        return None
    kind = method.get("type")
    return kind if isinstance(kind, str) and kind else None


def format_subscription_data(
    subscription: Mapping[str, Any],
    customer: Mapping[str, Any],
    profile_id: str,
    *,
    now: datetime | None = None,
) -> SubscriptionRecord:
    """Build the canonical record for ``profile_id`` from Stripe objects.

    Only ``updated_at`` depends on the wall clock; pass ``now`` to pin it.
    Period boundaries are read from the subscription and fall back to the
    first item, where newer Stripe API versions report them.
    """
    item = first_subscription_item(subscription)
    price = _mapping(item.get("price"))
    recurring = _mapping(price.get("recurring"))
    period_start = subscription.get("current_period_start") or item.get("current_period_start")
    period_end = subscription.get("current_period_end") or item.get("current_period_end")
    interval_count = recurring.get("interval_count")
    metadata = subscription.get("metadata")
    return SubscriptionRecord(
        user_id=profile_id,
        stripe_customer_id=reference_id(customer) or reference_id(subscription.get("customer")) or "",
        stripe_subscription_id=reference_id(subscription) or "",
        subscription_item_id=reference_id(item),
        price_id=reference_id(price),
        price_amount=minor_to_decimal(price.get("unit_amount")),
        currency=price.get("currency") or subscription.get("currency"),
        interval=recurring.get("interval") or None,
        interval_count=int(interval_count) if interval_count else None,
        subscription_period_start=epoch_to_utc(period_start),
        subscription_period_end=epoch_to_utc(period_end),
        billing_cycle_anchor=epoch_to_utc(subscription.get("billing_cycle_anchor")),
        cancel_at=epoch_to_utc(subscription.get("cancel_at")),
        canceled_at=epoch_to_utc(subscription.get("canceled_at")),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end", False)),
        payment_method=payment_method_kind(subscription),
        status=subscription.get("status"),
        metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        updated_at=now or utcnow(),
    )
