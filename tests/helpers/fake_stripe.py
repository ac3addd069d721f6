from __future__ import annotations

import copy
import hmac
import json
import time
from hashlib import sha256
from typing import Any

from app.clients.stripe_billing import StripeClientError, StripeNotFoundError

WEBHOOK_SECRET = "whsec_test_secret"  # noqa: S105 - test fixture value
CARD_PAYMENT_METHOD = {"id": "pm_123", "object": "payment_method", "type": "card"}


def sign_payload(secret: str, payload: str, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header using the v1 HMAC-SHA256 scheme."""
    ts = str(timestamp if timestamp is not None else int(time.time()))
    signature = hmac.new(
        secret.encode(),
        msg=f"{ts}.{payload}".encode(),
        digestmod=sha256,
    ).hexdigest()
    return f"t={ts},v1={signature}"


def subscription_object(
    subscription_id: str = "sub_123",
    *,
    customer: str = "cus_123",
    status: str = "active",
    unit_amount: int | None = 399,
    currency: str = "usd",
    interval: str = "month",
    interval_count: int = 1,
    period_start: int = 1700000000,
    period_end: int = 1702592000,
    **overrides: Any,
) -> dict[str, Any]:
    """Subscription as a webhook carries it: price expanded, payment method as a bare id."""
    payload: dict[str, Any] = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "currency": currency,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "billing_cycle_anchor": period_start,
        "cancel_at": None,
        "canceled_at": None,
        "cancel_at_period_end": False,
        "default_payment_method": "pm_123",
        "metadata": {},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_123",
                    "price": {
                        "id": "price_monthly",
                        "unit_amount": unit_amount,
                        "currency": currency,
                        "recurring": {"interval": interval, "interval_count": interval_count},
                    },
                }
            ],
        },
    }
    payload.update(overrides)
    return payload


def build_event(event_type: str, data_object: dict[str, Any], *, event_id: str = "evt_123") -> dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": 1700000000,
        "livemode": False,
        "data": {"object": data_object},
    }


def signed_request(event: dict[str, Any], secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict[str, str]]:
    payload = json.dumps(event)
    return payload.encode(), {
        "Stripe-Signature": sign_payload(secret, payload),
        "Content-Type": "application/json",
    }


class FakeBillingProvider:
    """In-memory stand-in for StripeBillingClient that records every call."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.customers: dict[str, dict[str, Any]] = {}
        self.sessions: list[dict[str, Any]] = []
        self.calls: list[tuple[str, Any]] = []
        self.failures: dict[str, StripeClientError] = {}

    def add_customer(
        self,
        customer_id: str = "cus_123",
        *,
        email: str | None = "member@example.com",
        metadata: dict[str, str] | None = None,
        deleted: bool = False,
    ) -> dict[str, Any]:
        customer: dict[str, Any] = {
            "id": customer_id,
            "object": "customer",
            "email": email,
            "metadata": metadata or {},
        }
        if deleted:
            customer = {"id": customer_id, "object": "customer", "deleted": True}
        self.customers[customer_id] = customer
        return customer

    def add_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        self.subscriptions[subscription["id"]] = subscription
        return subscription

    def fail(self, operation: str, error: StripeClientError) -> None:
        self.failures[operation] = error

    def _record(self, operation: str, value: Any) -> None:
        self.calls.append((operation, value))
        if operation in self.failures:
            raise self.failures[operation]

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        self._record("retrieve_subscription", subscription_id)
        if subscription_id not in self.subscriptions:
            raise StripeNotFoundError(f"No such subscription: {subscription_id}")
        subscription = copy.deepcopy(self.subscriptions[subscription_id])
        # Mirrors the client, which expands default_payment_method on retrieve.
        if isinstance(subscription.get("default_payment_method"), str):
            subscription["default_payment_method"] = {
                **CARD_PAYMENT_METHOD,
                "id": subscription["default_payment_method"],
            }
        return subscription

    def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        self._record("retrieve_customer", customer_id)
        if customer_id not in self.customers:
            raise StripeNotFoundError(f"No such customer: {customer_id}")
        return copy.deepcopy(self.customers[customer_id])

    def create_customer(self, *, email: str, metadata: dict[str, str]) -> dict[str, Any]:
        self._record("create_customer", {"email": email, "metadata": metadata})
        customer_id = f"cus_new_{len(self.customers) + 1}"
        return self.add_customer(customer_id, email=email, metadata=dict(metadata))

    def create_checkout_session(self, **params: Any) -> dict[str, Any]:
        self._record("create_checkout_session", params)
        session_id = f"cs_test_{len(self.sessions) + 1}"
        session = {"id": session_id, "url": f"https://checkout.stripe.test/c/pay/{session_id}", **params}
        self.sessions.append(session)
        return session

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]
