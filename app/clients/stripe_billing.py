"""Client for the Stripe objects used by checkout and webhook reconciliation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import stripe

logger = logging.getLogger(__name__)

SUBSCRIPTION_EXPAND = ["default_payment_method", "items.data.price"]


class StripeClientError(RuntimeError):
    """Base error for Stripe client failures."""

    def __init__(self, message: str, code: str = "STRIPE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class StripeNotFoundError(StripeClientError):
    """Raised when Stripe reports the requested object does not exist."""

    def __init__(self, message: str = "Stripe object not found") -> None:
        super().__init__(message, code="STRIPE_NOT_FOUND")


class BillingProvider(Protocol):
    """Stripe operations needed by the billing services; returns plain dicts."""

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        ...

    def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        ...

    def create_customer(self, *, email: str, metadata: dict[str, str]) -> dict[str, Any]:
        ...

    def create_checkout_session(self, **params: Any) -> dict[str, Any]:
        ...


def to_plain(value: Any) -> Any:
    """Convert StripeObject trees into plain dicts and lists."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict) and not isinstance(value, dict):
        value = to_dict()
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_plain(item) for item in value]
    return value


class StripeBillingClient(BillingProvider):
    """Stripe SDK wrapper that passes its own API key on every request."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is required to create a StripeBillingClient.")
        self._api_key = api_key

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Fetch a subscription with its price and default payment method expanded."""
        return self._call(
            "subscription.retrieve",
            stripe.Subscription.retrieve,
            subscription_id,
            expand=SUBSCRIPTION_EXPAND,
        )

    def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        return self._call("customer.retrieve", stripe.Customer.retrieve, customer_id)

    def create_customer(self, *, email: str, metadata: dict[str, str]) -> dict[str, Any]:
        return self._call("customer.create", stripe.Customer.create, email=email, metadata=metadata)

    def create_checkout_session(self, **params: Any) -> dict[str, Any]:
        return self._call("checkout_session.create", stripe.checkout.Session.create, **params)

    def _call(self, operation: str, func: Any, *args: Any, **params: Any) -> dict[str, Any]:
        try:
            result = func(*args, api_key=self._api_key, **params)
        except stripe.InvalidRequestError as exc:
            logger.warning(
                "stripe.client.invalid_request",
                extra={"operation": operation, "code": exc.code, "error": str(exc)},
            )
            if exc.http_status == 404 or exc.code == "resource_missing":
                raise StripeNotFoundError(exc.user_message or str(exc)) from exc
            raise StripeClientError(exc.user_message or str(exc)) from exc
        except stripe.StripeError as exc:
            logger.warning(
                "stripe.client.failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise StripeClientError(exc.user_message or str(exc)) from exc
        return to_plain(result)
