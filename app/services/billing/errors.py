"""Shared error classes for webhook reconciliation and checkout."""

from __future__ import annotations


class BillingError(RuntimeError):
    """Base exception raised by the billing services."""

    def __init__(self, message: str, code: str = "BILLING_ERROR") -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(BillingError):
    """Raised when a required secret or endpoint is not configured."""

    def __init__(self, message: str, code: str = "CONFIGURATION_ERROR") -> None:
        super().__init__(message, code)


class SignatureInvalid(BillingError):
    """Raised when a webhook signature cannot be verified against the raw body."""

    def __init__(self, message: str, code: str = "SIGNATURE_INVALID") -> None:
        super().__init__(message, code)


class MalformedEvent(BillingError):
    """Raised when an event lacks the references needed to reconcile it."""

    def __init__(self, message: str, code: str = "MALFORMED_EVENT") -> None:
        super().__init__(message, code)


class CustomerUnavailable(BillingError):
    """Raised when the Stripe customer is missing or deleted."""

    def __init__(self, message: str, code: str = "CUSTOMER_UNAVAILABLE") -> None:
        super().__init__(message, code)


class ProfileNotFound(BillingError):
    """Raised when no profile matches the customer's metadata or email."""

    def __init__(self, message: str, code: str = "PROFILE_NOT_FOUND") -> None:
        super().__init__(message, code)


class PersistenceError(BillingError):
    """Raised when the profile/subscription store fails to read or write."""

    def __init__(self, message: str, code: str = "PERSISTENCE_ERROR") -> None:
        super().__init__(message, code)


class BillingProviderError(BillingError):
    """Raised when Stripe fails while a webhook is being reconciled."""

    def __init__(self, message: str, code: str = "BILLING_PROVIDER_ERROR") -> None:
        super().__init__(message, code)


class CheckoutCreationError(BillingError):
    """Raised when Stripe rejects a customer or checkout session request."""

    def __init__(self, message: str, code: str = "CHECKOUT_CREATION_ERROR") -> None:
        super().__init__(message, code)


class AuthenticationRequired(BillingError):
    """Raised when a bearer token does not resolve to an identity."""

    def __init__(self, message: str = "Authentication required", code: str = "AUTHENTICATION_REQUIRED") -> None:
        super().__init__(message, code)


class InvalidPrice(BillingError):
    """Raised when a checkout is requested for an empty or unknown price."""

    def __init__(self, message: str, code: str = "INVALID_PRICE") -> None:
        super().__init__(message, code)
