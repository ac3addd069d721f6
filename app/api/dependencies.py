"""FastAPI dependency providers for the billing services.

Each external client is built once on first use. Tests replace these
providers through ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging

from fastapi import Depends

from app.clients.stripe_billing import BillingProvider, StripeBillingClient
from app.clients.supabase_auth import IdentityProvider, SupabaseAuthClient
from app.config import settings
from app.services.billing.checkout import CheckoutSessionInitiator
from app.services.billing.errors import ConfigurationError
from app.services.billing.reconciler import SubscriptionReconciler
from app.services.billing.stores import BillingStore, build_billing_store

logger = logging.getLogger(__name__)

_PROVIDER_INSTANCE: BillingProvider | None = None
_STORE_INSTANCE: BillingStore | None = None
_IDENTITY_INSTANCE: IdentityProvider | None = None


def get_webhook_secret() -> str | None:
    return settings.stripe_webhook_secret


def get_billing_provider() -> BillingProvider:
    """Singleton Stripe client; fails fast when the secret key is unset."""
    global _PROVIDER_INSTANCE  # noqa: PLW0603
    if _PROVIDER_INSTANCE is None:
        if not settings.stripe_secret_key:
            logger.error("billing.config.stripe_secret_missing")
            raise ConfigurationError("Missing required configuration: STRIPE_SECRET_KEY")
        _PROVIDER_INSTANCE = StripeBillingClient(settings.stripe_secret_key)
    return _PROVIDER_INSTANCE


def get_billing_store() -> BillingStore:
    global _STORE_INSTANCE  # noqa: PLW0603
    if _STORE_INSTANCE is None:
        _STORE_INSTANCE = build_billing_store(settings)
    return _STORE_INSTANCE


def get_identity_provider() -> IdentityProvider:
    global _IDENTITY_INSTANCE  # noqa: PLW0603
    if _IDENTITY_INSTANCE is None:
        if not settings.supabase_url or not settings.supabase_service_key:
            logger.error("billing.config.supabase_missing")
            raise ConfigurationError(
                "Missing required configuration: SUPABASE_URL, SUPABASE_SERVICE_KEY"
            )
        _IDENTITY_INSTANCE = SupabaseAuthClient(
            settings.supabase_url,
            settings.supabase_service_key,
            timeout=settings.supabase_timeout_seconds,
        )
    return _IDENTITY_INSTANCE


def get_reconciler(
    provider: BillingProvider = Depends(get_billing_provider),
    store: BillingStore = Depends(get_billing_store),
) -> SubscriptionReconciler:
    return SubscriptionReconciler(
        provider,
        store,
        profile_metadata_key=settings.stripe_profile_metadata_key,
    )


def get_checkout_initiator(
    provider: BillingProvider = Depends(get_billing_provider),
    store: BillingStore = Depends(get_billing_store),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> CheckoutSessionInitiator:
    return CheckoutSessionInitiator(
        provider,
        store,
        identity,
        allowed_price_ids=settings.allowed_price_ids,
        profile_metadata_key=settings.stripe_profile_metadata_key,
    )


def reset_billing_dependencies() -> None:
    """Drop cached clients so the next request rebuilds them from settings."""
    global _PROVIDER_INSTANCE, _STORE_INSTANCE, _IDENTITY_INSTANCE  # noqa: PLW0603
    _PROVIDER_INSTANCE = None
    _STORE_INSTANCE = None
    _IDENTITY_INSTANCE = None
