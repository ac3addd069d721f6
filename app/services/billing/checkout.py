"""Start a Stripe Checkout subscription session for an authenticated user."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from app.clients.stripe_billing import BillingProvider, StripeClientError
from app.clients.supabase_auth import AuthenticatedUser, IdentityProvider, SupabaseAuthError
from app.models.billing import Profile, SubscriptionRecord
from app.observability.metrics import MetricsReporter, metrics
from app.services.billing.errors import (
    AuthenticationRequired,
    CheckoutCreationError,
    InvalidPrice,
)
from app.services.billing.reconciler import DEFAULT_PROFILE_METADATA_KEY
from app.services.billing.stores import BillingStore

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def checkout_urls(origin_url: str) -> tuple[str, str]:
    """Return (success_url, cancel_url) for ``origin_url``."""
    origin = origin_url.rstrip("/")
    return f"{origin}/?session_id={CHECKOUT_SESSION_PLACEHOLDER}", f"{origin}/"


def authenticate_user(identity: IdentityProvider, user_token: str | None) -> AuthenticatedUser:
    """Resolve ``user_token`` to a user that has an email address."""
    if not user_token:
        raise AuthenticationRequired()
    try:
        user = identity.get_user(user_token)
    except SupabaseAuthError as exc:
        logger.warning("billing.identity.lookup_failed", extra={"error": str(exc)})
        raise AuthenticationRequired() from exc
    if user is None or not user.email:
        raise AuthenticationRequired()
    return user


class CheckoutSessionInitiator:
    def __init__(
        self,
        provider: BillingProvider,
        store: BillingStore,
        identity: IdentityProvider,
        *,
        allowed_price_ids: Iterable[str] = (),
        profile_metadata_key: str = DEFAULT_PROFILE_METADATA_KEY,
        metrics_reporter: MetricsReporter | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._identity = identity
        self._allowed_price_ids = frozenset(allowed_price_ids)
        self._profile_metadata_key = profile_metadata_key
        self._metrics = metrics_reporter or metrics

    def authenticate(self, user_token: str | None) -> AuthenticatedUser:
        return authenticate_user(self._identity, user_token)

    def ensure_profile(self, user: AuthenticatedUser) -> Profile:
        profile = self._store.get_profile(user.id)
        if profile:
            return profile
        logger.info("billing.checkout.profile_provisioned", extra={"profile_id": user.id})
        return self._store.create_profile(user.id, user.email or "")

    def ensure_customer(self, user: AuthenticatedUser) -> str:
        """Reuse the stored Stripe customer or create one and persist a placeholder row."""
        existing = self._store.get_subscription(user.id)
        if existing and existing.stripe_customer_id:
            return existing.stripe_customer_id
        try:
            customer = self._provider.create_customer(
                email=user.email or "",
                metadata={self._profile_metadata_key: user.id},
            )
        except StripeClientError as exc:
            raise CheckoutCreationError(str(exc)) from exc
        customer_id = customer.get("id")
        if not customer_id:
            raise CheckoutCreationError("Stripe returned a customer without an id")
        self._store.upsert_subscription(
            SubscriptionRecord(user_id=user.id, stripe_customer_id=customer_id)
        )
        logger.info(
            "billing.checkout.customer_created",
            extra={"profile_id": user.id, "customer_id": customer_id},
        )
        return customer_id

    def create_checkout_session(
        self, user_token: str | None, price_id: str | None, origin_url: str
    ) -> str:
        """Return the hosted Checkout URL for ``price_id``.

        Raises AuthenticationRequired, InvalidPrice, CheckoutCreationError or
        PersistenceError. Provider messages are carried on the exception for
        logging and must not be shown to the caller.
        """
        user = self.authenticate(user_token)
        price = (price_id or "").strip()
        if not price:
            raise InvalidPrice("priceId is required")
        if self._allowed_price_ids and price not in self._allowed_price_ids:
            logger.warning(
                "billing.checkout.price_rejected",
                extra={"profile_id": user.id, "price_id": price},
            )
            raise InvalidPrice(f"Unknown price {price}")

        self.ensure_profile(user)
        customer_id = self.ensure_customer(user)
        success_url, cancel_url = checkout_urls(origin_url)
        metadata = {self._profile_metadata_key: user.id}
        try:
            session = self._provider.create_checkout_session(
                customer=customer_id,
                line_items=[{"price": price, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                client_reference_id=user.id,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except StripeClientError as exc:
            self._metrics.increment("billing.checkout.failed", tags={"code": exc.code})
            raise CheckoutCreationError(str(exc)) from exc
        url = session.get("url")
        if not url:
            raise CheckoutCreationError("Stripe returned a checkout session without a url")
        logger.info(
            "billing.checkout.session_created",
            extra={"profile_id": user.id, "customer_id": customer_id, "price_id": price},
        )
        self._metrics.increment("billing.checkout.created")
        return url
