"""Apply verified Stripe events to profile and subscription state."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.clients.stripe_billing import BillingProvider, StripeClientError, StripeNotFoundError
from app.models.billing import SubscriptionRecord
from app.observability.metrics import MetricsReporter, metrics
from app.services.billing.errors import (
    BillingError,
    BillingProviderError,
    CustomerUnavailable,
    MalformedEvent,
    PersistenceError,
    ProfileNotFound,
)
from app.services.billing.events import EventKind, SUBSCRIPTION_EVENT_KINDS, WebhookEvent
from app.services.billing.formatting import format_subscription_data, reference_id
from app.services.billing.stores import BillingStore

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_METADATA_KEY = "supabase_user_id"


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class ReconcileOutcome:
    """Result of one reconcile pass; ``error`` is set only when ``status`` is FAILED."""

    status: OutcomeStatus
    event_id: str
    event_type: str
    profile_id: str | None = None
    record: SubscriptionRecord | None = None
    error: BillingError | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def reason(self) -> str | None:
        return str(self.error) if self.error else None


class SubscriptionReconciler:
    """Single pipeline that maps every handled event onto the store.

    Replays are harmless: the record is derived from the event and Stripe
    state alone, then upserted on ``user_id``. The subscription row is always
    written before the profile flag, so a failed run can be replayed.
    """

    def __init__(
        self,
        provider: BillingProvider,
        store: BillingStore,
        *,
        profile_metadata_key: str = DEFAULT_PROFILE_METADATA_KEY,
        metrics_reporter: MetricsReporter | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._profile_metadata_key = profile_metadata_key
        self._metrics = metrics_reporter or metrics

    def resolve_subscription_and_customer(
        self, event: WebhookEvent
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        obj = event.data_object
        if event.kind is EventKind.CHECKOUT_SESSION_COMPLETED:
            customer_id = reference_id(obj.get("customer"))
            subscription_id = reference_id(obj.get("subscription"))
            if not customer_id or not subscription_id:
                raise MalformedEvent("Missing customer or subscription ID in session")
            try:
                subscription = self._provider.retrieve_subscription(subscription_id)
            except StripeClientError as exc:
                raise BillingProviderError(
                    f"Failed to retrieve subscription {subscription_id}: {exc}"
                ) from exc
        elif event.kind in SUBSCRIPTION_EVENT_KINDS:
            customer_id = reference_id(obj.get("customer"))
            if not reference_id(obj) or not customer_id:
                raise MalformedEvent("Missing subscription or customer ID in event")
            subscription = obj
        else:
            raise MalformedEvent(f"Unhandled event type: {event.type}")
        return subscription, self._retrieve_customer(customer_id)

    def _retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        try:
            customer = self._provider.retrieve_customer(customer_id)
        except StripeNotFoundError as exc:
            raise CustomerUnavailable(f"Customer {customer_id} not found") from exc
        except StripeClientError as exc:
            raise BillingProviderError(
                f"Failed to retrieve customer {customer_id}: {exc}"
            ) from exc
        if not customer or customer.get("deleted"):
            raise CustomerUnavailable(f"Customer {customer_id} not found or deleted")
        return customer

    def resolve_profile_id(self, customer: Mapping[str, Any]) -> str:
        """Find the profile from customer metadata first, then by exact email."""
        metadata = customer.get("metadata")
        if isinstance(metadata, Mapping):
            candidate = metadata.get(self._profile_metadata_key)
            if candidate:
                profile = self._store.get_profile(str(candidate))
                if profile:
                    return profile.id
                logger.info(
                    "billing.reconcile.metadata_profile_missing",
                    extra={"customer_id": customer.get("id"), "profile_id": candidate},
                )
        email = customer.get("email")
        if email:
            profile = self._store.find_profile_by_email(email)
            if profile:
                return profile.id
        raise ProfileNotFound(f"No profile found for customer {customer.get('id')}")

    def format_subscription_data(
        self, subscription: Mapping[str, Any], customer: Mapping[str, Any], profile_id: str
    ) -> SubscriptionRecord:
        return format_subscription_data(subscription, customer, profile_id)

    def upsert_subscription(self, record: SubscriptionRecord) -> None:
        self._store.upsert_subscription(record)

    def apply_premium_status(self, profile_id: str, is_active: bool) -> None:
        self._store.set_premium(profile_id, is_active)

    def reconcile(self, event: WebhookEvent) -> ReconcileOutcome:
        """Run the pipeline for ``event``; errors are returned as FAILED outcomes, never raised."""
        started = time.perf_counter()
        context: dict[str, Any] = {"event_id": event.id, "type": event.type}
        if event.kind is None:
            logger.info("billing.reconcile.ignored", extra=context)
            self._metrics.increment("billing.webhook.ignored", tags={"type": event.type})
            return ReconcileOutcome(OutcomeStatus.IGNORED, event.id, event.type, context=context)

        profile_id: str | None = None
        try:
            subscription, customer = self.resolve_subscription_and_customer(event)
            context["customer_id"] = reference_id(customer)
            context["subscription_id"] = reference_id(subscription)
            profile_id = self.resolve_profile_id(customer)
            context["profile_id"] = profile_id
            record = self.format_subscription_data(subscription, customer, profile_id)
            self.upsert_subscription(record)
            self.apply_premium_status(profile_id, record.is_active)
        except BillingError as exc:
            return self._failed(event, exc, context, profile_id)

        logger.info(
            "billing.reconcile.applied",
            extra={**context, "status": record.status, "is_active": record.is_active},
        )
        self._metrics.increment("billing.webhook.applied", tags={"type": event.type})
        self._metrics.timing(
            "billing.webhook.reconcile_ms",
            (time.perf_counter() - started) * 1000,
            tags={"type": event.type},
        )
        return ReconcileOutcome(
            OutcomeStatus.APPLIED,
            event.id,
            event.type,
            profile_id=profile_id,
            record=record,
            context=context,
        )

    def _failed(
        self,
        event: WebhookEvent,
        exc: BillingError,
        context: dict[str, Any],
        profile_id: str | None,
    ) -> ReconcileOutcome:
        logger.warning(
            "billing.reconcile.failed",
            extra={**context, "code": exc.code, "error": str(exc)},
        )
        tags = {"type": event.type, "code": exc.code}
        self._metrics.increment("billing.webhook.failed", tags=tags)
        if isinstance(exc, (PersistenceError, ProfileNotFound)):
            # Needs manual follow-up; a replay alone will not succeed.
            self._metrics.alert(
                "billing.webhook.unreconciled",
                value=1.0,
                threshold=0.0,
                severity="warning",
                tags=tags,
            )
        return ReconcileOutcome(
            OutcomeStatus.FAILED,
            event.id,
            event.type,
            profile_id=profile_id,
            error=exc,
            context=context,
        )
