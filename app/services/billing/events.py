"""Stripe webhook verification and the typed event envelope."""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any

import stripe
from pydantic import BaseModel, Field, ValidationError

from app.services.billing.errors import ConfigurationError, MalformedEvent, SignatureInvalid

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300


class EventKind(str, Enum):
    """Stripe event types the reconciler acts on."""

    CHECKOUT_SESSION_COMPLETED = "checkout_session_completed"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"


STRIPE_EVENT_KINDS: dict[str, EventKind] = {
    "checkout.session.completed": EventKind.CHECKOUT_SESSION_COMPLETED,
    "customer.subscription.created": EventKind.SUBSCRIPTION_CREATED,
    "customer.subscription.updated": EventKind.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": EventKind.SUBSCRIPTION_DELETED,
}

SUBSCRIPTION_EVENT_KINDS = frozenset(
    {
        EventKind.SUBSCRIPTION_CREATED,
        EventKind.SUBSCRIPTION_UPDATED,
        EventKind.SUBSCRIPTION_DELETED,
    }
)


class WebhookEvent(BaseModel):
    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    created: int | None = None
    livemode: bool = False

    @property
    def kind(self) -> EventKind | None:
        """Return the handled kind, or None for event types that are accepted but ignored."""
        return STRIPE_EVENT_KINDS.get(self.type)

    @property
    def data_object(self) -> dict[str, Any]:
        obj = self.data.get("object")
        return obj if isinstance(obj, dict) else {}


def verify_event(
    raw_body: bytes,
    signature_header: str | None,
    secret: str | None,
    *,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
) -> WebhookEvent:
    """Verify a Stripe signature over the exact request bytes and decode the event.

    The body must be the unparsed request payload; re-serialized JSON will not
    match the signed bytes.
    """
    if not secret:
        logger.error("stripe.webhook.secret_missing")
        raise ConfigurationError("Webhook secret not configured")
    if not signature_header:
        logger.warning("stripe.webhook.signature_missing")
        raise SignatureInvalid("No stripe signature found")
    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError as exc:
        logger.warning("stripe.webhook.body_not_utf8", extra={"body_length": len(raw_body)})
        raise SignatureInvalid("Webhook body is not valid UTF-8") from exc
    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        logger.warning(
            "stripe.webhook.signature_invalid",
            extra={"body_length": len(raw_body), "error": str(exc)},
        )
        raise SignatureInvalid(f"Webhook signature verification failed: {exc}") from exc
    try:
        decoded = json.loads(payload)
        event = WebhookEvent.model_validate(decoded)
    except (ValueError, ValidationError) as exc:
        logger.warning("stripe.webhook.payload_invalid", extra={"body_length": len(raw_body)})
        raise MalformedEvent("Webhook payload is not a Stripe event") from exc
    logger.info("stripe.webhook.verified", extra={"event_id": event.id, "type": event.type})
    return event
