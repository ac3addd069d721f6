"""Stripe webhook, checkout, and subscription status endpoints."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from app.api.dependencies import (
    get_billing_store,
    get_checkout_initiator,
    get_identity_provider,
    get_reconciler,
    get_webhook_secret,
)
from app.clients.supabase_auth import IdentityProvider
from app.config import settings
from app.models.billing import Profile, SubscriptionRecord
from app.observability.metrics import metrics
from app.services.billing.checkout import CheckoutSessionInitiator, authenticate_user
from app.services.billing.errors import (
    AuthenticationRequired,
    BillingError,
    ConfigurationError,
    InvalidPrice,
)
from app.services.billing.events import verify_event
from app.services.billing.reconciler import OutcomeStatus, SubscriptionReconciler
from app.services.billing.stores import BillingStore

logger = logging.getLogger(__name__)
router = APIRouter()

CHECKOUT_FAILED_MESSAGE = "Failed to start checkout, please retry."
NOT_CONFIGURED_MESSAGE = "Billing is not configured"
INVALID_BODY_MESSAGE = "Invalid request body"


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: str | None = Field(default=None, alias="priceId")


class CheckoutResponse(BaseModel):
    url: str


class SubscriptionStatusResponse(BaseModel):
    user_id: str
    is_premium: bool
    status: str | None
    is_active: bool
    price_id: str | None = None
    price_amount: Decimal | None = None
    currency: str | None = None
    interval: str | None = None
    subscription_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    updated_at: datetime


def _json(content: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=settings.cors_headers)


def _error(message: str, status_code: int) -> JSONResponse:
    return _json({"error": message}, status_code=status_code)


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


@router.options("/stripe/webhook")
@router.options("/create-checkout-session")
async def billing_preflight() -> Response:
    """CORS preflight: headers only, no body."""
    return Response(status_code=200, headers=settings.cors_headers)


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    webhook_secret: str | None = Depends(get_webhook_secret),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> JSONResponse:
    """Verify a Stripe event against the raw body and reconcile it."""
    body = await request.body()
    try:
        event = verify_event(body, stripe_signature, webhook_secret)
    except ConfigurationError as exc:
        metrics.alert(
            "billing.webhook.misconfigured", value=1.0, threshold=0.0, severity="critical"
        )
        return _error(str(exc), 500)
    except BillingError as exc:
        metrics.increment(
            "billing.webhook.rejected",
            tags={"code": exc.code, "has_signature": bool(stripe_signature)},
        )
        return _error(str(exc), 400)

    outcome = await asyncio.to_thread(reconciler.reconcile, event)
    if outcome.status is OutcomeStatus.FAILED:
        return _error(outcome.reason or "Webhook processing failed", 400)
    return _json({"received": True})


@router.post("/create-checkout-session", response_model=CheckoutResponse)
async def create_checkout_session(
    payload: CheckoutRequest,
    authorization: str | None = Header(default=None),
    origin: str | None = Header(default=None),
    initiator: CheckoutSessionInitiator = Depends(get_checkout_initiator),
) -> JSONResponse:
    """Create a Stripe Checkout session; provider detail stays in the logs."""
    origin_url = origin or settings.checkout_default_origin
    try:
        url = await asyncio.to_thread(
            initiator.create_checkout_session,
            _bearer_token(authorization),
            payload.price_id,
            origin_url,
        )
    except AuthenticationRequired as exc:
        return _error(str(exc), 401)
    except InvalidPrice as exc:
        return _error(str(exc), 400)
    except BillingError as exc:
        logger.error(
            "billing.checkout.failed",
            extra={"code": exc.code, "error": str(exc), "origin": origin_url},
        )
        return _error(CHECKOUT_FAILED_MESSAGE, 502)
    return _json(CheckoutResponse(url=url).model_dump())


def _load_subscription(
    identity: IdentityProvider, store: BillingStore, user_token: str | None
) -> tuple[Profile | None, SubscriptionRecord | None]:
    user = authenticate_user(identity, user_token)
    return store.get_profile(user.id), store.get_subscription(user.id)


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription(
    authorization: str | None = Header(default=None),
    identity: IdentityProvider = Depends(get_identity_provider),
    store: BillingStore = Depends(get_billing_store),
) -> JSONResponse:
    """Return the caller's stored subscription snapshot and premium flag."""
    try:
        profile, record = await asyncio.to_thread(
            _load_subscription, identity, store, _bearer_token(authorization)
        )
    except AuthenticationRequired as exc:
        return _error(str(exc), 401)
    except BillingError as exc:
        logger.error("billing.subscription.lookup_failed", extra={"code": exc.code, "error": str(exc)})
        return _error("Failed to load subscription", 502)
    if record is None:
        return _error("No subscription found", 404)
    response = SubscriptionStatusResponse(
        user_id=record.user_id,
        is_premium=bool(profile and profile.is_premium),
        status=record.status,
        is_active=record.is_active,
        price_id=record.price_id,
        price_amount=record.price_amount,
        currency=record.currency,
        interval=record.interval,
        subscription_period_end=record.subscription_period_end,
        cancel_at_period_end=record.cancel_at_period_end,
        updated_at=record.updated_at,
    )
    return _json(response.model_dump(mode="json"))


def configuration_error_response(exc: ConfigurationError) -> JSONResponse:
    """Render a ConfigurationError raised while building dependencies."""
    logger.error("billing.config.invalid", extra={"error": str(exc)})
    return _error(NOT_CONFIGURED_MESSAGE, 500)


def invalid_request_response(exc: RequestValidationError) -> JSONResponse:
    """Render body or header validation failures in the ``{"error": ...}`` shape."""
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    logger.info("billing.request.invalid", extra={"fields": fields})
    return _error(INVALID_BODY_MESSAGE, 400)
