from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.api.dependencies import get_billing_store
from app.config import settings
from app.services.billing.stores import BillingStore

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check(store: BillingStore = Depends(get_billing_store)):
    """Readiness check endpoint that includes profile store connectivity."""
    if not store.ping():
        logger.warning("health.store_unavailable")
        raise HTTPException(status_code=503, detail="Profile store is not available")

    return {
        "status": "ready",
        "version": settings.app_version,
        "environment": settings.environment,
        "store": "database" if settings.database_url else "supabase",
    }
