import asyncio

import pytest

from app.config import settings
from app.main import app, lifespan
from app.services.billing.errors import ConfigurationError
from app.services.billing.stores import InMemoryBillingStore


class _DownStore(InMemoryBillingStore):
    def ping(self) -> bool:
        return False


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_readiness_reports_store(client, billing):
    response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_readiness_fails_when_store_down(client, billing):
    from app.api import dependencies

    app.dependency_overrides[dependencies.get_billing_store] = _DownStore

    response = client.get("/health/ready")

    assert response.status_code == 503


def test_startup_refuses_missing_configuration(monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", None)

    async def _start():
        async with lifespan(app):
            pass

    with pytest.raises(ConfigurationError, match="STRIPE_WEBHOOK_SECRET"):
        asyncio.run(_start())
