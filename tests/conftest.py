import asyncio
from dataclasses import dataclass

import httpx
import pytest
from fastapi.testclient import TestClient

from app.api import dependencies
from app.main import app
from app.services.billing.stores import InMemoryBillingStore
from tests.helpers.fake_identity import USER, USER_TOKEN, FakeIdentityProvider
from tests.helpers.fake_stripe import WEBHOOK_SECRET, FakeBillingProvider


class _SyncASGIClient:
    """Minimal synchronous wrapper around httpx.AsyncClient for ASGI apps."""

    def __init__(self, app):
        transport = httpx.ASGITransport(app=app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._client.request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def options(self, url: str, **kwargs):
        return self.request("OPTIONS", url, **kwargs)

    def close(self) -> None:
        asyncio.run(self._client.aclose())


@pytest.fixture
def client():
    """Create test client compatible with older/newer httpx releases."""
    try:
        test_client = TestClient(app)
        yield test_client
    except TypeError:
        fallback_client = _SyncASGIClient(app)
        try:
            yield fallback_client
        finally:
            fallback_client.close()


@dataclass
class BillingFakes:
    provider: FakeBillingProvider
    store: InMemoryBillingStore
    identity: FakeIdentityProvider


@pytest.fixture
def billing():
    """Swap every external billing collaborator for an in-memory fake."""
    fakes = BillingFakes(
        provider=FakeBillingProvider(),
        store=InMemoryBillingStore(),
        identity=FakeIdentityProvider({USER_TOKEN: USER}),
    )
    app.dependency_overrides[dependencies.get_billing_provider] = lambda: fakes.provider
    app.dependency_overrides[dependencies.get_billing_store] = lambda: fakes.store
    app.dependency_overrides[dependencies.get_identity_provider] = lambda: fakes.identity
    app.dependency_overrides[dependencies.get_webhook_secret] = lambda: WEBHOOK_SECRET
    yield fakes
    app.dependency_overrides.clear()
    dependencies.reset_billing_dependencies()
