import pytest

from app.clients.stripe_billing import StripeClientError
from app.clients.supabase_auth import AuthenticatedUser
from app.models.billing import SubscriptionRecord
from app.services.billing.checkout import CheckoutSessionInitiator, checkout_urls
from app.services.billing.errors import AuthenticationRequired, CheckoutCreationError, InvalidPrice
from app.services.billing.stores import InMemoryBillingStore
from tests.helpers.fake_identity import FakeIdentityProvider
from tests.helpers.fake_stripe import FakeBillingProvider
from tests.helpers.metrics_stub import StubMetrics

TOKEN = "user-jwt"  # noqa: S105 - test fixture value
USER = AuthenticatedUser(id="user-1", email="member@example.com")
ORIGIN = "https://app.example.com"


@pytest.fixture
def provider():
    return FakeBillingProvider()


@pytest.fixture
def store():
    return InMemoryBillingStore()


@pytest.fixture
def identity():
    return FakeIdentityProvider({TOKEN: USER})


def _initiator(provider, store, identity, **kwargs):
    return CheckoutSessionInitiator(provider, store, identity, metrics_reporter=StubMetrics(), **kwargs)


def test_creates_customer_profile_and_session(provider, store, identity):
    url = _initiator(provider, store, identity).create_checkout_session(TOKEN, "price_monthly", ORIGIN)

    assert url == "https://checkout.stripe.test/c/pay/cs_test_1"
    assert store.get_profile("user-1").email == "member@example.com"
    placeholder = store.get_subscription("user-1")
    assert placeholder.stripe_customer_id == "cus_new_1"
    assert placeholder.stripe_subscription_id == ""
    assert placeholder.is_active is False
    customer_call = provider.calls[0]
    assert customer_call == (
        "create_customer",
        {"email": "member@example.com", "metadata": {"supabase_user_id": "user-1"}},
    )


def test_session_parameters(provider, store, identity):
    _initiator(provider, store, identity).create_checkout_session(TOKEN, "price_monthly", ORIGIN)

    session = provider.sessions[0]
    assert session["customer"] == "cus_new_1"
    assert session["mode"] == "subscription"
    assert session["line_items"] == [{"price": "price_monthly", "quantity": 1}]
    assert session["success_url"] == f"{ORIGIN}/?session_id={{CHECKOUT_SESSION_ID}}"
    assert session["cancel_url"] == f"{ORIGIN}/"
    assert session["client_reference_id"] == "user-1"
    assert session["metadata"] == {"supabase_user_id": "user-1"}
    assert session["subscription_data"] == {"metadata": {"supabase_user_id": "user-1"}}


def test_reuses_existing_customer(provider, store, identity):
    store.create_profile("user-1", "member@example.com")
    store.upsert_subscription(
        SubscriptionRecord(user_id="user-1", stripe_customer_id="cus_existing", status="canceled")
    )

    _initiator(provider, store, identity).create_checkout_session(TOKEN, "price_monthly", ORIGIN)

    assert provider.operations() == ["create_checkout_session"]
    assert provider.sessions[0]["customer"] == "cus_existing"
    assert store.get_subscription("user-1").status == "canceled"


def test_invalid_token_requires_authentication(provider, store, identity):
    with pytest.raises(AuthenticationRequired):
        _initiator(provider, store, identity).create_checkout_session("bogus", "price_monthly", ORIGIN)
    with pytest.raises(AuthenticationRequired):
        _initiator(provider, store, identity).create_checkout_session(None, "price_monthly", ORIGIN)
    assert provider.calls == []


def test_user_without_email_requires_authentication(provider, store):
    identity = FakeIdentityProvider({TOKEN: AuthenticatedUser(id="user-2", email=None)})

    with pytest.raises(AuthenticationRequired):
        _initiator(provider, store, identity).create_checkout_session(TOKEN, "price_monthly", ORIGIN)


def test_identity_outage_requires_authentication(provider, store, identity):
    identity.unavailable = True

    with pytest.raises(AuthenticationRequired):
        _initiator(provider, store, identity).create_checkout_session(TOKEN, "price_monthly", ORIGIN)


def test_price_allowlist(provider, store, identity):
    initiator = _initiator(provider, store, identity, allowed_price_ids={"price_monthly"})

    with pytest.raises(InvalidPrice):
        initiator.create_checkout_session(TOKEN, "price_unknown", ORIGIN)
    with pytest.raises(InvalidPrice):
        initiator.create_checkout_session(TOKEN, "  ", ORIGIN)
    assert provider.calls == []
    assert initiator.create_checkout_session(TOKEN, "price_monthly", ORIGIN)


def test_customer_creation_failure(provider, store, identity):
    provider.fail("create_customer", StripeClientError("card network unreachable"))

    with pytest.raises(CheckoutCreationError, match="card network unreachable"):
        _initiator(provider, store, identity).create_checkout_session(TOKEN, "price_monthly", ORIGIN)
    assert store.get_subscription("user-1") is None


def test_session_creation_failure(provider, store, identity):
    provider.fail("create_checkout_session", StripeClientError("No such price: 'price_monthly'"))

    with pytest.raises(CheckoutCreationError):
        _initiator(provider, store, identity).create_checkout_session(TOKEN, "price_monthly", ORIGIN)
    # The placeholder customer row survives so a retry reuses the customer.
    assert store.get_subscription("user-1").stripe_customer_id == "cus_new_1"


def test_checkout_urls_strip_trailing_slash():
    assert checkout_urls("https://app.example.com/") == (
        "https://app.example.com/?session_id={CHECKOUT_SESSION_ID}",
        "https://app.example.com/",
    )
