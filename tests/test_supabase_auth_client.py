import httpx
import pytest

from app.clients.supabase_auth import AuthenticatedUser, SupabaseAuthClient, SupabaseAuthError


def _client(handler) -> SupabaseAuthClient:
    http_client = httpx.Client(
        base_url="https://proj.supabase.co", transport=httpx.MockTransport(handler)
    )
    return SupabaseAuthClient("https://proj.supabase.co", "service-key", http_client=http_client)


def test_get_user_returns_identity():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "user-1", "email": "member@example.com"})

    user = _client(handler).get_user("jwt-token")

    assert user == AuthenticatedUser(id="user-1", email="member@example.com")
    assert seen[0].url.path == "/auth/v1/user"
    assert seen[0].headers["apikey"] == "service-key"
    assert seen[0].headers["Authorization"] == "Bearer jwt-token"


@pytest.mark.parametrize("status_code", [401, 403, 404])
def test_rejected_token_returns_none(status_code):
    client = _client(lambda request: httpx.Response(status_code, json={"msg": "invalid JWT"}))

    assert client.get_user("expired") is None


def test_empty_token_short_circuits():
    def handler(request):
        raise AssertionError("no request expected")

    assert _client(handler).get_user("") is None


def test_server_error_raises():
    client = _client(lambda request: httpx.Response(500, text="upstream failure"))

    with pytest.raises(SupabaseAuthError):
        client.get_user("jwt-token")


def test_transport_error_raises():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(SupabaseAuthError):
        _client(handler).get_user("jwt-token")


def test_requires_configuration():
    with pytest.raises(ValueError):
        SupabaseAuthClient("", "service-key")
    with pytest.raises(ValueError):
        SupabaseAuthClient("https://proj.supabase.co", "")
