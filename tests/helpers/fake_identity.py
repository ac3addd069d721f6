from __future__ import annotations

from app.clients.supabase_auth import AuthenticatedUser, SupabaseAuthError


class FakeIdentityProvider:
    """Maps bearer tokens to users; unknown tokens resolve to None."""

    def __init__(self, users: dict[str, AuthenticatedUser] | None = None) -> None:
        self.users = dict(users or {})
        self.unavailable = False
        self.tokens_seen: list[str] = []

    def get_user(self, access_token: str) -> AuthenticatedUser | None:
        self.tokens_seen.append(access_token)
        if self.unavailable:
            raise SupabaseAuthError("Supabase Auth unavailable")
        return self.users.get(access_token)


USER_TOKEN = "user-jwt"  # noqa: S105 - test fixture value
USER = AuthenticatedUser(id="user-1", email="member@example.com")
