"""Client for resolving bearer tokens against Supabase Auth."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class SupabaseAuthError(RuntimeError):
    """Raised when Supabase Auth cannot be reached or answers unexpectedly."""

    def __init__(self, message: str, code: str = "SUPABASE_AUTH_ERROR") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: str | None


class IdentityProvider(Protocol):
    def get_user(self, access_token: str) -> AuthenticatedUser | None:
        ...


class SupabaseAuthClient(IdentityProvider):
    """Minimal wrapper around ``GET /auth/v1/user`` using the service key as ``apikey``."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("SUPABASE_URL is required to create a SupabaseAuthClient.")
        if not service_key:
            raise ValueError("SUPABASE_SERVICE_KEY is required to create a SupabaseAuthClient.")
        self._service_key = service_key
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()

    def get_user(self, access_token: str) -> AuthenticatedUser | None:
        """Return the user behind ``access_token``, or None when Supabase rejects it."""
        if not access_token:
            return None
        headers = {"apikey": self._service_key, "Authorization": f"Bearer {access_token}"}
        try:
            response = self._http.get("/auth/v1/user", headers=headers)
        except httpx.HTTPError as exc:
            raise SupabaseAuthError(f"HTTP error calling Supabase Auth: {exc}") from exc
        if response.status_code in (401, 403, 404):
            logger.info("supabase.auth.rejected", extra={"status": response.status_code})
            return None
        if response.status_code >= 400:
            raise SupabaseAuthError(
                f"Supabase Auth request failed: {response.status_code} - {response.text[:200]}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise SupabaseAuthError("Failed to decode Supabase Auth response JSON.") from exc
        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not user_id:
            return None
        return AuthenticatedUser(id=str(user_id), email=payload.get("email") or None)

    def __enter__(self) -> SupabaseAuthClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
