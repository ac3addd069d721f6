from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from app.services.billing.errors import ConfigurationError

REQUIRED_BILLING_SETTINGS = (
    "stripe_secret_key",
    "stripe_webhook_secret",
    "supabase_url",
    "supabase_service_key",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Socialcraft Billing"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database (optional direct Postgres access; Supabase REST is used otherwise)
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # Identity / profile store
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    supabase_timeout_seconds: float = 10.0

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_price_ids: list[str] = []
    stripe_profile_metadata_key: str = "supabase_user_id"
    checkout_default_origin: str = "http://localhost:5173"

    # Security
    cors_origins: list[str] = []
    cors_allow_origin: str = "*"
    cors_allow_headers: str = "authorization, x-client-info, apikey, content-type"
    allowed_hosts: list[str] = ["*"]

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "billing"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125
    metrics_schema_version: str = "billing.v1"

    @property
    def allowed_price_ids(self) -> set[str]:
        """Return the configured checkout price allowlist; empty means any price."""
        return {price.strip() for price in self.stripe_price_ids if price and price.strip()}

    @property
    def cors_headers(self) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self.cors_allow_origin,
            "Access-Control-Allow-Headers": self.cors_allow_headers,
        }

    def missing_required(self) -> list[str]:
        return [name for name in REQUIRED_BILLING_SETTINGS if not getattr(self, name)]

    def validate_required(self) -> None:
        """Raise ConfigurationError naming every required billing setting that is unset."""
        missing = self.missing_required()
        if missing:
            names = ", ".join(name.upper() for name in missing)
            raise ConfigurationError(f"Missing required configuration: {names}")

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
