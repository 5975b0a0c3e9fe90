"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from typing import Self

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class APISettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``API_`` (e.g. ``API_APP_BASE_URL=https://clubhouse.example``) or through
    a ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Async connection string: postgresql+asyncpg://... or sqlite+aiosqlite:///...
    database_url: str = "sqlite+aiosqlite:///.clubhouse/state.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Public origin of the web app; links in outbound email are built from it.
    app_base_url: str = "http://localhost:3000"

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:3000"]
    cors_allow_credentials: bool = True

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled."""
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    # Session tokens issued by /tenants/switch and verified by the auth middleware.
    session_secret: SecretStr = SecretStr("clubhouse-dev-secret-change-in-production")
    session_ttl_seconds: int = 3600

    # Lifetimes of single-use tokens.
    invite_ttl_hours: int = 24 * 7
    verification_ttl_hours: int = 24

    # Upper bound on any synchronous call to Stripe or the email API.
    external_call_timeout: float = 10.0

    # Stripe billing integration.
    stripe_secret_key: SecretStr = SecretStr("")
    stripe_webhook_secret: SecretStr = SecretStr("")
    stripe_price_id_paid: str = ""
    stripe_webhook_tolerance_seconds: int = 300

    # Transactional email (Resend-compatible HTTP API).  Without a key,
    # messages are logged and dropped.
    email_api_url: str = "https://api.resend.com/emails"
    email_api_key: SecretStr = SecretStr("")
    email_from: str = "Clubhouse <no-reply@clubhouse.local>"

    # Version label stamped on every parental consent record.
    consent_policy_version: str = "2024-01"

    # Rate limiting.
    rate_limit_enabled: bool = True
    rate_limit_requests_per_minute: int = 60
    rate_limit_burst_multiplier: float = 1.5
    rate_limit_window_seconds: float = 60.0
    rate_limit_admission_requests_per_window: int = 10

    # Structured JSON logging for log aggregation.
    structured_logging: bool = False


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()
