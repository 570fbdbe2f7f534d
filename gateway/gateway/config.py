"""Gateway configuration loaded from environment variables."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlatformEnv(str, Enum):
    """Deployment environment label."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class GatewaySettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``GATEWAY_`` (e.g. ``GATEWAY_DEBUG=true``) or through a ``.env`` file in
    the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    debug: bool = False

    # PostgreSQL (asyncpg) in production; SQLite (aiosqlite) for local runs.
    database_url: str = "sqlite+aiosqlite:///.storefront/metering.db"
    db_pool_size: int = Field(default=10, ge=1)
    db_max_overflow: int = Field(default=20, ge=0)

    platform_env: PlatformEnv = PlatformEnv.DEV

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:3000"]

    # Whether CORS responses include credentials (cookies, auth headers).
    cors_allow_credentials: bool = True

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled.

        Browsers silently reject ``Access-Control-Allow-Origin: *`` when
        ``Access-Control-Allow-Credentials: true`` is present, so fail fast
        at startup instead.
        """
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    # Structured JSON logging for SIEM integration.
    structured_logging: bool = False

    # Bearer token validation.  Empty means "generate a per-process secret"
    # and is only accepted in dev.
    jwt_secret: SecretStr = SecretStr("")
    jwt_algorithm: str = "HS256"

    # Usage metering.
    cost_per_event: Decimal = Decimal("0.005")
    default_free_quota: int = Field(default=100, ge=0)
    usage_history_max_limit: int = Field(default=120, ge=1)

    # Largest webhook body accepted; bigger deliveries get 413 before any
    # database work.
    webhook_max_body_bytes: int = Field(default=10 * 1024 * 1024, ge=1)


def load_gateway_settings() -> GatewaySettings:
    """Construct settings from the environment / ``.env`` file."""
    return GatewaySettings()
