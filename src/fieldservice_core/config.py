"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class RateLimitBackend(StrEnum):
    MEMORY = "memory"
    REDIS = "redis"


DEFAULT_PUBLIC_PATH_PREFIXES: list[str] = [
    "/api/auth",
    "/api/login",
    "/api/logout",
    "/api/invitations/accept",
    "/api/health",
    "/api/csrf-token",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The public path prefixes are configuration, not data: review them
    whenever an unauthenticated route is added. The same table is used
    by every step of the authorization chain.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"

    # --- Authorization chain ---
    api_prefix: str = "/api"
    public_path_prefixes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PUBLIC_PATH_PREFIXES)
    )
    trust_forwarded_for: bool = False

    # --- Rate limiting ---
    rate_limit_max_requests: int = Field(default=1200, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)
    rate_limit_scope: str = "api"
    rate_limit_cleanup_interval_seconds: int = Field(default=300, ge=1)
    rate_limit_backend: RateLimitBackend = RateLimitBackend.MEMORY

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"

    # --- Session ---
    session_secret: SecretStr | None = None
    session_cookie: str = "session"
    session_max_age_seconds: int = 30 * 24 * 60 * 60
    session_https_only: bool = False

    # --- Status graphs ---
    # None selects the graphs packaged with fieldservice_core.transitions.
    status_graph_path: Path | None = None

    @field_validator("api_prefix")
    @classmethod
    def _normalize_api_prefix(cls, value: str) -> str:
        value = "/" + value.strip("/")
        return value

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from fieldservice_core.config import get_settings
        settings = get_settings()
    """
    return Settings()


settings = get_settings()
