"""Library configuration using Pydantic Settings.

Configuration is loaded from environment variables prefixed with
``CRUDKIT_``. Optionally, point ``CRUDKIT_ENV_FILE`` at a local env file
for development.

Named data sources are supplied as a JSON object, e.g.::

    CRUDKIT_DATA_SOURCES='{"reporting": "postgresql://ro@replica/app"}'
"""

import os
from enum import Enum

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_SOURCE = "default"


class AppEnvironment(str, Enum):
    """Application environment values."""

    LOCAL = "local"
    TEST = "test"
    PROD = "prod"


class Settings(BaseSettings):
    """
    crudkit settings with type validation.

    Configuration is loaded from environment variables, with support
    for .env files in development.
    """

    model_config = SettingsConfigDict(
        env_file=os.getenv("CRUDKIT_ENV_FILE") or None, env_prefix="CRUDKIT_", extra="ignore"
    )

    app_env: AppEnvironment = AppEnvironment.LOCAL

    # Logging / observability
    log_level: str = "INFO"
    structured_logs: bool = True
    metrics_enabled: bool = True

    # Default data source
    database_url: str = "sqlite+aiosqlite:///:memory:"
    echo_sql: bool = False

    # Additional named data sources: name -> URL
    data_sources: dict[str, str] = {}

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | AppEnvironment) -> AppEnvironment:
        """Validate and parse app_env to AppEnvironment enum."""
        if isinstance(v, AppEnvironment):
            return v
        try:
            return AppEnvironment(v.lower())
        except ValueError:
            raise ValueError(
                f"app_env must be one of {[e.value for e in AppEnvironment]}, got '{v}'"
            ) from None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"log_level must be a standard logging level, got '{v}'")
        return level

    @field_validator("data_sources")
    @classmethod
    def validate_data_sources(cls, v: dict[str, str]) -> dict[str, str]:
        if DEFAULT_DATA_SOURCE in v:
            raise ValueError(
                f"'{DEFAULT_DATA_SOURCE}' is reserved; configure it through CRUDKIT_DATABASE_URL"
            )
        return v

    @property
    def async_url(self) -> str:
        """Default database URL rewritten for an async driver."""
        return to_async_url(self.database_url)

    @property
    def data_source_urls(self) -> dict[str, str]:
        """All configured data sources, default included, with async URLs."""
        urls = {DEFAULT_DATA_SOURCE: self.async_url}
        for name, url in self.data_sources.items():
            urls[name] = to_async_url(url)
        return urls

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """
        Validate production-specific settings.

        These checks prevent test-only configurations from being deployed to production.
        """
        if self.app_env == AppEnvironment.PROD:
            if not self.database_url:
                raise ValueError("CRUDKIT_DATABASE_URL must be set in production")
            for url in (self.database_url, *self.data_sources.values()):
                if url.startswith("sqlite"):
                    raise ValueError("SQLite data sources are not allowed in production")

        return self


def to_async_url(url: str) -> str:
    """Pick the async driver for bare PostgreSQL/SQLite URLs; leave explicit drivers alone."""
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://") :]
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://") :]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://") :]
    return url


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Forget loaded settings so the next ``get_settings()`` re-reads the environment."""
    global _settings
    _settings = None
