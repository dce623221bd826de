"""
Unit tests for Settings and URL handling.

Tests cover:
- Environment variable loading with the CRUDKIT_ prefix
- Async driver selection for database URLs
- Named data sources
- Production guards
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from crudkit.core.config import (
    DEFAULT_DATA_SOURCE,
    AppEnvironment,
    Settings,
    get_settings,
    reset_settings,
    to_async_url,
)


@pytest.mark.unit
class TestToAsyncUrl:
    """Tests for to_async_url."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgresql://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
            ("postgres://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
            ("sqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
            ("postgresql+asyncpg://u@db/app", "postgresql+asyncpg://u@db/app"),
            ("sqlite+aiosqlite:///tmp/x.db", "sqlite+aiosqlite:///tmp/x.db"),
        ],
    )
    def test_rewrites_bare_urls_only(self, url, expected):
        assert to_async_url(url) == expected


@pytest.mark.unit
class TestSettings:
    """Tests for Settings loading and validation."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CRUDKIT_APP_ENV", raising=False)
        settings = Settings()

        assert settings.app_env == AppEnvironment.LOCAL
        assert settings.database_url == "sqlite+aiosqlite:///:memory:"
        assert settings.metrics_enabled is True
        assert settings.data_sources == {}

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("CRUDKIT_DATABASE_URL", "postgresql://u@db/app")
        monkeypatch.setenv("CRUDKIT_LOG_LEVEL", "debug")
        monkeypatch.setenv("CRUDKIT_METRICS_ENABLED", "false")

        settings = Settings()

        assert settings.async_url == "postgresql+asyncpg://u@db/app"
        assert settings.log_level == "DEBUG"
        assert settings.metrics_enabled is False

    def test_data_sources_from_json(self, monkeypatch):
        monkeypatch.setenv("CRUDKIT_DATA_SOURCES", '{"reporting": "postgres://ro@replica/app"}')

        urls = Settings().data_source_urls

        assert urls["reporting"] == "postgresql+asyncpg://ro@replica/app"
        assert DEFAULT_DATA_SOURCE in urls

    def test_default_name_is_reserved(self):
        with pytest.raises(PydanticValidationError):
            Settings(data_sources={DEFAULT_DATA_SOURCE: "sqlite:///:memory:"})

    def test_rejects_unknown_log_level(self):
        with pytest.raises(PydanticValidationError):
            Settings(log_level="LOUD")

    def test_app_env_is_case_insensitive(self):
        assert Settings(app_env="TEST").app_env == AppEnvironment.TEST

    def test_prod_rejects_sqlite(self):
        with pytest.raises(PydanticValidationError, match="SQLite"):
            Settings(app_env="prod", database_url="sqlite:///:memory:")

    def test_prod_rejects_sqlite_named_source(self):
        with pytest.raises(PydanticValidationError, match="SQLite"):
            Settings(
                app_env="prod",
                database_url="postgresql://u@db/app",
                data_sources={"cache": "sqlite:///cache.db"},
            )

    def test_prod_accepts_postgres(self):
        settings = Settings(app_env="prod", database_url="postgresql://u@db/app")
        assert settings.app_env == AppEnvironment.PROD


@pytest.mark.unit
class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_cached_until_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("CRUDKIT_ECHO_SQL", "true")
        assert get_settings().echo_sql is False

        reset_settings()
        assert get_settings().echo_sql is True
