"""Tests for environment-driven settings."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from katalyst.config import (
    DEFAULT_APP_URL,
    DEFAULT_CONNECTOR_BASE_URL,
    Environment,
    Settings,
)
from katalyst.errors import ConfigError

pytestmark = pytest.mark.unit

REQUIRED_ENV = {
    "GOOGLE_CLIENT_ID": "client-id",
    "GOOGLE_CLIENT_SECRET": "client-secret",
    "SESSION_SECRET": "s3cret",
}


@pytest.fixture(autouse=True)
def no_dotenv():
    """Keep a developer's .env file out of the tests."""
    with patch("katalyst.config.load_dotenv"):
        yield


class TestFromEnv:
    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = Settings.from_env()
        assert settings.environment is Environment.DEVELOPMENT
        assert settings.app_url == DEFAULT_APP_URL
        assert settings.google.redirect_uri == f"{DEFAULT_APP_URL}/api/auth/callback/google"
        assert settings.google.calendar_id == "primary"
        assert settings.google.enable_api_key_fallback is False
        assert settings.connector.base_url == DEFAULT_CONNECTOR_BASE_URL
        assert settings.connector.is_configured is False
        assert settings.cors_origins == [DEFAULT_APP_URL]

    def test_reads_values(self):
        env = {
            **REQUIRED_ENV,
            "APP_URL": "https://katalyst.example.com/",
            "APP_ENV": "production",
            "GOOGLE_API_KEY": "api-key",
            "ENABLE_API_KEY_FALLBACK": "true",
            "COMPOSIO_API_KEY": "connector-key",
            "CORS_ORIGINS": "https://a.example.com, https://b.example.com",
            "LOG_LEVEL": "debug",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = Settings.from_env()
        assert settings.is_production
        assert settings.app_url == "https://katalyst.example.com"
        assert settings.dashboard_url == "https://katalyst.example.com/dashboard"
        assert settings.google.api_key == "api-key"
        assert settings.google.enable_api_key_fallback is True
        assert settings.connector.is_configured is True
        assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]
        assert settings.log_level == "DEBUG"

    def test_connector_can_be_disabled(self):
        env = {"COMPOSIO_API_KEY": "connector-key", "ENABLE_CONNECTOR": "false"}
        with patch.dict("os.environ", env, clear=True):
            settings = Settings.from_env()
        assert settings.connector.is_configured is False

    def test_unscoped_connector_lookup_opt_in(self):
        with patch.dict("os.environ", {}, clear=True):
            assert Settings.from_env().connector.allow_unscoped_lookup is False
        with patch.dict("os.environ", {"CONNECTOR_UNSCOPED_LOOKUP": "true"}, clear=True):
            assert Settings.from_env().connector.allow_unscoped_lookup is True

    def test_db_name_unset_by_default(self):
        with patch.dict("os.environ", {}, clear=True):
            assert Settings.from_env().db_name is None
        with patch.dict("os.environ", {"KATALYST_DB_NAME": "calendar"}, clear=True):
            assert Settings.from_env().db_name == "calendar"

    def test_invalid_boolean_raises(self):
        with patch.dict("os.environ", {"ENABLE_API_KEY_FALLBACK": "maybe"}, clear=True):
            with pytest.raises(ConfigError, match="ENABLE_API_KEY_FALLBACK"):
                Settings.from_env()

    def test_invalid_environment_raises(self):
        with patch.dict("os.environ", {"APP_ENV": "staging"}, clear=True):
            with pytest.raises(ConfigError, match="APP_ENV"):
                Settings.from_env()


class TestValidation:
    def test_missing_required_lists_every_variable(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = Settings.from_env()
        assert settings.missing_required() == [
            "GOOGLE_CLIENT_ID",
            "GOOGLE_CLIENT_SECRET",
            "SESSION_SECRET",
        ]

    def test_api_key_required_when_fallback_enabled(self):
        env = {**REQUIRED_ENV, "ENABLE_API_KEY_FALLBACK": "1"}
        with patch.dict("os.environ", env, clear=True):
            settings = Settings.from_env()
        assert settings.missing_required() == ["GOOGLE_API_KEY"]

    def test_validate_raises_config_error(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = Settings.from_env()
        with pytest.raises(ConfigError, match="GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET"):
            settings.validate()

    def test_load_strict_in_production(self):
        with patch.dict("os.environ", {"APP_ENV": "production"}, clear=True):
            with pytest.raises(ConfigError):
                Settings.load()

    def test_load_lenient_in_development(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = Settings.load()
        assert settings.session_secret
        assert settings.google.client_id == ""

    def test_load_complete_environment(self):
        with patch.dict("os.environ", REQUIRED_ENV, clear=True):
            settings = Settings.load(strict=True)
        assert settings.session_secret == "s3cret"
