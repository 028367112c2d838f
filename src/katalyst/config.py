"""Environment-driven configuration for Katalyst.

Settings are read once from the process environment (and a ``.env`` file when
present) into a frozen ``Settings`` dataclass. Required values are collected
by :meth:`Settings.validate`, which raises :class:`ConfigError` naming every
missing variable at once.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field, replace

from dotenv import load_dotenv

from katalyst.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_APP_URL = "http://localhost:3000"
DEFAULT_CONNECTOR_BASE_URL = "https://backend.composio.dev/api"
# Session cookies live for 24 hours.
SESSION_MAX_AGE_SECONDS = 24 * 60 * 60
# Used only when running outside production without SESSION_SECRET.
_DEV_SESSION_SECRET = "katalyst-dev-session-secret"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


class Environment(enum.StrEnum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


def _env_str(name: str, default: str | None = None) -> str | None:
    """Return a stripped env var, treating blank values as unset."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip()
    return value or default


def _env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean env var; unrecognised values raise ConfigError."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    raise ConfigError(f"Environment variable {name} must be a boolean, got {raw!r}")


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = _env_str(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_environment(raw: str | None) -> Environment:
    if raw is None:
        return Environment.DEVELOPMENT
    try:
        return Environment(raw.lower())
    except ValueError as exc:
        allowed = ", ".join(e.value for e in Environment)
        raise ConfigError(f"APP_ENV must be one of: {allowed}; got {raw!r}") from exc


@dataclass(frozen=True)
class GoogleConfig:
    """Google OAuth client and API-key fallback settings."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    api_key: str | None = None
    calendar_id: str = "primary"
    enable_api_key_fallback: bool = False


@dataclass(frozen=True)
class ConnectorConfig:
    """Third-party calendar connector settings."""

    api_key: str | None = None
    auth_config_id: str | None = None
    base_url: str = DEFAULT_CONNECTOR_BASE_URL
    enabled: bool = False
    # Last-resort account lookup by app name alone, with no user filter.
    allow_unscoped_lookup: bool = False

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.api_key)


@dataclass(frozen=True)
class Settings:
    """Process-wide Katalyst settings."""

    environment: Environment = Environment.DEVELOPMENT
    app_url: str = DEFAULT_APP_URL
    session_secret: str = ""
    # Overrides the database named in DATABASE_URL when set.
    db_name: str | None = None
    cors_origins: list[str] = field(default_factory=lambda: [DEFAULT_APP_URL])
    log_level: str = "INFO"
    log_format: str = "text"
    google: GoogleConfig = field(default_factory=GoogleConfig)
    connector: ConnectorConfig = field(default_factory=ConnectorConfig)

    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION

    @property
    def dashboard_url(self) -> str:
        return f"{self.app_url.rstrip('/')}/dashboard"

    def missing_required(self) -> list[str]:
        """Return the names of required environment variables that are unset."""
        missing: list[str] = []
        if not self.google.client_id:
            missing.append("GOOGLE_CLIENT_ID")
        if not self.google.client_secret:
            missing.append("GOOGLE_CLIENT_SECRET")
        if not self.session_secret:
            missing.append("SESSION_SECRET")
        if self.google.enable_api_key_fallback and not self.google.api_key:
            missing.append("GOOGLE_API_KEY")
        return missing

    def validate(self) -> None:
        """Raise ConfigError if any required setting is missing."""
        missing = self.missing_required()
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from the current environment without validating."""
        app_url = (_env_str("APP_URL") or DEFAULT_APP_URL).rstrip("/")
        connector_key = _env_str("COMPOSIO_API_KEY")
        google = GoogleConfig(
            client_id=_env_str("GOOGLE_CLIENT_ID", "") or "",
            client_secret=_env_str("GOOGLE_CLIENT_SECRET", "") or "",
            redirect_uri=_env_str("GOOGLE_OAUTH_REDIRECT_URI")
            or f"{app_url}/api/auth/callback/google",
            api_key=_env_str("GOOGLE_API_KEY"),
            calendar_id=_env_str("GOOGLE_CALENDAR_ID", "primary") or "primary",
            enable_api_key_fallback=_env_bool("ENABLE_API_KEY_FALLBACK", False),
        )
        connector = ConnectorConfig(
            api_key=connector_key,
            auth_config_id=_env_str("COMPOSIO_AUTH_CONFIG_ID"),
            base_url=_env_str("COMPOSIO_BASE_URL", DEFAULT_CONNECTOR_BASE_URL)
            or DEFAULT_CONNECTOR_BASE_URL,
            enabled=_env_bool("ENABLE_CONNECTOR", connector_key is not None),
            allow_unscoped_lookup=_env_bool("CONNECTOR_UNSCOPED_LOOKUP", False),
        )
        return cls(
            environment=_parse_environment(_env_str("APP_ENV")),
            app_url=app_url,
            session_secret=_env_str("SESSION_SECRET", "") or "",
            db_name=_env_str("KATALYST_DB_NAME"),
            cors_origins=_env_list("CORS_ORIGINS", [app_url]),
            log_level=(_env_str("LOG_LEVEL", "INFO") or "INFO").upper(),
            log_format=_env_str("LOG_FORMAT", "text") or "text",
            google=google,
            connector=connector,
        )

    @classmethod
    def load(cls, strict: bool | None = None) -> Settings:
        """Load ``.env`` and the environment, then validate.

        Parameters
        ----------
        strict:
            When true, missing required values raise :class:`ConfigError`.
            Defaults to true in production only; elsewhere a warning is
            logged and a development session secret is substituted.
        """
        load_dotenv()
        settings = cls.from_env()
        if strict is None:
            strict = settings.is_production
        missing = settings.missing_required()
        if not missing:
            return settings
        if strict:
            settings.validate()
        logger.warning(
            "Environment validation failed; continuing with fallback values (missing: %s)",
            ", ".join(missing),
        )
        if not settings.session_secret:
            settings = replace(settings, session_secret=_DEV_SESSION_SECRET)
        return settings
