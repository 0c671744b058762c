from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

from app.core.errors import ConfigurationError

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_DEV_SESSION_SECRET = "dev-only-session-secret-change-me-0123456789"


def _getenv(name: str, default: str = "") -> str:
    # Centralize env access so it's easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer (got {raw!r})") from None


@dataclass(frozen=True)
class ProviderSettings:
    """Static identity-provider configuration (one provider, one tenant)."""

    authority_host: str
    tenant_id: str
    client_id: str
    client_secret: str
    redirect_uri: str

    @property
    def base_url(self) -> str:
        if "://" in self.authority_host:
            return self.authority_host.rstrip("/")
        return f"https://{self.authority_host.rstrip('/')}"

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.base_url}/{self.tenant_id}/oauth2/v2.0/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.base_url}/{self.tenant_id}/oauth2/v2.0/token"


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    provider: ProviderSettings
    frontend_url: str
    session_secret: str
    session_cookie_name: str
    session_ttl_seconds: int
    token_exchange_timeout: float
    database_url: str | None
    redis_url: str | None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


_PROVIDER_VARS = {
    "authority_host": "OIDC_AUTHORITY_HOST",
    "tenant_id": "OIDC_TENANT_ID",
    "client_id": "OIDC_CLIENT_ID",
    "client_secret": "OIDC_CLIENT_SECRET",
    "redirect_uri": "OIDC_REDIRECT_URI",
}


def load_provider_settings() -> ProviderSettings:
    values = {field: _getenv(var) for field, var in _PROVIDER_VARS.items()}
    missing = [_PROVIDER_VARS[field] for field, value in values.items() if not value]
    if missing:
        # Names only; values (the client secret in particular) never go in messages.
        raise ConfigurationError(
            "missing identity provider configuration: " + ", ".join(missing)
        )
    return ProviderSettings(**values)


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ConfigurationError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ConfigurationError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    port = _getint("PORT", 8000)
    session_ttl = _getint("SESSION_TTL_SECONDS", 24 * 60 * 60)
    if session_ttl <= 0:
        raise ConfigurationError("SESSION_TTL_SECONDS must be positive")
    timeout = _getint("TOKEN_EXCHANGE_TIMEOUT_SECONDS", 10)

    provider = load_provider_settings()

    session_secret = _getenv("SESSION_SECRET")
    database_url = _getenv("DATABASE_URL") or None
    redis_url = _getenv("REDIS_URL") or None

    if app_env_raw == "prod":
        # No in-memory fallbacks in production: sessions and users must be
        # shared across instances and survive restarts.
        for name, value in (
            ("SESSION_SECRET", session_secret),
            ("DATABASE_URL", database_url),
            ("REDIS_URL", redis_url),
        ):
            if not value:
                raise ConfigurationError(f"{name} is required when APP_ENV=prod")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        port=port,
        provider=provider,
        frontend_url=_getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/"),
        session_secret=session_secret or _DEV_SESSION_SECRET,
        session_cookie_name=_getenv("SESSION_COOKIE_NAME", "signin.session"),
        session_ttl_seconds=session_ttl,
        token_exchange_timeout=float(timeout),
        database_url=database_url,
        redis_url=redis_url,
    )


# Module-level singleton: a configuration error here stops the import of
# app.main, so the service never starts with a partial configuration.
SETTINGS = load_settings()
