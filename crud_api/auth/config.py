"""Configuration helpers for the authentication subsystem."""

from __future__ import annotations

import os
import re

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


# AES-256-GCM key for provider tokens at rest, as 64 hex characters.
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", "")
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = "HS256"
MIN_JWT_SECRET_LENGTH = 32

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "")

# Lifetimes of this service's own signed credentials.
ACCESS_TOKEN_TTL_SECONDS = _int_env("ACCESS_TOKEN_TTL_SECONDS", 60 * 60)
REFRESH_TOKEN_TTL_SECONDS = _int_env("REFRESH_TOKEN_TTL_SECONDS", 90 * 24 * 60 * 60)
STATE_TOKEN_TTL_SECONDS = _int_env("STATE_TOKEN_TTL_SECONDS", 10 * 60)

# Fallbacks used only when a provider omits expiry information.
PROVIDER_ACCESS_TOKEN_DEFAULT_SECONDS = _int_env("PROVIDER_ACCESS_TOKEN_DEFAULT_SECONDS", 3600)
PROVIDER_REFRESH_TOKEN_DEFAULT_SECONDS = _int_env(
    "PROVIDER_REFRESH_TOKEN_DEFAULT_SECONDS", 90 * 24 * 60 * 60
)
ACCESS_TOKEN_REFRESH_BUFFER_SECONDS = _int_env("ACCESS_TOKEN_REFRESH_BUFFER_SECONDS", 5 * 60)
PROVIDER_HTTP_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_HTTP_TIMEOUT_SECONDS", "15.0"))

ACCESS_COOKIE_NAME = os.getenv("ACCESS_COOKIE_NAME", "access_token")
REFRESH_COOKIE_NAME = os.getenv("REFRESH_COOKIE_NAME", "refresh_token")
SESSION_COOKIE_PATH = os.getenv("SESSION_COOKIE_PATH", "/")
SESSION_COOKIE_DOMAIN = os.getenv("SESSION_COOKIE_DOMAIN") or None
SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "lax").lower()
SESSION_COOKIE_SECURE = _bool_env(
    "SESSION_COOKIE_SECURE", default=os.getenv("APP_ENV", "").strip().lower() == "production"
)

_HEX_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def validate_settings() -> None:
    """Fail fast when secrets required by the auth subsystem are unusable.

    Raises:
        ConfigurationError: If ENCRYPTION_KEY is not 64 hex characters or
            JWT_SECRET is missing or shorter than 32 characters.
    """
    if not _HEX_KEY_PATTERN.match(ENCRYPTION_KEY or ""):
        raise ConfigurationError(
            "ENCRYPTION_KEY must be a 64-character hexadecimal string (32 bytes for AES-256)"
        )
    if len(JWT_SECRET or "") < MIN_JWT_SECRET_LENGTH:
        raise ConfigurationError(
            f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters long"
        )
