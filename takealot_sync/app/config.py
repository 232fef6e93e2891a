"""Runtime settings for the API process, read from the environment."""

from __future__ import annotations

import os

CRON_SECRET_ENV = "CRON_SECRET"
WEBSHARE_TOKEN_ENV = "WEBSHARE_API_TOKEN"
CORS_ORIGINS_ENV = "TAKEALOT_SYNC_CORS_ORIGINS"

DEFAULT_CORS_ORIGINS = (
    "http://localhost:3000",
    "http://127.0.0.1:3000",
)


def get_cron_secret() -> str | None:
    """Shared secret cron callers must present; None disables the check."""
    return os.environ.get(CRON_SECRET_ENV) or None


def get_webshare_token() -> str | None:
    return os.environ.get(WEBSHARE_TOKEN_ENV) or None


def get_cors_origins() -> list[str]:
    raw = os.environ.get(CORS_ORIGINS_ENV)
    if not raw:
        return list(DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


__all__ = ["get_cors_origins", "get_cron_secret", "get_webshare_token"]
