# backend/stocksage/config.py
from __future__ import annotations
import os


DEV_SECRETS = {
    "",
    "dev-secret-key-change-me",
    "dev-jwt-secret-change-me",
}


def _split_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


class Config:
    # "development" or "production"; production refuses dev secrets
    APP_ENV = os.environ.get("APP_ENV", "development")

    # Signs the guest cookie and Flask's own session cookie
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Legacy JWT session provider (HS256)
    JWT_SECRET = os.environ.get("JWT_SECRET", "dev-jwt-secret-change-me")
    JWT_MAX_AGE_SECONDS = int(os.environ.get("JWT_MAX_AGE_SECONDS", str(30 * 24 * 60 * 60)))

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stocksage.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SESSION_COOKIE_NAME_PRIMARY = "stocksage_session"
    LEGACY_COOKIE_NAME = "stocksage_legacy_token"

    GUEST_COOKIE_NAME = "stocksage_guest_session"
    GUEST_COOKIE_MAX_AGE = int(os.environ.get("GUEST_COOKIE_MAX_AGE", str(60 * 60 * 24 * 7)))

    # External identity provider used by the guest account pool
    IDENTITY_PROVIDER_URL = os.environ.get("IDENTITY_PROVIDER_URL")
    IDENTITY_PROVIDER_TOKEN_URL = os.environ.get("IDENTITY_PROVIDER_TOKEN_URL")
    IDENTITY_PROVIDER_CLIENT_ID = os.environ.get("IDENTITY_PROVIDER_CLIENT_ID")
    IDENTITY_PROVIDER_CLIENT_SECRET = os.environ.get("IDENTITY_PROVIDER_CLIENT_SECRET")
    IDENTITY_PROVIDER_TIMEOUT = float(os.environ.get("IDENTITY_PROVIDER_TIMEOUT", "10"))
    GUEST_POOL_MAX_SIZE = int(os.environ.get("GUEST_POOL_MAX_SIZE", "10"))

    CORS_ALLOWED_ORIGINS = _split_env(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )

    STOCKTAKE_RETRY_ATTEMPTS = int(os.environ.get("STOCKTAKE_RETRY_ATTEMPTS", "3"))


def providers_configured(config) -> bool:
    """
    True when both auth-provider secrets look real.

    Without them the access policy falls back to the static public-path list.
    """
    secret_key = config.get("SECRET_KEY") or ""
    jwt_secret = config.get("JWT_SECRET") or ""
    return len(secret_key) > 10 and len(jwt_secret) > 10


def check_production_secrets(config) -> None:
    """Refuse to boot a production app on development secrets."""
    if config.get("APP_ENV") != "production":
        return
    for key in ("SECRET_KEY", "JWT_SECRET"):
        if (config.get(key) or "") in DEV_SECRETS:
            raise RuntimeError(
                f"{key} is not configured for production. "
                "Set a strong value in the environment and restart."
            )
