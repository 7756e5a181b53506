import os
import datetime

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    """Application settings, read from the environment (and a local .env)."""

    MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/campus_trade")

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    JWT_ACCESS_TOKEN_EXPIRES = datetime.timedelta(
        seconds=_env_int("JWT_ACCESS_TOKEN_EXPIRES", 86400)
    )

    # Shared secret for /setadmin; the route is disabled when empty
    ADMIN_SECRET_KEY = os.getenv("ADMIN_SECRET_KEY", "")

    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    API_PREFIX = os.getenv("API_PREFIX", "/api")
    MAX_CONTENT_LENGTH = _env_int("MAX_CONTENT_LENGTH", 5 * 1024 * 1024)

    VIEW_HISTORY_LIMIT = _env_int("VIEW_HISTORY_LIMIT", 100)
    STORE_RETRY_ATTEMPTS = _env_int("STORE_RETRY_ATTEMPTS", 3)
    ALLOW_SOLD_LISTING_EDITS = _env_bool("ALLOW_SOLD_LISTING_EDITS", False)
    ENSURE_INDEXES = _env_bool("ENSURE_INDEXES", True)

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
