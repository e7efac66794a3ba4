"""
Application configuration — environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent

load_dotenv(BASE_DIR / ".env")


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    # SQLite file holding every sheet of the row store
    DATABASE = os.environ.get("DATABASE", str(BASE_DIR / "classroom.db"))

    # Session security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Owner provisioned as the first admin teacher
    OWNER_EMAIL = os.environ.get("OWNER_EMAIL", "").strip().lower()
    OWNER_NAME = os.environ.get("OWNER_NAME", "Owner")

    # Write lock
    WRITE_LOCK_TIMEOUT = _int_env("WRITE_LOCK_TIMEOUT", 10)  # seconds to wait
    WRITE_LOCK_LEASE = _int_env("WRITE_LOCK_LEASE", 30)  # max hold before takeover

    # Login lockout
    RATE_LIMIT_MAX_ATTEMPTS = _int_env("RATE_LIMIT_MAX_ATTEMPTS", 5)
    RATE_LIMIT_WINDOW_MINUTES = _int_env("RATE_LIMIT_WINDOW_MINUTES", 15)
    RATE_LIMIT_LOCKOUT_MINUTES = _int_env("RATE_LIMIT_LOCKOUT_MINUTES", 30)

    # Teacher bearer sessions
    TEACHER_PIN_SESSION_HOURS = _int_env("TEACHER_PIN_SESSION_HOURS", 1)
    TEACHER_SESSION_HOURS = _int_env("TEACHER_SESSION_HOURS", 8)

    # AI helper
    AI_MODEL = os.environ.get("AI_MODEL", "gemini-2.0-flash")
    AI_DAILY_LIMIT = _int_env("AI_DAILY_LIMIT", 20)
    AI_MAX_SESSIONS = _int_env("AI_MAX_SESSIONS", 5)
    AI_MAX_MESSAGES = _int_env("AI_MAX_MESSAGES", 40)
    GOOGLE_API_KEY = os.environ.get("GOOGLE_API_KEY", "")
    SECRET_STORE_PATH = os.environ.get("SECRET_STORE_PATH", str(BASE_DIR / "instance" / "secrets.json"))

    # Google OAuth (federated teacher login)
    GOOGLE_OAUTH_CLIENT_ID = os.environ.get("GOOGLE_OAUTH_CLIENT_ID", "")
    GOOGLE_OAUTH_CLIENT_SECRET = os.environ.get("GOOGLE_OAUTH_CLIENT_SECRET", "")

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Redis backs the TTL store and the write lock when set
    REDIS_URL = os.environ.get("REDIS_URL", "")

    # Request throttling (defaults to in-memory; set REDIS_URL for Redis-backed)
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "") or "memory://"
    API_RATE_LIMIT = os.environ.get("API_RATE_LIMIT", "120 per minute")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    SESSION_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if cls.WRITE_LOCK_LEASE <= cls.WRITE_LOCK_TIMEOUT:
            errors.append("WRITE_LOCK_LEASE must be longer than WRITE_LOCK_TIMEOUT.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    RATELIMIT_ENABLED = False
    LOG_LEVEL = "WARNING"


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
