"""
config/settings.py
Environment-driven configuration (pydantic-settings). A local .env file
is read when present; real environment variables win.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    APP_NAME: str = "Wellness Marketplace"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: str = "http://localhost:3000"
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 100

    # ── Storage ──────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    REDIS_URL: str = "redis://localhost:6379/0"
    # Live channel for user X is f"{REALTIME_CHANNEL_PREFIX}{X}"
    REALTIME_CHANNEL_PREFIX: str = "user-"

    # ── Auth ─────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # ── Email / workers ──────────────────────────────────────
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@wellness-marketplace.ma"
    EMAIL_FROM_NAME: str = "Wellness Marketplace"
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Marketplace rules ────────────────────────────────────
    DEFAULT_CURRENCY: str = "MAD"
    DEFAULT_CANCELLATION_REASON: str = "No reason provided"
    DEFAULT_ORDER_REJECTION_REASON: str = "Insufficient stock or product unavailable"
    ORDER_NUMBER_MAX_ATTEMPTS: int = 3

    @property
    def allowed_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def email_enabled(self) -> bool:
        """Without a Resend key every email is a logged no-op."""
        return bool(self.RESEND_API_KEY)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
