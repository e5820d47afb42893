from __future__ import annotations

import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Sokofiti"
    ENV: str = "dev"
    DATABASE_URL: str | None = None
    REDIS_URL: str = "redis://localhost:6379/0"

    # M-Pesa (Safaricom Daraja) - STK push
    MPESA_ENVIRONMENT: str = "sandbox"  # sandbox | production
    MPESA_CONSUMER_KEY: str | None = None
    MPESA_CONSUMER_SECRET: str | None = None
    MPESA_SHORTCODE: str | None = None
    MPESA_PASSKEY: str | None = None
    MPESA_CALLBACK_URL: str | None = None
    MPESA_TIMEOUT_SECONDS: float = 10.0
    # Pending transactions older than this are polled against Daraja on status queries
    MPESA_PENDING_QUERY_AFTER_SECONDS: int = 300

    @field_validator("MPESA_SHORTCODE", mode="before")
    @classmethod
    def coerce_shortcode_to_str(cls, v):
        """Shortcodes are numeric in .env files but Daraja expects them as strings."""
        if v is None:
            return v
        return str(v)

    # Subscription rules
    FREE_PLAN_ID: str = "free"
    FREE_PLAN_DEFAULT_CREDITS: int = 7
    # When True, activate-subscription rejects amounts that differ from the plan price
    STRICT_ACTIVATION_AMOUNT: bool = False

    # Push notifications (Firebase Cloud Messaging legacy HTTP API)
    FCM_SERVER_KEY: str | None = None
    NOTIFICATIONS_ENABLED: bool = True

    CORS_ALLOW_ORIGINS: list[str] = ["*"]
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    HSTS_SECONDS: int = 31_536_000
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "plain"
    SENTRY_DSN: str | None = None

    @model_validator(mode="after")
    def _validate_required_fields(self) -> BaseAppSettings:
        # Convert Heroku's postgres:// URL to postgresql://
        if self.DATABASE_URL and self.DATABASE_URL.startswith("postgres://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgres://", "postgresql://", 1)

        if self.MPESA_ENVIRONMENT not in ("sandbox", "production"):
            raise ValueError("MPESA_ENVIRONMENT must be 'sandbox' or 'production'")

        required_in_prod = (
            "DATABASE_URL",
            "MPESA_CONSUMER_KEY",
            "MPESA_CONSUMER_SECRET",
            "MPESA_SHORTCODE",
            "MPESA_PASSKEY",
            "MPESA_CALLBACK_URL",
        )
        if self.ENV.lower() == "prod":
            missing = [name for name in required_in_prod if not getattr(self, name)]
            if missing:
                raise ValueError(f"Missing required production settings: {', '.join(missing)}")
            if self.MPESA_CALLBACK_URL and not self.MPESA_CALLBACK_URL.startswith("https://"):
                raise ValueError("MPESA_CALLBACK_URL must be an https URL in production")
        return self


class DevSettings(BaseAppSettings):
    ENV: str = "dev"
    DATABASE_URL: str = "sqlite:///./storage/dev.db"
    MPESA_CONSUMER_KEY: str = "dev-consumer-key"
    MPESA_CONSUMER_SECRET: str = "dev-consumer-secret"
    MPESA_SHORTCODE: str = "174379"
    MPESA_PASSKEY: str = "dev-passkey"
    MPESA_CALLBACK_URL: str = "http://localhost:8000/api/mpesa/callback"


class TestSettings(BaseAppSettings):
    ENV: str = "test"
    DATABASE_URL: str = "sqlite:///:memory:"
    MPESA_CONSUMER_KEY: str = "test-consumer-key"
    MPESA_CONSUMER_SECRET: str = "test-consumer-secret"
    MPESA_SHORTCODE: str = "174379"
    MPESA_PASSKEY: str = "test-passkey"
    MPESA_CALLBACK_URL: str = "https://example.test/api/mpesa/callback"
    NOTIFICATIONS_ENABLED: bool = False


class ProdSettings(BaseAppSettings):
    ENV: str = "prod"
    MPESA_ENVIRONMENT: str = "production"
    CORS_ALLOW_ORIGINS: list[str] = [
        "https://sokofiti.co.ke",
        "https://www.sokofiti.co.ke",
    ]
    CORS_ALLOW_CREDENTIALS: bool = True
    LOG_FORMAT: str = "json"


_ENV_TO_SETTINGS: dict[str, type[BaseAppSettings]] = {
    "dev": DevSettings,
    "development": DevSettings,
    "test": TestSettings,
    "testing": TestSettings,
    "prod": ProdSettings,
    "production": ProdSettings,
}


@lru_cache
def get_settings() -> BaseAppSettings:
    env_name = os.getenv("APP_ENV") or os.getenv("ENV") or "dev"
    env = env_name.lower()
    settings_cls = _ENV_TO_SETTINGS.get(env, DevSettings)
    return settings_cls()


settings = get_settings()
