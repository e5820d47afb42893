"""Daraja credentials and endpoints."""
from __future__ import annotations

from dataclasses import dataclass

from app.core.config import BaseAppSettings
from app.core.exceptions import ConfigurationError

_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


@dataclass(frozen=True)
class MpesaConfig:
    consumer_key: str
    consumer_secret: str
    shortcode: str
    passkey: str
    callback_url: str
    environment: str = "sandbox"
    timeout: float = 10.0

    @property
    def base_url(self) -> str:
        return _BASE_URLS[self.environment]

    @property
    def oauth_url(self) -> str:
        return f"{self.base_url}/oauth/v1/generate?grant_type=client_credentials"

    @property
    def stk_push_url(self) -> str:
        return f"{self.base_url}/mpesa/stkpush/v1/processrequest"

    @property
    def stk_query_url(self) -> str:
        return f"{self.base_url}/mpesa/stkpushquery/v1/query"

    @classmethod
    def from_settings(cls, settings: BaseAppSettings) -> MpesaConfig:
        required = {
            "MPESA_CONSUMER_KEY": settings.MPESA_CONSUMER_KEY,
            "MPESA_CONSUMER_SECRET": settings.MPESA_CONSUMER_SECRET,
            "MPESA_SHORTCODE": settings.MPESA_SHORTCODE,
            "MPESA_PASSKEY": settings.MPESA_PASSKEY,
            "MPESA_CALLBACK_URL": settings.MPESA_CALLBACK_URL,
        }
        for name, value in required.items():
            if not value:
                raise ConfigurationError(name)
        return cls(
            consumer_key=settings.MPESA_CONSUMER_KEY,
            consumer_secret=settings.MPESA_CONSUMER_SECRET,
            shortcode=settings.MPESA_SHORTCODE,
            passkey=settings.MPESA_PASSKEY,
            callback_url=settings.MPESA_CALLBACK_URL,
            environment=settings.MPESA_ENVIRONMENT,
            timeout=settings.MPESA_TIMEOUT_SECONDS,
        )
