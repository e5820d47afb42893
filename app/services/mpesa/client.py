"""Safaricom Daraja API client (Lipa na M-Pesa Online).

Wraps the three calls the payment flow needs: client-credentials OAuth, STK push and
STK push status query. Every transport or HTTP failure surfaces as
``PaymentGatewayError`` so callers can treat the gateway as one retryable dependency.
"""
from __future__ import annotations

import base64
import datetime as dt
import logging
import time
from typing import Any

import httpx
from dateutil import tz

from app.core.exceptions import PaymentGatewayError

from .config import MpesaConfig

logger = logging.getLogger(__name__)

# Daraja timestamps are East Africa Time
NAIROBI = tz.gettz("Africa/Nairobi")

# Refresh the token this many seconds before Daraja says it expires
_TOKEN_EXPIRY_MARGIN = 60


def daraja_timestamp(moment: dt.datetime | None = None) -> str:
    moment = moment or dt.datetime.now(dt.timezone.utc)
    return moment.astimezone(NAIROBI).strftime("%Y%m%d%H%M%S")


class DarajaClient:
    def __init__(self, config: MpesaConfig, transport: httpx.BaseTransport | None = None):
        """
        Args:
            config: Credentials and environment
            transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        """
        self.config = config
        self._http = httpx.Client(timeout=config.timeout, transport=transport)
        self._token: str | None = None
        self._token_expires_at = 0.0

    def close(self) -> None:
        self._http.close()

    def build_password(self, timestamp: str) -> str:
        raw = f"{self.config.shortcode}{self.config.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    def get_access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        try:
            response = self._http.get(
                self.config.oauth_url,
                auth=(self.config.consumer_key, self.config.consumer_secret),
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Daraja token request failed status=%s", e.response.status_code)
            raise PaymentGatewayError("Failed to get access token") from e
        except (httpx.RequestError, ValueError) as e:
            logger.error("Daraja token request error: %s", e)
            raise PaymentGatewayError("Failed to get access token") from e

        token = data.get("access_token")
        if not token:
            raise PaymentGatewayError("Failed to get access token", data)
        self._token = token
        expires_in = int(data.get("expires_in") or 3599)
        self._token_expires_at = time.monotonic() + max(expires_in - _TOKEN_EXPIRY_MARGIN, 0)
        return token

    def _post(self, url: str, payload: dict[str, Any], action: str) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.get_access_token()}"}
        try:
            response = self._http.post(url, json=payload, headers=headers)
        except httpx.RequestError as e:
            logger.error("Daraja %s request error: %s", action, e)
            raise PaymentGatewayError(f"{action} request failed") from e

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text[:500]}

        if response.status_code == 401:
            # Token revoked early; drop it so the next call fetches a fresh one
            self._token = None
        if response.is_error:
            logger.warning("Daraja %s rejected status=%s body=%s", action, response.status_code, data)
            reason = data.get("errorMessage") or f"HTTP {response.status_code}"
            raise PaymentGatewayError(f"{action} failed: {reason}", data)
        return data

    def stk_push(
        self,
        *,
        phone_number: str,
        amount: int,
        account_reference: str,
        transaction_desc: str,
    ) -> dict[str, Any]:
        """Send the payment prompt to the customer's phone.

        Returns the Daraja response; ``ResponseCode`` "0" means the prompt was accepted.
        """
        timestamp = daraja_timestamp()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": self.build_password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone_number,
            "PartyB": self.config.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.config.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": transaction_desc,
        }
        data = self._post(self.config.stk_push_url, payload, "STK push")
        if str(data.get("ResponseCode")) != "0":
            raise PaymentGatewayError(data.get("ResponseDescription") or "STK push was not accepted", data)
        return data

    def query_stk_status(self, checkout_request_id: str) -> dict[str, Any]:
        timestamp = daraja_timestamp()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": self.build_password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        return self._post(self.config.stk_query_url, payload, "STK query")
