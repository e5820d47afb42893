"""Daraja STK push callback handling.

Safaricom retries callbacks that are not acknowledged, so the processor always returns
the fixed acknowledgement and logs anything it could not apply.
"""
from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import SokofitiException, TransactionNotFoundError

from . import result_codes
from .client import NAIROBI
from .payment_service import MpesaPaymentService, PaymentOutcome

logger = logging.getLogger(__name__)

ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}


class CallbackItem(BaseModel):
    name: str = Field(alias="Name")
    value: Any = Field(default=None, alias="Value")


class CallbackMetadata(BaseModel):
    items: list[CallbackItem] = Field(default_factory=list, alias="Item")


class StkCallback(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    merchant_request_id: str = Field(alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    result_code: int = Field(alias="ResultCode")
    result_desc: str = Field(default="", alias="ResultDesc")
    metadata: CallbackMetadata | None = Field(default=None, alias="CallbackMetadata")

    def item(self, name: str) -> Any:
        if self.metadata is None:
            return None
        for entry in self.metadata.items:
            if entry.name == name:
                return entry.value
        return None

    @property
    def amount(self) -> Decimal | None:
        value = self.item("Amount")
        return Decimal(str(value)) if value is not None else None

    @property
    def receipt_number(self) -> str | None:
        value = self.item("MpesaReceiptNumber")
        return str(value) if value else None

    @property
    def phone_number(self) -> str | None:
        value = self.item("PhoneNumber")
        return str(value) if value else None

    @property
    def transaction_date(self) -> dt.datetime | None:
        return parse_transaction_date(self.item("TransactionDate"))


def parse_transaction_date(value: Any) -> dt.datetime | None:
    """Daraja sends YYYYMMDDHHMMSS as a number, in Nairobi time."""
    if value in (None, ""):
        return None
    try:
        local = dt.datetime.strptime(str(value), "%Y%m%d%H%M%S").replace(tzinfo=NAIROBI)
    except ValueError:
        logger.warning("Unparseable M-Pesa TransactionDate %r", value)
        return None
    return local.astimezone(dt.timezone.utc)


def parse_stk_callback(payload: dict[str, Any]) -> StkCallback:
    try:
        body = payload["Body"]["stkCallback"]
    except (KeyError, TypeError) as exc:
        raise ValueError("Callback payload has no Body.stkCallback") from exc
    return StkCallback.model_validate(body)


class MpesaCallbackProcessor:
    def __init__(self, payments: MpesaPaymentService):
        self.payments = payments

    def process(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            callback = parse_stk_callback(payload)
        except (ValueError, PydanticValidationError) as exc:
            logger.error("Rejected malformed M-Pesa callback: %s", exc)
            return dict(ACK)

        logger.info(
            "M-Pesa callback checkout=%s merchant=%s code=%s",
            callback.checkout_request_id, callback.merchant_request_id, callback.result_code,
        )
        try:
            transaction = self.payments.find_transaction(
                checkout_request_id=callback.checkout_request_id,
                merchant_request_id=callback.merchant_request_id,
            )
            outcome = PaymentOutcome(
                status=result_codes.status_for_callback(callback.result_code),
                result_code=callback.result_code,
                result_desc=result_codes.describe(callback.result_code, callback.result_desc),
                receipt_number=callback.receipt_number,
                transaction_date=callback.transaction_date,
                amount=callback.amount,
                phone_number=callback.phone_number,
            )
            self.payments.apply_result(transaction, outcome, source="callback")
        except TransactionNotFoundError:
            logger.error("M-Pesa callback for unknown transaction checkout=%s", callback.checkout_request_id)
        except SokofitiException as exc:
            logger.error(
                "M-Pesa callback not applied checkout=%s: %s", callback.checkout_request_id, exc.message
            )
        except Exception:
            self.payments.db.rollback()
            logger.exception("M-Pesa callback processing crashed checkout=%s", callback.checkout_request_id)
        return dict(ACK)
