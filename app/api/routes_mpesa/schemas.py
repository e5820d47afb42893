"""Request and response schemas for the M-Pesa endpoints."""
from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.payment_models import MpesaTransaction
from app.models.subscription_models import as_utc


class StkPushRequest(BaseModel):
    user_id: int = Field(gt=0)
    phone_number: str = Field(min_length=1, max_length=20)
    amount: Decimal
    account_reference: str = Field(min_length=1, max_length=50)
    transaction_desc: str = Field(default="Payment for plan", max_length=255)
    plan_id: str | None = Field(default=None, max_length=50)
    credit_package: str | None = Field(default=None, max_length=20)


class StkPushOut(BaseModel):
    success: bool = True
    message: str
    checkout_request_id: str
    merchant_request_id: str
    response_code: str
    response_description: str
    customer_message: str


class QueryStatusRequest(BaseModel):
    checkout_request_id: str = Field(min_length=1, max_length=100)


class TransactionStatusOut(BaseModel):
    success: bool = True
    transaction_id: int
    checkout_request_id: str
    merchant_request_id: str
    payment_status: str
    result_code: int | None = None
    result_desc: str | None = None
    amount: float
    phone_number: str
    mpesa_receipt_number: str | None = None
    transaction_date: dt.datetime | None = None
    plan_id: str | None = None
    plan_name: str | None = None
    credit_package: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime

    @classmethod
    def from_transaction(cls, txn: MpesaTransaction) -> TransactionStatusOut:
        return cls(
            transaction_id=txn.id,
            checkout_request_id=txn.checkout_request_id,
            merchant_request_id=txn.merchant_request_id,
            payment_status=txn.status.value,
            result_code=txn.result_code,
            result_desc=txn.result_desc,
            amount=float(txn.amount),
            phone_number=txn.phone_number,
            mpesa_receipt_number=txn.mpesa_receipt_number,
            transaction_date=as_utc(txn.transaction_date),
            plan_id=txn.plan_id,
            plan_name=txn.plan.name if txn.plan else None,
            credit_package=txn.credit_package,
            created_at=as_utc(txn.created_at),
            updated_at=as_utc(txn.updated_at),
        )


class PaymentHistoryItem(BaseModel):
    id: int
    plan_id: str | None = None
    plan_name: str
    plan_period: str | None = None
    credit_package: str | None = None
    amount: float
    formatted_amount: str
    phone_number: str
    mpesa_receipt_number: str | None = None
    transaction_date: dt.datetime | None = None
    account_reference: str
    transaction_desc: str | None = None
    status: str
    status_display: str
    result_desc: str | None = None
    created_at: dt.datetime

    @classmethod
    def from_transaction(cls, txn: MpesaTransaction) -> PaymentHistoryItem:
        if txn.plan is not None:
            plan_name = txn.plan.name
        elif txn.credit_package:
            plan_name = f"Credit package ({txn.credit_package})"
        else:
            plan_name = "Unknown Plan"
        return cls(
            id=txn.id,
            plan_id=txn.plan_id,
            plan_name=plan_name,
            plan_period=txn.plan.period.value if txn.plan and txn.plan.period else None,
            credit_package=txn.credit_package,
            amount=float(txn.amount),
            formatted_amount=f"KES {txn.amount:,.0f}",
            phone_number=txn.phone_number,
            mpesa_receipt_number=txn.mpesa_receipt_number,
            transaction_date=as_utc(txn.transaction_date),
            account_reference=txn.account_reference,
            transaction_desc=txn.transaction_desc,
            status=txn.status.value,
            status_display=txn.status.value.capitalize(),
            result_desc=txn.result_desc,
            created_at=as_utc(txn.created_at),
        )


class Pagination(BaseModel):
    current_page: int
    per_page: int
    total: int
    total_pages: int
    has_more: bool


class PaymentHistoryOut(BaseModel):
    success: bool = True
    message: str = "Payment history retrieved successfully"
    payments: list[PaymentHistoryItem]
    pagination: Pagination
