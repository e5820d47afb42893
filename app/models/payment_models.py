"""Payment models: the money ledger and M-Pesa STK push transactions."""
from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base_class import Base
from app.models.subscription_models import Plan, _enum_values, utcnow


class PaymentStatus(str, enum.Enum):
    """Payment transaction status."""
    PENDING = "pending"       # STK prompt sent, awaiting the customer
    COMPLETED = "completed"   # Confirmed by Daraja (result code 0)
    FAILED = "failed"         # Declined, insufficient funds, timeout etc.
    CANCELLED = "cancelled"   # Customer dismissed the prompt (result code 1032)


class PaymentType(str, enum.Enum):
    SUBSCRIPTION = "subscription"
    CREDIT_PURCHASE = "credit_purchase"
    RENEWAL = "renewal"


class PaymentMethod(str, enum.Enum):
    MPESA = "mpesa"
    CARD = "card"
    BANK = "bank"


class PaymentTransaction(Base):
    """
    Money ledger for renewals and credit-package purchases.

    One row per external payment reference; written in the same database
    transaction as the credit grant it paid for.
    """
    __tablename__ = "payment_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    transaction_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    """External payment reference (M-Pesa receipt or client supplied id)"""

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    """Amount in KES"""

    payment_type: Mapped[PaymentType] = mapped_column(
        Enum(PaymentType, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, values_callable=_enum_values, native_enum=False, length=10),
        nullable=False,
        default=PaymentMethod.MPESA,
    )
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=PaymentStatus.COMPLETED,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<PaymentTransaction(id={self.id}, transaction_id={self.transaction_id}, amount=KES {self.amount})>"


class MpesaTransaction(Base):
    """
    One Lipa na M-Pesa Online (STK push) attempt.

    Flow:
    1. stk-push accepted by Daraja → status=PENDING
    2. Callback (or status poll) reports the result → COMPLETED / CANCELLED / FAILED
    3. COMPLETED fulfils the plan or credit package exactly once
    """
    __tablename__ = "mpesa_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    plan_id: Mapped[Optional[str]] = mapped_column(ForeignKey("subscription_plans.id"), nullable=True)
    plan: Mapped[Optional[Plan]] = relationship(lazy="joined")
    credit_package: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    """Credit package key when the payment buys credits instead of a plan"""

    phone_number: Mapped[str] = mapped_column(String(15), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    checkout_request_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    merchant_request_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    mpesa_receipt_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Receipt issued by Safaricom on success (e.g. 'NLJ7RT61SV')"""

    transaction_date: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    account_reference: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_desc: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    result_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    result_desc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<MpesaTransaction(id={self.id}, checkout={self.checkout_request_id}, status={self.status})>"

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING

    @property
    def is_successful(self) -> bool:
        return self.status == PaymentStatus.COMPLETED
