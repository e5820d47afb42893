"""Plan catalogue, user subscriptions and the append-only credit ledger."""
from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base_class import Base


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime | None) -> dt.datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=dt.timezone.utc)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class PlanPeriod(str, enum.Enum):
    MONTH = "month"
    YEAR = "year"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    RENEWED = "renewed"       # Superseded by an extension


class CreditAction(str, enum.Enum):
    PLAN_ACTIVATION = "plan_activation"
    LISTING_CREATION = "listing_creation"
    SUBSCRIPTION_RENEWAL = "subscription_renewal"
    CREDIT_PURCHASE = "credit_purchase"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    REFUND = "refund"


class Plan(Base):
    """A purchasable subscription plan."""
    __tablename__ = "subscription_plans"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    """Stable key used by the mobile app (e.g. 'free', 'starter')"""

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    """Price in KES"""

    period: Mapped[Optional[PlanPeriod]] = mapped_column(
        Enum(PlanPeriod, values_callable=_enum_values, native_enum=False, length=10),
        nullable=True,
    )
    """Billing period; NULL means the subscription never expires"""

    features: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    """Marketing copy shown on the plans screen"""

    credits_granted: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Credits granted on activation. NULL falls back to parsing ``features``."""

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class UserSubscription(Base):
    """One plan tenure for a user.

    Rows are never deleted; superseded tenures move to ``expired`` or ``renewed``.
    A user has at most one ``active`` row at any time.
    """
    __tablename__ = "user_subscriptions"
    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="credits_non_negative"),
        Index(
            "uq_user_subscriptions_one_active",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index(
            "uq_user_subscriptions_transaction_id",
            "transaction_id",
            unique=True,
            sqlite_where=text("transaction_id IS NOT NULL"),
            postgresql_where=text("transaction_id IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    # users table is owned by the accounts service, no FK
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    plan_id: Mapped[str] = mapped_column(ForeignKey("subscription_plans.id"), nullable=False)
    plan: Mapped[Plan] = relationship(lazy="joined", innerjoin=True)

    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    """Payment reference that paid for this tenure (NULL for the free plan)"""

    start_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    end_date: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    """NULL means the tenure never expires"""

    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )
    credits_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def is_overdue(self, now: dt.datetime) -> bool:
        end = as_utc(self.end_date)
        return end is not None and end <= now


class CreditHistory(Base):
    """Append-only record of every credit movement."""
    __tablename__ = "credit_history"
    __table_args__ = (
        Index(
            "uq_credit_history_listing_debit",
            "user_id",
            "listing_id",
            unique=True,
            sqlite_where=text("action_type = 'listing_creation'"),
            postgresql_where=text("action_type = 'listing_creation'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    subscription_id: Mapped[Optional[int]] = mapped_column(ForeignKey("user_subscriptions.id"), nullable=True)
    listing_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    credits_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    action_type: Mapped[CreditAction] = mapped_column(
        Enum(CreditAction, values_callable=_enum_values, native_enum=False, length=30),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
