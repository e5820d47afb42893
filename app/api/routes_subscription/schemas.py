"""Request and response schemas for subscription and credit endpoints.

Responses are built from ORM rows through the ``from_*`` helpers so internal columns
(transaction ids on ledger rows, raw timestamps from SQLite) never leak unnormalised.
"""
from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.subscription_models import CreditHistory, Plan, UserSubscription, as_utc
from app.services.plan_catalog import credits_for_plan


# ── Requests ──────────────────────────────────────────────────────────

class UserRequest(BaseModel):
    user_id: int = Field(gt=0)


class PaidPlanRequest(BaseModel):
    user_id: int = Field(gt=0)
    plan_id: str = Field(min_length=1, max_length=50)
    transaction_id: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(ge=0)


class ConsumeCreditRequest(BaseModel):
    user_id: int = Field(gt=0)
    listing_id: int = Field(gt=0)


class PurchaseCreditsRequest(BaseModel):
    user_id: int = Field(gt=0)
    package: str = Field(min_length=1, max_length=20)
    transaction_id: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(ge=0)


# ── Subscription ──────────────────────────────────────────────────────

class SubscriptionOut(BaseModel):
    id: int
    plan_id: str
    plan_name: str
    plan_period: str | None = None
    plan_features: list[str] = []
    start_date: dt.datetime
    end_date: dt.datetime | None = None
    status: str
    credits_remaining: int
    auto_renew: bool
    created_at: dt.datetime

    @classmethod
    def from_subscription(cls, sub: UserSubscription) -> SubscriptionOut:
        return cls(
            id=sub.id,
            plan_id=sub.plan_id,
            plan_name=sub.plan.name,
            plan_period=sub.plan.period.value if sub.plan.period else None,
            plan_features=list(sub.plan.features or []),
            start_date=as_utc(sub.start_date),
            end_date=as_utc(sub.end_date),
            status=sub.status.value,
            credits_remaining=sub.credits_remaining,
            auto_renew=sub.auto_renew,
            created_at=as_utc(sub.created_at),
        )


class ActivationOut(BaseModel):
    success: bool = True
    message: str
    subscription: SubscriptionOut
    credits_added: int
    transaction_id: str | None = None


class RenewalOut(BaseModel):
    success: bool = True
    message: str
    subscription: SubscriptionOut
    credits_added: int
    total_credits: int
    transaction_id: str
    renewal_type: str


# ── Credits ───────────────────────────────────────────────────────────

class ConsumeCreditOut(BaseModel):
    success: bool = True
    message: str
    credits_remaining: int
    credits_used: int
    listing_id: int
    subscription_id: int
    plan_name: str


class PurchaseCreditsOut(BaseModel):
    success: bool = True
    message: str
    credits_added: int
    credits_remaining: int
    package: str
    transaction_id: str
    amount_paid: float


class EligibilityOut(BaseModel):
    success: bool = True
    can_create: bool
    credits_remaining: int
    plan_name: str
    plan_status: str
    plan_id: str | None = None
    subscription_id: int | None = None
    end_date: dt.datetime | None = None
    message: str
    requires_plan: bool


class CreditHistoryItem(BaseModel):
    id: int
    subscription_id: int | None = None
    listing_id: int | None = None
    action_type: str
    credits_added: int
    credits_used: int
    description: str | None = None
    created_at: dt.datetime

    @classmethod
    def from_entry(cls, entry: CreditHistory) -> CreditHistoryItem:
        return cls(
            id=entry.id,
            subscription_id=entry.subscription_id,
            listing_id=entry.listing_id,
            action_type=entry.action_type.value,
            credits_added=entry.credits_added,
            credits_used=entry.credits_used,
            description=entry.description,
            created_at=as_utc(entry.created_at),
        )


class CreditHistoryOut(BaseModel):
    success: bool = True
    history: list[CreditHistoryItem]
    total: int
    limit: int
    offset: int


# ── Plans ─────────────────────────────────────────────────────────────

class PlanOut(BaseModel):
    id: str
    name: str
    price: float
    period: str | None = None
    features: list[str]
    credits: int
    sort_order: int

    @classmethod
    def from_plan(cls, plan: Plan) -> PlanOut:
        return cls(
            id=plan.id,
            name=plan.name,
            price=float(plan.price),
            period=plan.period.value if plan.period else None,
            features=list(plan.features or []),
            credits=credits_for_plan(plan),
            sort_order=plan.sort_order,
        )


class PlansOut(BaseModel):
    success: bool = True
    plans: list[PlanOut]
