"""Credit endpoints: consumption, package purchase, eligibility and history."""
import logging
from typing import Annotated

from fastapi import APIRouter, Query, Request

from app.api.dependencies import SubscriptionServiceDep
from app.api.rate_limit import RATE_LIMITS, limiter

from .schemas import (
    ConsumeCreditOut,
    ConsumeCreditRequest,
    CreditHistoryItem,
    CreditHistoryOut,
    EligibilityOut,
    PurchaseCreditsOut,
    PurchaseCreditsRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/consume-credit", response_model=ConsumeCreditOut)
@limiter.limit(RATE_LIMITS["consume_credit"])
def consume_credit(request: Request, body: ConsumeCreditRequest, service: SubscriptionServiceDep):
    """Spend one credit on a new listing. A listing can only be charged once."""
    result = service.consume_credit(body.user_id, body.listing_id)
    sub = result.subscription
    return ConsumeCreditOut(
        message="Credit consumed successfully",
        credits_remaining=sub.credits_remaining,
        credits_used=result.credits_used,
        listing_id=result.listing_id,
        subscription_id=sub.id,
        plan_name=sub.plan.name,
    )


@router.post("/purchase-credits", response_model=PurchaseCreditsOut)
@limiter.limit(RATE_LIMITS["purchase"])
def purchase_credits(request: Request, body: PurchaseCreditsRequest, service: SubscriptionServiceDep):
    """
    Add a credit package to the active subscription.

    **Packages:** small (5 credits, KES 100), medium (15, KES 250),
    large (30, KES 450), extra_large (60, KES 800).
    """
    result = service.purchase_credits(body.user_id, body.package, body.transaction_id, body.amount)
    return PurchaseCreditsOut(
        message=f"{result.package.credits} credits added successfully",
        credits_added=result.package.credits,
        credits_remaining=result.subscription.credits_remaining,
        package=result.package.key,
        transaction_id=body.transaction_id,
        amount_paid=float(result.amount_paid),
    )


@router.get("/check-listing-eligibility", response_model=EligibilityOut)
def check_listing_eligibility(
    user_id: Annotated[int, Query(gt=0)],
    service: SubscriptionServiceDep,
):
    """Whether the user can create a listing right now, and why not if they cannot."""
    eligibility = service.check_listing_eligibility(user_id)
    return EligibilityOut(
        can_create=eligibility.can_create,
        credits_remaining=eligibility.credits_remaining,
        plan_name=eligibility.plan_name,
        plan_status=eligibility.plan_status,
        plan_id=eligibility.plan_id,
        subscription_id=eligibility.subscription_id,
        end_date=eligibility.end_date,
        message=eligibility.message,
        requires_plan=eligibility.requires_plan,
    )


@router.get("/credit-history", response_model=CreditHistoryOut)
def credit_history(
    user_id: Annotated[int, Query(gt=0)],
    service: SubscriptionServiceDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    entries, total = service.credit_history(user_id, limit=limit, offset=offset)
    return CreditHistoryOut(
        history=[CreditHistoryItem.from_entry(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )
