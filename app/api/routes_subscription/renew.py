"""Subscription renewal endpoint."""
from fastapi import APIRouter

from app.api.dependencies import SubscriptionServiceDep

from .schemas import PaidPlanRequest, RenewalOut, SubscriptionOut

router = APIRouter()


@router.post("/renew-subscription", response_model=RenewalOut)
def renew_subscription(body: PaidPlanRequest, service: SubscriptionServiceDep):
    """
    Renew or extend a plan.

    While the current plan is still running the new period starts where it ends and
    unused credits carry over (``renewal_type=extension``). Otherwise a fresh period
    starts now (``renewal_type=renewal``). The amount must equal the plan price.
    """
    result = service.renew_or_extend(body.user_id, body.plan_id, body.transaction_id, body.amount)
    verb = "extended" if result.renewal_type == "extension" else "renewed"
    return RenewalOut(
        message=f"Subscription {verb} successfully",
        subscription=SubscriptionOut.from_subscription(result.subscription),
        credits_added=result.credits_added,
        total_credits=result.total_credits,
        transaction_id=body.transaction_id,
        renewal_type=result.renewal_type,
    )
