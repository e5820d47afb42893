"""Plan activation endpoints."""
import logging

from fastapi import APIRouter

from app.api.dependencies import SubscriptionServiceDep

from .schemas import ActivationOut, PaidPlanRequest, SubscriptionOut, UserRequest

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/activate-free-plan", response_model=ActivationOut)
def activate_free_plan(body: UserRequest, service: SubscriptionServiceDep):
    """
    Put the user on the free plan.

    Any other active plan is expired. Fails with 409 if the free plan is already active.
    """
    result = service.activate_free_plan(body.user_id)
    return ActivationOut(
        message="Free plan activated successfully",
        subscription=SubscriptionOut.from_subscription(result.subscription),
        credits_added=result.credits_added,
    )


@router.post("/activate-subscription", response_model=ActivationOut)
def activate_subscription(body: PaidPlanRequest, service: SubscriptionServiceDep):
    """
    Activate a paid plan for a payment the client has already completed.

    **Flow:**
    1. Client pays (M-Pesa) and receives a transaction id
    2. This endpoint expires the current plan and starts the new one
    3. Plan credits are granted and written to the credit ledger
    """
    result = service.activate_paid_plan(body.user_id, body.plan_id, body.transaction_id, body.amount)
    return ActivationOut(
        message="Subscription activated successfully",
        subscription=SubscriptionOut.from_subscription(result.subscription),
        credits_added=result.credits_added,
        transaction_id=body.transaction_id,
    )
