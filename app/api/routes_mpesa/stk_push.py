"""STK push initiation endpoint."""
from fastapi import APIRouter, Request

from app.api.dependencies import MpesaServiceDep
from app.api.rate_limit import RATE_LIMITS, limiter

from .schemas import StkPushOut, StkPushRequest

router = APIRouter()


@router.post("/stk-push", response_model=StkPushOut)
@limiter.limit(RATE_LIMITS["stk_push"])
def stk_push(request: Request, body: StkPushRequest, payments: MpesaServiceDep):
    """
    Prompt the customer's phone for an M-Pesa payment.

    **Flow:**
    1. Validate phone (2547XXXXXXXX), amount and what is being bought
    2. Daraja sends the PIN prompt to the phone
    3. A pending transaction is stored, keyed by ``checkout_request_id``
    4. The result arrives on ``/api/mpesa/callback`` (or via ``/api/mpesa/query-status``)

    Pass ``plan_id`` to pay for a plan, or ``credit_package`` to buy credits.
    """
    result = payments.initiate_stk_push(
        user_id=body.user_id,
        phone_number=body.phone_number,
        amount=body.amount,
        account_reference=body.account_reference,
        transaction_desc=body.transaction_desc,
        plan_id=body.plan_id,
        credit_package=body.credit_package,
    )
    return StkPushOut(
        message="STK push sent successfully",
        checkout_request_id=result.transaction.checkout_request_id,
        merchant_request_id=result.transaction.merchant_request_id,
        response_code=result.response_code,
        response_description=result.response_description,
        customer_message=result.customer_message,
    )
