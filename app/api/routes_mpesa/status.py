"""Payment status and history endpoints."""
from typing import Annotated

from fastapi import APIRouter, Query, Request

from app.api.dependencies import MpesaServiceDep
from app.api.rate_limit import RATE_LIMITS, limiter
from app.services.mpesa.payment_service import total_pages

from .schemas import (
    Pagination,
    PaymentHistoryItem,
    PaymentHistoryOut,
    QueryStatusRequest,
    TransactionStatusOut,
)

router = APIRouter()


@router.post("/query-status", response_model=TransactionStatusOut)
@limiter.limit(RATE_LIMITS["query_status"])
def query_status(request: Request, body: QueryStatusRequest, payments: MpesaServiceDep):
    """
    Current state of an STK payment.

    Payments still pending after the callback grace period are checked with Daraja
    before answering.
    """
    transaction = payments.query_status(body.checkout_request_id)
    return TransactionStatusOut.from_transaction(transaction)


@router.get("/payment-history", response_model=PaymentHistoryOut)
def payment_history(
    user_id: Annotated[int, Query(gt=0)],
    payments: MpesaServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
):
    rows, total = payments.payment_history(user_id, page=page, limit=limit)
    return PaymentHistoryOut(
        payments=[PaymentHistoryItem.from_transaction(r) for r in rows],
        pagination=Pagination(
            current_page=page,
            per_page=limit,
            total=total,
            total_pages=total_pages(total, limit),
            has_more=page * limit < total,
        ),
    )
