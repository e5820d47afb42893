"""Daraja STK result codes and how they map onto our payment states."""
from __future__ import annotations

from app.models.payment_models import PaymentStatus

SUCCESS = 0
CANCELLED_BY_USER = 1032
USER_UNREACHABLE = 1037

RESULT_DESCRIPTIONS: dict[int, str] = {
    0: "The service request is processed successfully.",
    1: "The balance is insufficient for the transaction.",
    2001: "The initiator information is invalid.",
    1001: "Unable to lock subscriber, a transaction is already in process for the current subscriber.",
    1019: "Transaction has expired.",
    1025: "An error occurred while sending a push request.",
    1032: "Request cancelled by user.",
    1037: "DS timeout user cannot be reached.",
    9999: "An error occurred while sending a push request.",
}


def status_for_callback(result_code: int) -> PaymentStatus:
    """Callbacks are final: anything other than success or cancel is a failure."""
    if result_code == SUCCESS:
        return PaymentStatus.COMPLETED
    if result_code == CANCELLED_BY_USER:
        return PaymentStatus.CANCELLED
    return PaymentStatus.FAILED


def status_for_query(result_code: int) -> PaymentStatus:
    """Status queries may report the prompt is still unanswered (1037)."""
    if result_code == USER_UNREACHABLE:
        return PaymentStatus.PENDING
    return status_for_callback(result_code)


def describe(result_code: int, fallback: str | None = None) -> str:
    return fallback or RESULT_DESCRIPTIONS.get(result_code, "Unknown result code")
