"""Custom exception hierarchy for Sokofiti.

Every error raised by the service layer inherits from ``SokofitiException`` so the
API layer can render them through one handler with a consistent envelope.

Error codes follow pattern: [CATEGORY][NUMBER]
- VAL: Request validation errors (001-099)
- SUB: Subscription/credit rule errors (100-199)
- PAY: Payment/gateway errors (200-299)
- SYS: System errors (400-499)
"""

from __future__ import annotations

from typing import Any


class SokofitiException(Exception):
    """Base exception for all Sokofiti application errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with user-facing message and metadata.

        Args:
            message: User-facing error message (shown by the mobile app)
            code: Unique error code (e.g., "SUB101")
            status_code: HTTP status code (default: 400 Bad Request)
            details: Optional additional context
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        return {
            "success": False,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


# ============================================================================
# VALIDATION ERRORS (VAL001-099)
# ============================================================================

class ValidationError(SokofitiException):
    """Input failed a business-level validation rule."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(
            message=message,
            code="VAL001",
            status_code=400,
            details={"field": field} if field else {},
        )


class InvalidPhoneNumberError(ValidationError):
    """Phone number is not in 2547XXXXXXXX format."""

    def __init__(self, phone_number: str):
        super().__init__(
            "Invalid phone number format. Use format: 254XXXXXXXXX",
            field="phone_number",
        )
        self.code = "VAL002"
        self.details["phone_number"] = phone_number


# ============================================================================
# SUBSCRIPTION / CREDIT ERRORS (SUB100-199)
# ============================================================================

class SubscriptionError(SokofitiException):
    """Base class for subscription and credit rule violations."""
    pass


class PlanNotFoundError(SubscriptionError):
    """Plan is unknown or has been deactivated."""

    def __init__(self, plan_id: str):
        super().__init__(
            message="Plan not found or inactive",
            code="SUB100",
            status_code=404,
            details={"plan_id": plan_id},
        )


class AlreadyActiveError(SubscriptionError):
    """User already has this plan active."""

    def __init__(self, plan_id: str):
        super().__init__(
            message="Free plan is already active",
            code="SUB101",
            status_code=409,
            details={"plan_id": plan_id},
        )


class NoActiveSubscriptionError(SubscriptionError):
    def __init__(self, message: str = "No active subscription found"):
        super().__init__(message=message, code="SUB102", status_code=404)


class NoCreditsRemainingError(SubscriptionError):
    def __init__(self, subscription_id: int):
        super().__init__(
            message="No credits remaining",
            code="SUB103",
            status_code=402,
            details={"subscription_id": subscription_id},
        )


class SubscriptionExpiredError(SubscriptionError):
    def __init__(self, subscription_id: int):
        super().__init__(
            message="Subscription has expired",
            code="SUB104",
            status_code=410,
            details={"subscription_id": subscription_id},
        )


class CreditAlreadyConsumedError(SubscriptionError):
    """A credit was already spent on this listing."""

    def __init__(self, listing_id: int):
        super().__init__(
            message="Credit already consumed for this listing",
            code="SUB105",
            status_code=409,
            details={"listing_id": listing_id},
        )


class AmountMismatchError(SubscriptionError):
    """Paid amount differs from the catalogue price."""

    def __init__(self, expected: Any, received: Any):
        super().__init__(
            message=f"Payment amount mismatch. Expected: {expected}, Received: {received}",
            code="SUB106",
            status_code=400,
            details={"expected": str(expected), "received": str(received)},
        )


class InvalidCreditPackageError(SubscriptionError):
    def __init__(self, package: str):
        super().__init__(
            message="Invalid credit package",
            code="SUB107",
            status_code=400,
            details={"package": package},
        )


# ============================================================================
# PAYMENT ERRORS (PAY200-299)
# ============================================================================

class PaymentError(SokofitiException):
    """Base class for payment-related errors."""
    pass


class PaymentGatewayError(PaymentError):
    """Daraja could not be reached or rejected the request. Safe to retry."""

    def __init__(self, reason: str, gateway_response: dict[str, Any] | None = None):
        super().__init__(
            message=f"M-Pesa is currently unavailable: {reason}",
            code="PAY200",
            status_code=503,
            details={"reason": reason, "gateway_response": gateway_response or {}},
        )


class PaymentAlreadyProcessedError(PaymentError):
    """Payment has already been processed."""

    def __init__(self, reference: str):
        super().__init__(
            message="This payment has already been processed.",
            code="PAY201",
            status_code=409,
            details={"reference": reference},
        )


class TransactionNotFoundError(PaymentError):
    def __init__(self, reference: str | None = None):
        super().__init__(
            message="Transaction not found",
            code="PAY202",
            status_code=404,
            details={"reference": reference} if reference else {},
        )


# ============================================================================
# SYSTEM ERRORS (SYS400-499)
# ============================================================================

class SystemError(SokofitiException):
    """Base class for system/infrastructure errors."""
    pass


class IntegrityFaultError(SystemError):
    """The datastore rejected a write for a reason the domain rules did not anticipate."""

    def __init__(self, operation: str):
        super().__init__(
            message="Could not complete the request. Please try again.",
            code="SYS400",
            status_code=500,
            details={"operation": operation},
        )


class ConfigurationError(SystemError):
    """Application configuration is invalid or missing."""

    def __init__(self, parameter: str):
        super().__init__(
            message=f"Configuration error: {parameter} is not configured properly",
            code="SYS401",
            status_code=500,
            details={"parameter": parameter},
        )
