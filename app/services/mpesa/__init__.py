"""M-Pesa (Safaricom Daraja) payments.

- ``DarajaClient``: OAuth, STK push and status query against Daraja
- ``MpesaPaymentService``: initiates payments and reconciles their results
- ``MpesaCallbackProcessor``: applies Daraja callbacks and always acknowledges them
"""
from .callback import ACK, MpesaCallbackProcessor, parse_stk_callback
from .client import DarajaClient
from .config import MpesaConfig
from .factory import get_daraja_client
from .payment_service import MpesaPaymentService, PaymentOutcome, StkPushResult

__all__ = [
    "ACK",
    "DarajaClient",
    "MpesaCallbackProcessor",
    "MpesaConfig",
    "MpesaPaymentService",
    "PaymentOutcome",
    "StkPushResult",
    "get_daraja_client",
    "parse_stk_callback",
]
