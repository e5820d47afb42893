"""Common dependencies: database session and service construction."""
from typing import Annotated, TypeAlias

from fastapi import Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.mpesa import DarajaClient, MpesaCallbackProcessor, MpesaPaymentService, get_daraja_client
from app.services.subscription_service import SubscriptionService

DbDep: TypeAlias = Annotated[Session, Depends(get_db)]


def daraja_client() -> DarajaClient:
    """Shared Daraja client; tests override this with a mock-transport client."""
    return get_daraja_client()


def get_subscription_service(db: DbDep) -> SubscriptionService:
    return SubscriptionService(db)


def get_mpesa_service(
    db: DbDep,
    client: Annotated[DarajaClient, Depends(daraja_client)],
) -> MpesaPaymentService:
    return MpesaPaymentService(db, client)


def get_callback_processor(
    payments: Annotated[MpesaPaymentService, Depends(get_mpesa_service)],
) -> MpesaCallbackProcessor:
    return MpesaCallbackProcessor(payments)


SubscriptionServiceDep: TypeAlias = Annotated[SubscriptionService, Depends(get_subscription_service)]
MpesaServiceDep: TypeAlias = Annotated[MpesaPaymentService, Depends(get_mpesa_service)]
CallbackProcessorDep: TypeAlias = Annotated[MpesaCallbackProcessor, Depends(get_callback_processor)]
