"""M-Pesa reconciliation tasks."""
from __future__ import annotations

import logging

from app.db.session import session_scope
from app.services.mpesa import MpesaPaymentService, get_daraja_client
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="payments.reconcile_pending",
    autoretry_for=(Exception,),
    retry_backoff=10,
    retry_jitter=True,
    retry_kwargs={"max_retries": 4},
)
def reconcile_pending_payments(limit: int = 100) -> int:
    """Poll Daraja for pending STK payments older than the callback grace period."""
    with session_scope() as db:
        settled = MpesaPaymentService(db, get_daraja_client()).reconcile_stale_pending(limit=limit)
    logger.info("Pending payment reconciliation finished | settled=%s", settled)
    return settled
