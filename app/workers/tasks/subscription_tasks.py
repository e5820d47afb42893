"""Subscription maintenance tasks."""
from __future__ import annotations

import logging

from app.db.session import session_scope
from app.services.subscription_service import SubscriptionService
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="subscriptions.expire_overdue",
    autoretry_for=(Exception,),
    retry_backoff=30,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def expire_overdue_subscriptions() -> int:
    """Flip active subscriptions past their end date to expired."""
    with session_scope() as db:
        expired = SubscriptionService(db).expire_overdue()
    logger.info("Expiry sweep finished | expired=%s", expired)
    return expired
