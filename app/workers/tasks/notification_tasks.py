"""Push notification tasks."""
from __future__ import annotations

import logging
from typing import Any

from app.services.notification_service import NotificationService
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="notifications.send_push", ignore_result=True)
def send_push_notification(user_id: int, title: str, body: str, data: dict[str, Any] | None = None) -> bool:
    """Deliver one push; failures are logged by the service and never retried."""
    return NotificationService().send_push(user_id, title, body, data)
