from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from app.core.config import settings

if TYPE_CHECKING:
    from app.models.payment_models import MpesaTransaction

logger = logging.getLogger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/fcm/send"


def _payment_message(transaction: MpesaTransaction) -> tuple[str, str]:
    status = transaction.status.value
    if status == "completed":
        if transaction.plan is not None:
            return "Payment received", f"Your {transaction.plan.name} plan is now active."
        return "Payment received", "Your credits have been added to your account."
    if status == "cancelled":
        return "Payment cancelled", "You cancelled the M-Pesa request. No money was taken."
    return "Payment failed", transaction.result_desc or "Your M-Pesa payment could not be completed."


class NotificationService:
    """Push notifications to the Sokofiti mobile app (Firebase Cloud Messaging).

    Delivery is best effort: a failed push never affects the payment or ledger state.
    """

    def __init__(self):
        self.enabled = settings.NOTIFICATIONS_ENABLED
        self.server_key = settings.FCM_SERVER_KEY

    def payment_result(self, transaction: MpesaTransaction) -> None:
        """Queue a push telling the user how their M-Pesa payment ended."""
        if not self.enabled:
            return
        from app.workers.tasks.notification_tasks import send_push_notification

        title, body = _payment_message(transaction)
        data = {
            "type": "payment_result",
            "checkout_request_id": transaction.checkout_request_id,
            "status": transaction.status.value,
        }
        try:
            send_push_notification.delay(transaction.user_id, title, body, data)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not queue payment notification user=%s: %s", transaction.user_id, exc)

    def send_push(self, user_id: int, title: str, body: str, data: dict[str, Any] | None = None) -> bool:
        """Send a push to every device subscribed to the user's topic."""
        if not self.server_key:
            logger.info("FCM not configured; skipping push to user=%s", user_id)
            return False
        payload = {
            "to": f"/topics/user_{user_id}",
            "notification": {"title": title, "body": body},
            "data": data or {},
        }
        headers = {"Authorization": f"key={self.server_key}"}
        try:
            response = httpx.post(FCM_SEND_URL, json=payload, headers=headers, timeout=10.0)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("FCM push rejected user=%s status=%s", user_id, e.response.status_code)
            return False
        except httpx.RequestError as e:
            logger.warning("FCM push failed user=%s: %s", user_id, e)
            return False
        logger.info("Push sent user=%s title=%s", user_id, title)
        return True
