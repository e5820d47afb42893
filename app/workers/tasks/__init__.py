"""
Celery Tasks Module.

All tasks are registered with the Celery app through this package.

Sub-modules:
- subscription_tasks: expiry sweep for overdue subscriptions
- payment_tasks: reconciliation of M-Pesa payments whose callback never arrived
- notification_tasks: push notifications to the mobile app
"""
from __future__ import annotations

from .notification_tasks import send_push_notification
from .payment_tasks import reconcile_pending_payments
from .subscription_tasks import expire_overdue_subscriptions

__all__ = [
    "expire_overdue_subscriptions",
    "reconcile_pending_payments",
    "send_push_notification",
]
