from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from app.core.config import settings


def _create_celery() -> Celery:
    celery = Celery(
        "sokofiti",
        broker=settings.REDIS_URL,
        backend=settings.REDIS_URL,
        include=["app.workers.tasks"],
    )
    celery.conf.update(
        task_default_queue="default",
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_always_eager=settings.ENV.lower() in {"test"},
        task_ignore_result=True,
    )
    # Beat schedule (only active outside test env)
    if settings.ENV.lower() not in {"test"}:
        celery.conf.beat_schedule = {
            "expire-overdue-subscriptions": {
                "task": "subscriptions.expire_overdue",
                "schedule": crontab(minute=5),  # hourly, five past
            },
            "reconcile-pending-mpesa": {
                "task": "payments.reconcile_pending",
                "schedule": crontab(minute="*/10"),
            },
        }
    return celery


celery_app = _create_celery()
