"""Metrics facade.

Service code should ONLY call the semantic helpers here so the backend can change freely.
Counters live in the default Prometheus registry and are exposed at ``/metrics``.
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger("metrics")

_SUBSCRIPTION_ACTIVATED = Counter(
    "subscription_activated_total", "Subscriptions activated", ["plan"]
)
_SUBSCRIPTION_RENEWED = Counter(
    "subscription_renewed_total", "Paid renewals by kind (extension or renewal)", ["kind"]
)
_SUBSCRIPTIONS_EXPIRED = Counter(
    "subscriptions_expired_total", "Subscriptions flipped to expired by the background sweep"
)
_CREDITS_CONSUMED = Counter("credits_consumed_total", "Credits spent on listing creation")
_CREDITS_PURCHASED = Counter(
    "credits_purchased_total", "Credits bought through credit packages", ["package"]
)
_STK_PUSH_INITIATED = Counter(
    "mpesa_stk_push_initiated_total", "STK push requests accepted by Daraja", ["purpose"]
)
_STK_PUSH_FAILED = Counter(
    "mpesa_stk_push_failed_total", "STK push requests Daraja rejected or could not be reached"
)
_MPESA_RESULT = Counter(
    "mpesa_payment_result_total", "Final M-Pesa payment outcomes", ["status", "source"]
)
_MPESA_DUPLICATE_RESULT = Counter(
    "mpesa_duplicate_result_total", "Callbacks or polls for transactions already settled"
)
_MPESA_CONFIRM_LATENCY = Histogram(
    "mpesa_confirmation_latency_seconds",
    "Latency between STK push and final payment result",
    buckets=(5, 10, 15, 30, 45, 60, 90, 120, 180, 300, 600, 1800),
)


def subscription_activated(plan_id: str) -> None:
    _SUBSCRIPTION_ACTIVATED.labels(plan=plan_id).inc()


def subscription_renewed(kind: str) -> None:
    _SUBSCRIPTION_RENEWED.labels(kind=kind).inc()


def subscriptions_expired(count: int) -> None:
    _SUBSCRIPTIONS_EXPIRED.inc(count)


def credit_consumed() -> None:
    _CREDITS_CONSUMED.inc()


def credits_purchased(package: str, credits: int) -> None:
    _CREDITS_PURCHASED.labels(package=package).inc(credits)


def stk_push_initiated(purpose: str) -> None:
    _STK_PUSH_INITIATED.labels(purpose=purpose).inc()


def stk_push_failed() -> None:
    _STK_PUSH_FAILED.inc()


def mpesa_result(status: str, source: str, latency_seconds: float | None = None) -> None:
    _MPESA_RESULT.labels(status=status, source=source).inc()
    if latency_seconds is not None and latency_seconds >= 0:
        _MPESA_CONFIRM_LATENCY.observe(latency_seconds)


def mpesa_duplicate_result() -> None:
    logger.debug("Duplicate M-Pesa result ignored")
    _MPESA_DUPLICATE_RESULT.inc()
