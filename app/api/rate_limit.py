import logging

from prometheus_client import Counter
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

logger = logging.getLogger(__name__)

_PROM_RATE_LIMIT = Counter("sokofiti_rate_limit_exceeded_events", "Rate limit exceeded events (handler invocations)")

_IS_PROD = settings.ENV.lower() == "prod"


def _storage_uri() -> str:
    if not _IS_PROD:
        logger.info("Rate limiter using in-memory storage (dev/test mode)")
        return "memory://"
    return settings.REDIS_URL or "memory://"


limiter = Limiter(key_func=get_remote_address, storage_uri=_storage_uri())

RATE_LIMITS = {
    # Each STK push rings the customer's phone
    "stk_push": "5/minute" if _IS_PROD else "100/minute",
    "query_status": "30/minute" if _IS_PROD else "300/minute",
    # Safaricom's callback servers share a handful of IPs
    "mpesa_callback": "300/minute",
    "consume_credit": "60/minute" if _IS_PROD else "600/minute",
    "purchase": "10/minute" if _IS_PROD else "100/minute",
}


def increment_rate_limit_exceeded() -> None:
    _PROM_RATE_LIMIT.inc()
