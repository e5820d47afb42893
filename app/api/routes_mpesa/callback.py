"""Daraja result callback endpoint."""
import json
import logging

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from app.api.dependencies import CallbackProcessorDep
from app.api.rate_limit import RATE_LIMITS, limiter
from app.services.mpesa import ACK

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/callback")
@limiter.limit(RATE_LIMITS["mpesa_callback"])
async def mpesa_callback(request: Request, processor: CallbackProcessorDep) -> dict:
    """Always acknowledges with HTTP 200; failures are logged, never returned to Safaricom."""
    raw = await request.body()
    try:
        payload = json.loads(raw or b"{}")
    except ValueError:
        logger.error("M-Pesa callback body is not JSON (%s bytes)", len(raw))
        return dict(ACK)
    return await run_in_threadpool(processor.process, payload)
