"""M-Pesa STK push payments.

Sub-modules:
- stk_push: Payment initiation
- callback: Daraja result callback
- status: Status query and payment history
"""
from fastapi import APIRouter

from .callback import router as callback_router
from .status import router as status_router
from .stk_push import router as stk_push_router

router = APIRouter()
router.include_router(stk_push_router)
router.include_router(callback_router)
router.include_router(status_router)

__all__ = ["router"]
