"""Subscription plans and the credit ledger.

Sub-modules:
- plans: Plan catalogue
- activate: Free and paid plan activation
- renew: Renewal / extension
- credits: Credit consumption, packages, eligibility and history
"""
from fastapi import APIRouter

from .activate import router as activate_router
from .credits import router as credits_router
from .plans import router as plans_router
from .renew import router as renew_router

# Create main router and include sub-routers
router = APIRouter()
router.include_router(plans_router)
router.include_router(activate_router)
router.include_router(renew_router)
router.include_router(credits_router)

__all__ = ["router"]
