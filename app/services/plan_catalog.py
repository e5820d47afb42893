"""Plan catalogue lookups, credit grants and credit packages."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import InvalidCreditPackageError, PlanNotFoundError
from app.models.subscription_models import Plan, PlanPeriod

logger = logging.getLogger(__name__)

# "7 free credits(ads)", "10 credits (ads)", "1 credit (ad)"
_FREE_CREDITS_RE = re.compile(r"(\d+)\s+(?:free\s+)?credits?", re.IGNORECASE)
_PAID_CREDITS_RE = re.compile(r"(\d+)\s+credits?", re.IGNORECASE)


@dataclass(frozen=True)
class CreditPackage:
    key: str
    credits: int
    price: Decimal


CREDIT_PACKAGES: dict[str, CreditPackage] = {
    "small": CreditPackage("small", 5, Decimal("100")),
    "medium": CreditPackage("medium", 15, Decimal("250")),
    "large": CreditPackage("large", 30, Decimal("450")),
    "extra_large": CreditPackage("extra_large", 60, Decimal("800")),
}


# Catalogue shipped with the mobile app; seeded by scripts/seed_plans.py
DEFAULT_PLANS: list[dict] = [
    {
        "id": "free",
        "name": "Free Plan",
        "price": Decimal("0"),
        "period": None,
        "features": ["Ads auto-renew Every 48 hours", "7 free credits(ads)"],
        "sort_order": 1,
    },
    {
        "id": "top",
        "name": "Top",
        "price": Decimal("250"),
        "period": None,
        "features": ["7 days listing", "1 credit (ad)", "Top of category listing"],
        "sort_order": 2,
    },
    {
        "id": "top_featured",
        "name": "Top Featured",
        "price": Decimal("400"),
        "period": PlanPeriod.MONTH,
        "features": ["1 credit (ad)", "30 days featured listing", "Featured badge"],
        "sort_order": 3,
    },
    {
        "id": "starter",
        "name": "Starter",
        "price": Decimal("3000"),
        "period": PlanPeriod.MONTH,
        "features": ["10 credits (ads)", "Ads auto-renew every 24 hours", "Basic analytics"],
        "sort_order": 4,
    },
    {
        "id": "basic",
        "name": "Basic",
        "price": Decimal("5000"),
        "period": PlanPeriod.MONTH,
        "features": ["27 credits (ads)", "Ads auto-renew every 12 hours", "Verified seller badge"],
        "sort_order": 5,
    },
    {
        "id": "premium",
        "name": "Premium",
        "price": Decimal("7000"),
        "period": PlanPeriod.MONTH,
        "features": ["45 credits (ads)", "Ads auto-renew every 6 hours", "Priority support"],
        "sort_order": 6,
    },
    {
        "id": "business",
        "name": "Business",
        "price": Decimal("10000"),
        "period": PlanPeriod.MONTH,
        "features": ["74 credits (ads)", "Ads auto-renew every 3 hours", "Dedicated account manager"],
        "sort_order": 7,
    },
]


def get_credit_package(key: str) -> CreditPackage:
    try:
        return CREDIT_PACKAGES[key]
    except KeyError:
        raise InvalidCreditPackageError(key) from None


def credits_for_plan(plan: Plan) -> int:
    """Number of credits a fresh activation of ``plan`` grants.

    An explicit ``credits_granted`` wins. Older catalogue rows only describe the grant in
    their feature copy, so the first "<n> credits" phrase is used; the free plan falls back
    to ``FREE_PLAN_DEFAULT_CREDITS`` when nothing matches or the phrase says zero, paid
    plans to zero.
    """
    if plan.credits_granted is not None:
        return plan.credits_granted
    is_free = plan.id == settings.FREE_PLAN_ID
    pattern = _FREE_CREDITS_RE if is_free else _PAID_CREDITS_RE
    for feature in plan.features or []:
        match = pattern.search(str(feature))
        if match:
            credits = int(match.group(1))
            if credits == 0 and is_free:
                break
            return credits
    if is_free:
        return settings.FREE_PLAN_DEFAULT_CREDITS
    logger.warning("Plan %s grants no credits (no explicit grant, no match in features)", plan.id)
    return 0


class PlanCatalog:
    def __init__(self, db: Session):
        self.db = db

    def get_plan(self, plan_id: str, active_only: bool = True) -> Plan:
        plan = self.db.get(Plan, plan_id)
        if plan is None or (active_only and not plan.is_active):
            raise PlanNotFoundError(plan_id)
        return plan

    def list_plans(self) -> list[Plan]:
        stmt = select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.sort_order, Plan.price)
        return list(self.db.scalars(stmt))

    def credits_for(self, plan: Plan) -> int:
        return credits_for_plan(plan)


def seed_default_plans(db: Session) -> int:
    """Insert the default catalogue rows that are missing. Returns the number inserted."""
    inserted = 0
    for data in DEFAULT_PLANS:
        if db.get(Plan, data["id"]) is not None:
            continue
        db.add(Plan(is_active=True, **data))
        inserted += 1
    db.flush()
    logger.info("Seeded %s subscription plans", inserted)
    return inserted
