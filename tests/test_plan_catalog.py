"""Plan catalogue: seeding, lookups and how many credits each plan grants."""
from decimal import Decimal

import pytest

from app.core.exceptions import InvalidCreditPackageError, PlanNotFoundError
from app.models.subscription_models import Plan, PlanPeriod
from app.services.plan_catalog import (
    CREDIT_PACKAGES,
    PlanCatalog,
    credits_for_plan,
    get_credit_package,
    seed_default_plans,
)


class TestCatalogue:
    def test_lists_active_plans_in_display_order(self, db_session):
        plans = PlanCatalog(db_session).list_plans()

        assert [p.id for p in plans] == [
            "free", "top", "top_featured", "starter", "basic", "premium", "business",
        ]

    def test_inactive_plans_are_hidden(self, db_session):
        db_session.get(Plan, "business").is_active = False
        db_session.commit()

        catalog = PlanCatalog(db_session)
        assert "business" not in [p.id for p in catalog.list_plans()]
        with pytest.raises(PlanNotFoundError):
            catalog.get_plan("business")
        assert catalog.get_plan("business", active_only=False).name == "Business"

    def test_unknown_plan(self, db_session):
        with pytest.raises(PlanNotFoundError) as exc:
            PlanCatalog(db_session).get_plan("gold")
        assert exc.value.status_code == 404
        assert exc.value.code == "SUB100"

    def test_seeding_twice_inserts_nothing(self, db_session):
        assert seed_default_plans(db_session) == 0


class TestCreditsForPlan:
    @pytest.mark.parametrize(
        "plan_id,expected",
        [("free", 7), ("top", 1), ("top_featured", 1), ("starter", 10), ("basic", 27), ("premium", 45), ("business", 74)],
    )
    def test_default_catalogue_grants(self, db_session, plan_id, expected):
        plan = PlanCatalog(db_session).get_plan(plan_id)
        assert credits_for_plan(plan) == expected

    def test_explicit_grant_wins_over_features(self):
        plan = Plan(id="starter", name="Starter", price=Decimal("3000"), features=["10 credits (ads)"], credits_granted=12)
        assert credits_for_plan(plan) == 12

    def test_free_plan_falls_back_to_default(self):
        plan = Plan(id="free", name="Free Plan", price=Decimal("0"), features=["Ads auto-renew Every 48 hours"])
        assert credits_for_plan(plan) == 7

    def test_free_plan_with_zero_credit_copy_gets_default(self):
        plan = Plan(id="free", name="Free Plan", price=Decimal("0"), features=["0 free credits", "Basic support"])
        assert credits_for_plan(plan) == 7

    def test_paid_plan_without_grant_gives_nothing(self):
        plan = Plan(id="gold", name="Gold", price=Decimal("9000"), period=PlanPeriod.MONTH, features=["Gold badge"])
        assert credits_for_plan(plan) == 0


class TestCreditPackages:
    def test_known_packages(self):
        assert {k: (p.credits, p.price) for k, p in CREDIT_PACKAGES.items()} == {
            "small": (5, Decimal("100")),
            "medium": (15, Decimal("250")),
            "large": (30, Decimal("450")),
            "extra_large": (60, Decimal("800")),
        }

    def test_unknown_package(self):
        with pytest.raises(InvalidCreditPackageError):
            get_credit_package("huge")
