"""Subscription lifecycle: activation, renewal, credit consumption and purchase.

Every public mutation runs as one unit of work. Nothing is committed unless the whole
operation succeeds; the single exception is the lazy expiry flip, which is persisted
before ``SubscriptionExpiredError`` is raised so later reads see the real state.

The ``stage_*`` methods perform the same work without committing so the payment
reconciler can fulfil a payment inside its own transaction.
"""
from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterator

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import metrics
from app.core.config import settings
from app.core.exceptions import (
    AlreadyActiveError,
    AmountMismatchError,
    CreditAlreadyConsumedError,
    IntegrityFaultError,
    NoActiveSubscriptionError,
    NoCreditsRemainingError,
    PaymentAlreadyProcessedError,
    SokofitiException,
    SubscriptionExpiredError,
    ValidationError,
)
from app.models.payment_models import PaymentMethod, PaymentStatus, PaymentTransaction, PaymentType
from app.models.subscription_models import (
    CreditAction,
    CreditHistory,
    Plan,
    PlanPeriod,
    SubscriptionStatus,
    UserSubscription,
    as_utc,
    utcnow,
)
from app.services.credit_ledger import CreditLedger
from app.services.plan_catalog import CreditPackage, PlanCatalog, get_credit_package

logger = logging.getLogger(__name__)


@dataclass
class ActivationResult:
    subscription: UserSubscription
    credits_added: int


@dataclass
class RenewalResult:
    subscription: UserSubscription
    credits_added: int
    total_credits: int
    renewal_type: str  # "extension" | "renewal"


@dataclass
class ConsumptionResult:
    subscription: UserSubscription
    listing_id: int
    credits_used: int = 1


@dataclass
class PurchaseResult:
    subscription: UserSubscription
    package: CreditPackage
    amount_paid: Decimal


@dataclass
class Eligibility:
    can_create: bool
    credits_remaining: int
    plan_name: str
    plan_status: str  # "active" | "expired" | "inactive"
    message: str
    requires_plan: bool
    plan_id: str | None = None
    subscription_id: int | None = None
    end_date: dt.datetime | None = None


def effective_status(subscription: UserSubscription, now: dt.datetime) -> SubscriptionStatus:
    """Stored status, except an ``active`` row past its end date reads as expired."""
    if subscription.status == SubscriptionStatus.ACTIVE and subscription.is_overdue(now):
        return SubscriptionStatus.EXPIRED
    return subscription.status


def end_date_for(plan: Plan, start: dt.datetime) -> dt.datetime | None:
    # relativedelta clamps to month end: Jan 31 + 1 month = Feb 28/29
    if plan.period == PlanPeriod.MONTH:
        return start + relativedelta(months=1)
    if plan.period == PlanPeriod.YEAR:
        return start + relativedelta(years=1)
    return None


def _as_decimal(amount) -> Decimal:
    return amount if isinstance(amount, Decimal) else Decimal(str(amount))


class SubscriptionService:
    def __init__(self, db: Session, clock: Callable[[], dt.datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.catalog = PlanCatalog(db)
        self.ledger = CreditLedger(db)

    # ------------------------------------------------------------------ helpers

    @contextmanager
    def _unit_of_work(self, operation: str, **context) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise self._translate_integrity_error(operation, exc, context) from exc
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def _translate_integrity_error(operation: str, exc: IntegrityError, context: dict) -> SokofitiException:
        detail = str(exc.orig)
        if "transaction_id" in detail and context.get("transaction_id"):
            return PaymentAlreadyProcessedError(context["transaction_id"])
        if operation == "consume_credit":
            return CreditAlreadyConsumedError(context["listing_id"])
        # PostgreSQL names the index; SQLite reports the indexed column
        if operation == "activate_free_plan" and (
            "uq_user_subscriptions_one_active" in detail or "user_subscriptions.user_id" in detail
        ):
            return AlreadyActiveError(context["plan_id"])
        logger.error("Integrity violation during %s: %s", operation, detail)
        return IntegrityFaultError(operation)

    def _active_subscription(self, user_id: int, lock: bool = False) -> UserSubscription | None:
        stmt = (
            select(UserSubscription)
            .where(UserSubscription.user_id == user_id, UserSubscription.status == SubscriptionStatus.ACTIVE)
            .order_by(UserSubscription.created_at.desc(), UserSubscription.id.desc())
            .limit(1)
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.scalars(stmt).first()

    def _supersede_active(
        self, user_id: int, new_status: SubscriptionStatus, reject_plan: str | None = None
    ) -> None:
        """Move the user's active rows to ``new_status`` under a row lock.

        With ``reject_plan`` set, a locked active row on that plan raises
        ``AlreadyActiveError`` instead, so the check and the lock see the same rows.
        """
        stmt = (
            select(UserSubscription)
            .where(UserSubscription.user_id == user_id, UserSubscription.status == SubscriptionStatus.ACTIVE)
            .with_for_update()
        )
        rows = list(self.db.scalars(stmt))
        if reject_plan is not None and any(row.plan_id == reject_plan for row in rows):
            raise AlreadyActiveError(reject_plan)
        for row in rows:
            row.status = new_status
        # The partial unique index needs the old row out of 'active' before the insert
        self.db.flush()

    def _ensure_reference_unused(self, transaction_id: str) -> None:
        used = self.db.scalar(
            select(PaymentTransaction.id).where(PaymentTransaction.transaction_id == transaction_id).limit(1)
        ) or self.db.scalar(
            select(UserSubscription.id).where(UserSubscription.transaction_id == transaction_id).limit(1)
        )
        if used:
            raise PaymentAlreadyProcessedError(transaction_id)

    def _add_credits(self, subscription: UserSubscription, credits: int) -> None:
        self.db.execute(
            update(UserSubscription)
            .where(UserSubscription.id == subscription.id)
            .values(
                credits_remaining=UserSubscription.credits_remaining + credits,
                updated_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(subscription)

    # --------------------------------------------------------------- activation

    def activate_free_plan(self, user_id: int) -> ActivationResult:
        plan = self.catalog.get_plan(settings.FREE_PLAN_ID)
        with self._unit_of_work("activate_free_plan", user_id=user_id, plan_id=plan.id):
            self._supersede_active(user_id, SubscriptionStatus.EXPIRED, reject_plan=plan.id)
            credits = self.catalog.credits_for(plan)
            subscription = UserSubscription(
                user_id=user_id,
                plan_id=plan.id,
                start_date=self.clock(),
                end_date=None,
                status=SubscriptionStatus.ACTIVE,
                credits_remaining=credits,
                auto_renew=False,
            )
            self.db.add(subscription)
            self.db.flush()
            self.ledger.record(
                user_id=user_id,
                subscription_id=subscription.id,
                action=CreditAction.PLAN_ACTIVATION,
                credits_added=credits,
                description="Free plan activation",
            )
        logger.info("Free plan activated user=%s subscription=%s credits=%s", user_id, subscription.id, credits)
        metrics.subscription_activated(plan.id)
        return ActivationResult(subscription=subscription, credits_added=credits)

    def activate_paid_plan(self, user_id: int, plan_id: str, transaction_id: str, amount) -> ActivationResult:
        with self._unit_of_work("activate_paid_plan", user_id=user_id, transaction_id=transaction_id):
            result = self.stage_paid_activation(user_id, plan_id, transaction_id, amount)
        logger.info(
            "Plan %s activated user=%s subscription=%s txn=%s",
            plan_id, user_id, result.subscription.id, transaction_id,
        )
        metrics.subscription_activated(plan_id)
        return result

    def stage_paid_activation(self, user_id: int, plan_id: str, transaction_id: str, amount) -> ActivationResult:
        plan = self.catalog.get_plan(plan_id)
        paid = _as_decimal(amount)
        if paid != plan.price:
            if settings.STRICT_ACTIVATION_AMOUNT:
                raise AmountMismatchError(plan.price, paid)
            logger.warning(
                "Activation amount differs from price plan=%s expected=%s received=%s txn=%s",
                plan.id, plan.price, paid, transaction_id,
            )
        self._ensure_reference_unused(transaction_id)

        now = self.clock()
        self._supersede_active(user_id, SubscriptionStatus.EXPIRED)
        credits = self.catalog.credits_for(plan)
        subscription = UserSubscription(
            user_id=user_id,
            plan_id=plan.id,
            transaction_id=transaction_id,
            start_date=now,
            end_date=end_date_for(plan, now),
            status=SubscriptionStatus.ACTIVE,
            credits_remaining=credits,
            auto_renew=False,
        )
        self.db.add(subscription)
        self.db.flush()
        self.ledger.record(
            user_id=user_id,
            subscription_id=subscription.id,
            action=CreditAction.PLAN_ACTIVATION,
            credits_added=credits,
            transaction_id=transaction_id,
            description=f"Credits added from {plan.name} plan activation",
        )
        return ActivationResult(subscription=subscription, credits_added=credits)

    # ------------------------------------------------------------------ renewal

    def renew_or_extend(self, user_id: int, plan_id: str, transaction_id: str, amount) -> RenewalResult:
        plan = self.catalog.get_plan(plan_id)
        paid = _as_decimal(amount)
        if paid != plan.price:
            raise AmountMismatchError(plan.price, paid)

        with self._unit_of_work("renew_or_extend", user_id=user_id, transaction_id=transaction_id):
            self._ensure_reference_unused(transaction_id)
            now = self.clock()
            current = self.db.scalars(
                select(UserSubscription)
                .where(
                    UserSubscription.user_id == user_id,
                    UserSubscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED]),
                )
                .order_by(UserSubscription.created_at.desc(), UserSubscription.id.desc())
                .limit(1)
                .with_for_update()
            ).first()

            plan_credits = self.catalog.credits_for(plan)
            if current is not None and effective_status(current, now) == SubscriptionStatus.ACTIVE:
                renewal_type = "extension"
                current_end = as_utc(current.end_date)
                start = current_end if current_end is not None and current_end > now else now
                total = plan_credits + current.credits_remaining
                current.status = SubscriptionStatus.RENEWED
                self.db.flush()
            else:
                renewal_type = "renewal"
                start = now
                total = plan_credits
                self._supersede_active(user_id, SubscriptionStatus.EXPIRED)

            subscription = UserSubscription(
                user_id=user_id,
                plan_id=plan.id,
                transaction_id=transaction_id,
                start_date=start,
                end_date=end_date_for(plan, start),
                status=SubscriptionStatus.ACTIVE,
                credits_remaining=total,
                auto_renew=False,
            )
            self.db.add(subscription)
            self.db.flush()
            self.ledger.record(
                user_id=user_id,
                subscription_id=subscription.id,
                action=CreditAction.SUBSCRIPTION_RENEWAL,
                credits_added=plan_credits,
                transaction_id=transaction_id,
                description=f"Subscription {renewal_type}: {plan.name} plan",
            )
            self.db.add(
                PaymentTransaction(
                    user_id=user_id,
                    transaction_id=transaction_id,
                    amount=paid,
                    payment_type=PaymentType.RENEWAL,
                    payment_method=PaymentMethod.MPESA,
                    status=PaymentStatus.COMPLETED,
                    description=f"{plan.name} plan {renewal_type}",
                )
            )
        logger.info(
            "Subscription %s user=%s plan=%s subscription=%s total_credits=%s",
            renewal_type, user_id, plan.id, subscription.id, total,
        )
        metrics.subscription_renewed(renewal_type)
        return RenewalResult(
            subscription=subscription,
            credits_added=plan_credits,
            total_credits=total,
            renewal_type=renewal_type,
        )

    # ------------------------------------------------------------------ credits

    def consume_credit(self, user_id: int, listing_id: int) -> ConsumptionResult:
        with self._unit_of_work("consume_credit", user_id=user_id, listing_id=listing_id):
            now = self.clock()
            subscription = self._active_subscription(user_id, lock=True)
            if subscription is None:
                raise NoActiveSubscriptionError()
            if subscription.credits_remaining <= 0:
                raise NoCreditsRemainingError(subscription.id)
            if subscription.is_overdue(now):
                subscription.status = SubscriptionStatus.EXPIRED
                self.db.commit()
                logger.info("Subscription %s expired on use user=%s", subscription.id, user_id)
                raise SubscriptionExpiredError(subscription.id)
            if self.ledger.has_listing_debit(user_id, listing_id):
                raise CreditAlreadyConsumedError(listing_id)

            debited = self.db.execute(
                update(UserSubscription)
                .where(
                    UserSubscription.id == subscription.id,
                    UserSubscription.status == SubscriptionStatus.ACTIVE,
                    UserSubscription.credits_remaining > 0,
                )
                .values(credits_remaining=UserSubscription.credits_remaining - 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if debited.rowcount != 1:
                raise NoCreditsRemainingError(subscription.id)
            self.ledger.record(
                user_id=user_id,
                subscription_id=subscription.id,
                listing_id=listing_id,
                action=CreditAction.LISTING_CREATION,
                credits_used=1,
                description=f"Credit used for listing creation (ID: {listing_id})",
            )
            self.db.flush()
            self.db.refresh(subscription)
        logger.info(
            "Credit consumed user=%s listing=%s remaining=%s",
            user_id, listing_id, subscription.credits_remaining,
        )
        metrics.credit_consumed()
        return ConsumptionResult(subscription=subscription, listing_id=listing_id)

    def purchase_credits(self, user_id: int, package_key: str, transaction_id: str, amount) -> PurchaseResult:
        package = get_credit_package(package_key)
        paid = _as_decimal(amount)
        if paid != package.price:
            raise AmountMismatchError(package.price, paid)
        with self._unit_of_work("purchase_credits", user_id=user_id, transaction_id=transaction_id):
            result = self.stage_credit_purchase(user_id, package, transaction_id, paid)
        logger.info(
            "Credits purchased user=%s package=%s txn=%s remaining=%s",
            user_id, package.key, transaction_id, result.subscription.credits_remaining,
        )
        metrics.credits_purchased(package.key, package.credits)
        return result

    def stage_credit_purchase(
        self, user_id: int, package: CreditPackage, transaction_id: str, amount: Decimal
    ) -> PurchaseResult:
        self._ensure_reference_unused(transaction_id)
        subscription = self._active_subscription(user_id, lock=True)
        if subscription is None or subscription.is_overdue(self.clock()):
            raise NoActiveSubscriptionError("No active subscription found. Please activate a plan first.")

        self._add_credits(subscription, package.credits)
        self.ledger.record(
            user_id=user_id,
            subscription_id=subscription.id,
            action=CreditAction.CREDIT_PURCHASE,
            credits_added=package.credits,
            transaction_id=transaction_id,
            description=f"Purchased {package.credits} credits ({package.key} package)",
        )
        self.db.add(
            PaymentTransaction(
                user_id=user_id,
                transaction_id=transaction_id,
                amount=amount,
                payment_type=PaymentType.CREDIT_PURCHASE,
                payment_method=PaymentMethod.MPESA,
                status=PaymentStatus.COMPLETED,
                description=f"{package.key} credit package",
            )
        )
        self.db.flush()
        return PurchaseResult(subscription=subscription, package=package, amount_paid=amount)

    def adjust_credits(
        self,
        user_id: int,
        delta: int,
        description: str,
        action: CreditAction = CreditAction.MANUAL_ADJUSTMENT,
    ) -> UserSubscription:
        """Support-desk correction or refund against the active subscription."""
        if action not in (CreditAction.MANUAL_ADJUSTMENT, CreditAction.REFUND):
            raise ValidationError("Adjustments must be manual_adjustment or refund", field="action")
        if delta == 0:
            raise ValidationError("Adjustment must change the balance", field="delta")
        with self._unit_of_work("adjust_credits", user_id=user_id):
            subscription = self._active_subscription(user_id, lock=True)
            if subscription is None:
                raise NoActiveSubscriptionError()
            if subscription.credits_remaining + delta < 0:
                raise ValidationError("Adjustment would leave a negative credit balance", field="delta")
            self._add_credits(subscription, delta)
            self.ledger.record(
                user_id=user_id,
                subscription_id=subscription.id,
                action=action,
                credits_added=max(delta, 0),
                credits_used=max(-delta, 0),
                description=description,
            )
        logger.info("Credits adjusted user=%s delta=%s action=%s", user_id, delta, action.value)
        return subscription

    # -------------------------------------------------------------------- reads

    def get_active_subscription(self, user_id: int) -> UserSubscription | None:
        """Active subscription that has not run past its end date, if any."""
        subscription = self._active_subscription(user_id)
        if subscription is None or subscription.is_overdue(self.clock()):
            return None
        return subscription

    def check_listing_eligibility(self, user_id: int) -> Eligibility:
        subscription = self._active_subscription(user_id)
        if subscription is None:
            return Eligibility(
                can_create=False,
                credits_remaining=0,
                plan_name="No Plan",
                plan_status="inactive",
                message="No active subscription. Please select a plan to start creating listings.",
                requires_plan=True,
            )

        if subscription.is_overdue(self.clock()):
            with self._unit_of_work("expire_subscription", user_id=user_id):
                subscription.status = SubscriptionStatus.EXPIRED
            logger.info("Subscription %s expired on eligibility check user=%s", subscription.id, user_id)
            return Eligibility(
                can_create=False,
                credits_remaining=0,
                plan_name=subscription.plan.name,
                plan_status="expired",
                message="Your subscription has expired. Please renew your plan to continue creating listings.",
                requires_plan=True,
                plan_id=subscription.plan_id,
                subscription_id=subscription.id,
                end_date=as_utc(subscription.end_date),
            )

        credits = subscription.credits_remaining
        if credits > 0:
            message = "You have 1 credit remaining." if credits == 1 else f"You have {credits} credits remaining."
        else:
            message = "You have no credits remaining. Please upgrade your plan or purchase more credits."
        return Eligibility(
            can_create=credits > 0,
            credits_remaining=credits,
            plan_name=subscription.plan.name,
            plan_status="active",
            message=message,
            requires_plan=False,
            plan_id=subscription.plan_id,
            subscription_id=subscription.id,
            end_date=as_utc(subscription.end_date),
        )

    def credit_history(self, user_id: int, limit: int = 50, offset: int = 0) -> tuple[list[CreditHistory], int]:
        return self.ledger.history(user_id, limit=limit, offset=offset)

    # -------------------------------------------------------------- maintenance

    def expire_overdue(self, now: dt.datetime | None = None) -> int:
        """Flip every overdue active subscription to expired. Returns rows changed."""
        cutoff = now or self.clock()
        with self._unit_of_work("expire_overdue"):
            result = self.db.execute(
                update(UserSubscription)
                .where(
                    UserSubscription.status == SubscriptionStatus.ACTIVE,
                    UserSubscription.end_date.is_not(None),
                    UserSubscription.end_date <= cutoff,
                )
                .values(status=SubscriptionStatus.EXPIRED, updated_at=cutoff)
                .execution_options(synchronize_session=False)
            )
        expired = result.rowcount or 0
        if expired:
            logger.info("Expired %s overdue subscriptions", expired)
            metrics.subscriptions_expired(expired)
        return expired
