"""STK push initiation and payment reconciliation.

A payment's final state can arrive twice: once through the Daraja callback and once
through a status poll. Both go through ``apply_result``, where a conditional update on
``status = 'pending'`` picks exactly one winner. Only the winner fulfils the payment.
"""
from __future__ import annotations

import datetime as dt
import logging
import math
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import metrics
from app.core.config import settings
from app.core.exceptions import (
    AmountMismatchError,
    InvalidPhoneNumberError,
    NoActiveSubscriptionError,
    PaymentGatewayError,
    SokofitiException,
    TransactionNotFoundError,
    ValidationError,
)
from app.models.payment_models import MpesaTransaction, PaymentStatus
from app.models.subscription_models import as_utc, utcnow
from app.services.notification_service import NotificationService
from app.services.plan_catalog import PlanCatalog, get_credit_package
from app.services.subscription_service import SubscriptionService

from . import result_codes
from .client import DarajaClient

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^254\d{9}$")


@dataclass
class StkPushResult:
    transaction: MpesaTransaction
    response_code: str
    response_description: str
    customer_message: str


@dataclass
class PaymentOutcome:
    """What a callback or poll learned about a payment."""
    status: PaymentStatus
    result_code: int
    result_desc: str
    receipt_number: str | None = None
    transaction_date: dt.datetime | None = None
    amount: Decimal | None = None
    phone_number: str | None = None


def normalize_phone(phone_number: str) -> str:
    phone = re.sub(r"[\s-]", "", phone_number or "").lstrip("+")
    if not PHONE_RE.match(phone):
        raise InvalidPhoneNumberError(phone_number)
    return phone


class MpesaPaymentService:
    def __init__(
        self,
        db: Session,
        client: DarajaClient,
        notifications: NotificationService | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        self.db = db
        self.client = client
        self.clock = clock
        self.catalog = PlanCatalog(db)
        self.subscriptions = SubscriptionService(db, clock=clock)
        self.notifications = notifications or NotificationService()

    # ----------------------------------------------------------------- initiate

    def initiate_stk_push(
        self,
        *,
        user_id: int,
        phone_number: str,
        amount,
        account_reference: str,
        transaction_desc: str = "Payment for plan",
        plan_id: str | None = None,
        credit_package: str | None = None,
    ) -> StkPushResult:
        phone = normalize_phone(phone_number)
        amount = Decimal(str(amount))
        if amount < 1:
            raise ValidationError("Amount must be at least 1", field="amount")
        if amount != amount.to_integral_value():
            raise ValidationError("Amount must be a whole number of shillings", field="amount")
        if bool(plan_id) == bool(credit_package):
            raise ValidationError("Provide either plan_id or credit_package", field="plan_id")

        if plan_id:
            plan = self.catalog.get_plan(plan_id)
            if settings.STRICT_ACTIVATION_AMOUNT and amount != plan.price:
                raise AmountMismatchError(plan.price, amount)
            purpose = "plan"
        else:
            package = get_credit_package(credit_package)
            if amount != package.price:
                raise AmountMismatchError(package.price, amount)
            if self.subscriptions.get_active_subscription(user_id) is None:
                raise NoActiveSubscriptionError("No active subscription found. Please activate a plan first.")
            purpose = "credits"

        # No transaction held open across the Daraja call
        self.db.commit()
        try:
            response = self.client.stk_push(
                phone_number=phone,
                amount=int(amount),
                account_reference=account_reference,
                transaction_desc=transaction_desc,
            )
        except PaymentGatewayError:
            metrics.stk_push_failed()
            raise

        now = self.clock()
        transaction = MpesaTransaction(
            user_id=user_id,
            plan_id=plan_id,
            credit_package=credit_package,
            phone_number=phone,
            amount=amount,
            checkout_request_id=response["CheckoutRequestID"],
            merchant_request_id=response["MerchantRequestID"],
            account_reference=account_reference,
            transaction_desc=transaction_desc,
            status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.db.add(transaction)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            # The customer already has the prompt; the callback will not find this row
            logger.error(
                "STK push accepted but not recorded checkout=%s user=%s",
                response.get("CheckoutRequestID"), user_id,
            )
            raise
        logger.info(
            "STK push sent user=%s checkout=%s purpose=%s amount=%s",
            user_id, transaction.checkout_request_id, purpose, amount,
        )
        metrics.stk_push_initiated(purpose)
        return StkPushResult(
            transaction=transaction,
            response_code=str(response.get("ResponseCode", "0")),
            response_description=response.get("ResponseDescription", ""),
            customer_message=response.get("CustomerMessage", ""),
        )

    # -------------------------------------------------------------------- reads

    def find_transaction(
        self, checkout_request_id: str | None = None, merchant_request_id: str | None = None
    ) -> MpesaTransaction:
        transaction = None
        if checkout_request_id:
            transaction = self.db.scalar(
                select(MpesaTransaction).where(MpesaTransaction.checkout_request_id == checkout_request_id)
            )
        if transaction is None and merchant_request_id:
            transaction = self.db.scalar(
                select(MpesaTransaction).where(MpesaTransaction.merchant_request_id == merchant_request_id)
            )
        if transaction is None:
            raise TransactionNotFoundError(checkout_request_id or merchant_request_id)
        return transaction

    def payment_history(self, user_id: int, page: int = 1, limit: int = 20) -> tuple[list[MpesaTransaction], int]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        total = self.db.scalar(
            select(func.count()).select_from(MpesaTransaction).where(MpesaTransaction.user_id == user_id)
        ) or 0
        rows = self.db.scalars(
            select(MpesaTransaction)
            .where(MpesaTransaction.user_id == user_id)
            .order_by(MpesaTransaction.created_at.desc(), MpesaTransaction.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return list(rows), total

    # -------------------------------------------------------------- reconcile

    def query_status(self, checkout_request_id: str) -> MpesaTransaction:
        """Return the stored transaction, polling Daraja first when it has been pending too long."""
        transaction = self.find_transaction(checkout_request_id=checkout_request_id)
        if not transaction.is_pending:
            return transaction

        age = (self.clock() - as_utc(transaction.created_at)).total_seconds()
        if age <= settings.MPESA_PENDING_QUERY_AFTER_SECONDS:
            return transaction

        self.db.commit()
        try:
            response = self.client.query_stk_status(checkout_request_id)
        except PaymentGatewayError as exc:
            logger.warning("STK status poll failed checkout=%s: %s", checkout_request_id, exc.message)
            return transaction

        raw_code = response.get("ResultCode")
        if raw_code is None:
            logger.info("STK status poll inconclusive checkout=%s response=%s", checkout_request_id, response)
            return transaction
        code = int(raw_code)
        status = result_codes.status_for_query(code)
        if status == PaymentStatus.PENDING:
            return transaction

        self.apply_result(
            transaction,
            PaymentOutcome(status=status, result_code=code, result_desc=result_codes.describe(code, response.get("ResultDesc"))),
            source="query",
        )
        self.db.refresh(transaction)
        return transaction

    def reconcile_stale_pending(self, limit: int = 100) -> int:
        """Poll Daraja for pending payments whose callback never arrived."""
        cutoff = self.clock() - dt.timedelta(seconds=settings.MPESA_PENDING_QUERY_AFTER_SECONDS)
        checkout_ids = list(
            self.db.scalars(
                select(MpesaTransaction.checkout_request_id)
                .where(MpesaTransaction.status == PaymentStatus.PENDING, MpesaTransaction.created_at < cutoff)
                .order_by(MpesaTransaction.created_at)
                .limit(limit)
            )
        )
        settled = 0
        for checkout_id in checkout_ids:
            if not self.query_status(checkout_id).is_pending:
                settled += 1
        if checkout_ids:
            logger.info("Reconciled %s of %s stale pending M-Pesa payments", settled, len(checkout_ids))
        return settled

    def apply_result(self, transaction: MpesaTransaction, outcome: PaymentOutcome, source: str) -> bool:
        """Move a pending transaction to its final state. Returns False if it was already settled."""
        if not self._transition(transaction, outcome):
            self._refresh_audit(transaction, outcome)
            self.db.commit()
            self.db.refresh(transaction)
            logger.info(
                "Late %s result for settled transaction checkout=%s status=%s, audit fields only",
                source, transaction.checkout_request_id, transaction.status.value,
            )
            metrics.mpesa_duplicate_result()
            return False

        if outcome.status == PaymentStatus.COMPLETED:
            try:
                self._fulfil(transaction, outcome)
                self.db.commit()
            except (SokofitiException, IntegrityError) as exc:
                self.db.rollback()
                logger.error(
                    "Payment completed but fulfilment failed checkout=%s user=%s: %s",
                    transaction.checkout_request_id, transaction.user_id, exc,
                )
                # Money was taken: record the outcome even though nothing was granted
                self._transition(transaction, outcome)
                self.db.commit()
        else:
            self.db.commit()

        self.db.refresh(transaction)
        latency = (self.clock() - as_utc(transaction.created_at)).total_seconds()
        metrics.mpesa_result(outcome.status.value, source, latency)
        logger.info(
            "M-Pesa payment %s checkout=%s code=%s source=%s",
            outcome.status.value, transaction.checkout_request_id, outcome.result_code, source,
        )
        self.notifications.payment_result(transaction)
        return True

    def _transition(self, transaction: MpesaTransaction, outcome: PaymentOutcome) -> bool:
        values: dict[str, Any] = {
            "status": outcome.status,
            "result_code": outcome.result_code,
            "result_desc": outcome.result_desc,
            "updated_at": self.clock(),
        }
        if outcome.receipt_number:
            values["mpesa_receipt_number"] = outcome.receipt_number
        if outcome.transaction_date:
            values["transaction_date"] = outcome.transaction_date
        result = self.db.execute(
            update(MpesaTransaction)
            .where(MpesaTransaction.id == transaction.id, MpesaTransaction.status == PaymentStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _refresh_audit(self, transaction: MpesaTransaction, outcome: PaymentOutcome) -> None:
        """Record a late result that agrees with the settled status; never changes the status."""
        base = (
            update(MpesaTransaction)
            .where(MpesaTransaction.id == transaction.id, MpesaTransaction.status == outcome.status)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(
            base.values(result_code=outcome.result_code, result_desc=outcome.result_desc, updated_at=self.clock())
        )
        if outcome.receipt_number:
            self.db.execute(
                base.where(MpesaTransaction.mpesa_receipt_number.is_(None)).values(
                    mpesa_receipt_number=outcome.receipt_number
                )
            )
        if outcome.transaction_date:
            self.db.execute(
                base.where(MpesaTransaction.transaction_date.is_(None)).values(
                    transaction_date=outcome.transaction_date
                )
            )

    def _fulfil(self, transaction: MpesaTransaction, outcome: PaymentOutcome) -> None:
        reference = outcome.receipt_number or transaction.checkout_request_id
        if outcome.amount is not None and outcome.amount != transaction.amount:
            logger.warning(
                "Callback amount differs from request checkout=%s requested=%s paid=%s",
                transaction.checkout_request_id, transaction.amount, outcome.amount,
            )
        if transaction.plan_id:
            self.subscriptions.stage_paid_activation(
                transaction.user_id, transaction.plan_id, reference, transaction.amount
            )
        else:
            package = get_credit_package(transaction.credit_package)
            self.subscriptions.stage_credit_purchase(
                transaction.user_id, package, reference, transaction.amount
            )


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0
