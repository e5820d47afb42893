"""STK push initiation and payment reconciliation (callbacks and status polls)."""
import datetime as dt
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    AmountMismatchError,
    InvalidCreditPackageError,
    InvalidPhoneNumberError,
    NoActiveSubscriptionError,
    PaymentGatewayError,
    PlanNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from app.db.session import SessionLocal
from app.models.payment_models import MpesaTransaction, PaymentStatus, PaymentTransaction
from app.models.subscription_models import SubscriptionStatus, UserSubscription
from app.services.mpesa import ACK, MpesaCallbackProcessor, MpesaPaymentService
from app.services.mpesa.callback import parse_transaction_date
from app.services.mpesa.payment_service import normalize_phone
from app.services.subscription_service import SubscriptionService

USER = 34
PHONE = "254712345678"


@pytest.fixture
def payments(db_session, daraja_client, clock):
    return MpesaPaymentService(db_session, daraja_client, clock=clock)


@pytest.fixture
def processor(payments):
    return MpesaCallbackProcessor(payments)


def _pay_for_plan(payments, plan_id="starter", amount=3000, user_id=USER):
    return payments.initiate_stk_push(
        user_id=user_id,
        phone_number=PHONE,
        amount=amount,
        account_reference=f"SOKOFITI-{user_id}",
        plan_id=plan_id,
    ).transaction


def _callback(transaction, code=0, desc="The service request is processed successfully.", receipt="NLJ7RT61SV", amount=None):
    body = {
        "MerchantRequestID": transaction.merchant_request_id,
        "CheckoutRequestID": transaction.checkout_request_id,
        "ResultCode": code,
        "ResultDesc": desc,
    }
    if code == 0:
        body["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": float(amount if amount is not None else transaction.amount)},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "Balance"},
                {"Name": "TransactionDate", "Value": 20260310123045},
                {"Name": "PhoneNumber", "Value": int(PHONE)},
            ]
        }
    return {"Body": {"stkCallback": body}}


def _stored(checkout_request_id: str) -> MpesaTransaction:
    db = SessionLocal()
    try:
        return db.scalar(select(MpesaTransaction).where(MpesaTransaction.checkout_request_id == checkout_request_id))
    finally:
        db.close()


def _active_subscriptions(user_id: int = USER) -> list[UserSubscription]:
    db = SessionLocal()
    try:
        return list(
            db.scalars(
                select(UserSubscription).where(
                    UserSubscription.user_id == user_id,
                    UserSubscription.status == SubscriptionStatus.ACTIVE,
                )
            )
        )
    finally:
        db.close()


@pytest.mark.parametrize(
    "raw,expected",
    [("254712345678", "254712345678"), ("+254 712 345 678", "254712345678"), ("254-712-345-678", "254712345678")],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["0712345678", "25471234567", "2547123456789", "", "254abcdefghi"])
def test_rejects_bad_phone(raw):
    with pytest.raises(InvalidPhoneNumberError):
        normalize_phone(raw)


def test_transaction_date_is_converted_from_nairobi_time():
    assert parse_transaction_date(20260310123045) == dt.datetime(2026, 3, 10, 9, 30, 45, tzinfo=dt.timezone.utc)
    assert parse_transaction_date("not-a-date") is None
    assert parse_transaction_date(None) is None


class TestInitiate:
    def test_stores_pending_transaction(self, payments, daraja):
        result = payments.initiate_stk_push(
            user_id=USER,
            phone_number="+254712345678",
            amount=Decimal("3000"),
            account_reference="SOKOFITI-34",
            plan_id="starter",
        )

        assert result.response_code == "0"
        stored = _stored(result.transaction.checkout_request_id)
        assert stored.status == PaymentStatus.PENDING
        assert stored.phone_number == PHONE
        assert stored.plan_id == "starter"
        assert stored.amount == Decimal("3000")
        assert stored.transaction_desc == "Payment for plan"
        assert len(daraja.calls_to("/processrequest")) == 1

    def test_credit_package_needs_active_subscription(self, payments, daraja):
        with pytest.raises(NoActiveSubscriptionError):
            payments.initiate_stk_push(
                user_id=USER, phone_number=PHONE, amount=100, account_reference="CR-34", credit_package="small"
            )
        assert daraja.requests == []

    def test_credit_package_price_is_enforced(self, payments, db_session):
        SubscriptionService(db_session).activate_free_plan(USER)
        with pytest.raises(AmountMismatchError):
            payments.initiate_stk_push(
                user_id=USER, phone_number=PHONE, amount=99, account_reference="CR-34", credit_package="small"
            )

    @pytest.mark.parametrize(
        "kwargs,error",
        [
            ({"amount": 0, "plan_id": "starter"}, ValidationError),
            ({"amount": "10.50", "plan_id": "starter"}, ValidationError),
            ({"amount": 100}, ValidationError),
            ({"amount": 100, "plan_id": "starter", "credit_package": "small"}, ValidationError),
            ({"amount": 100, "plan_id": "gold"}, PlanNotFoundError),
            ({"amount": 100, "credit_package": "jumbo"}, InvalidCreditPackageError),
            ({"amount": 100, "plan_id": "starter", "phone_number": "0712345678"}, InvalidPhoneNumberError),
        ],
    )
    def test_validation(self, payments, daraja, kwargs, error):
        params = {"user_id": USER, "phone_number": PHONE, "account_reference": "SOKOFITI-34", **kwargs}
        with pytest.raises(error):
            payments.initiate_stk_push(**params)
        assert daraja.requests == []

    def test_gateway_failure_stores_nothing(self, payments, db_session, daraja):
        daraja.stk_response = (500, {"errorMessage": "Service unavailable"})

        with pytest.raises(PaymentGatewayError):
            _pay_for_plan(payments)
        assert db_session.scalar(select(func.count()).select_from(MpesaTransaction)) == 0


class TestCallback:
    def test_successful_plan_payment_activates_plan(self, payments, processor):
        txn = _pay_for_plan(payments)

        assert processor.process(_callback(txn)) == ACK

        stored = _stored(txn.checkout_request_id)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.result_code == 0
        assert stored.mpesa_receipt_number == "NLJ7RT61SV"
        assert stored.transaction_date.replace(tzinfo=None) == dt.datetime(2026, 3, 10, 9, 30, 45)
        [sub] = _active_subscriptions()
        assert sub.plan_id == "starter"
        assert sub.transaction_id == "NLJ7RT61SV"
        assert sub.credits_remaining == 10

    def test_duplicate_callback_is_acknowledged_and_ignored(self, payments, processor):
        txn = _pay_for_plan(payments)
        processor.process(_callback(txn))

        assert processor.process(_callback(txn)) == ACK

        assert len(_active_subscriptions()) == 1
        assert _active_subscriptions()[0].credits_remaining == 10

    def test_cancelled_by_user(self, payments, processor):
        txn = _pay_for_plan(payments)

        processor.process(_callback(txn, code=1032, desc="Request cancelled by user"))

        stored = _stored(txn.checkout_request_id)
        assert stored.status == PaymentStatus.CANCELLED
        assert stored.result_desc == "Request cancelled by user"
        assert _active_subscriptions() == []

    def test_failed_payment(self, payments, processor):
        txn = _pay_for_plan(payments)

        processor.process(_callback(txn, code=1, desc=""))

        stored = _stored(txn.checkout_request_id)
        assert stored.status == PaymentStatus.FAILED
        assert stored.result_desc == "The balance is insufficient for the transaction."

    def test_credit_package_payment(self, payments, processor, db_session):
        SubscriptionService(db_session).activate_free_plan(USER)
        txn = payments.initiate_stk_push(
            user_id=USER, phone_number=PHONE, amount=250, account_reference="CR-34", credit_package="medium"
        ).transaction

        processor.process(_callback(txn, receipt="NLK1AB23CD"))

        assert _active_subscriptions()[0].credits_remaining == 22
        db = SessionLocal()
        try:
            payment = db.scalar(select(PaymentTransaction).where(PaymentTransaction.transaction_id == "NLK1AB23CD"))
            assert payment is not None
            assert payment.amount == Decimal("250")
        finally:
            db.close()

    def test_payment_recorded_even_when_fulfilment_fails(self, payments, processor, db_session):
        SubscriptionService(db_session).activate_free_plan(USER)
        txn = payments.initiate_stk_push(
            user_id=USER, phone_number=PHONE, amount=100, account_reference="CR-34", credit_package="small"
        ).transaction
        # Subscription ends before the customer confirms
        sub = db_session.get(UserSubscription, _active_subscriptions()[0].id)
        sub.status = SubscriptionStatus.CANCELLED
        db_session.commit()

        assert processor.process(_callback(txn)) == ACK

        stored = _stored(txn.checkout_request_id)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.mpesa_receipt_number == "NLJ7RT61SV"

    def test_unknown_transaction(self, processor):
        payload = {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": "nope",
                    "CheckoutRequestID": "ws_CO_unknown",
                    "ResultCode": 0,
                    "ResultDesc": "ok",
                }
            }
        }
        assert processor.process(payload) == ACK

    @pytest.mark.parametrize(
        "payload",
        [{}, {"Body": {}}, {"Body": {"stkCallback": {"ResultCode": "zero"}}}, {"Body": "garbage"}],
    )
    def test_malformed_payload_is_acknowledged(self, processor, payload):
        assert processor.process(payload) == ACK

    def test_falls_back_to_merchant_request_id(self, payments, processor):
        txn = _pay_for_plan(payments)
        payload = _callback(txn)
        payload["Body"]["stkCallback"]["CheckoutRequestID"] = "ws_CO_mangled"

        processor.process(payload)

        assert _stored(txn.checkout_request_id).status == PaymentStatus.COMPLETED


class TestQueryStatus:
    def test_recent_pending_is_not_polled(self, payments, daraja):
        txn = _pay_for_plan(payments)

        result = payments.query_status(txn.checkout_request_id)

        assert result.status == PaymentStatus.PENDING
        assert daraja.calls_to("/query") == []

    def test_stale_pending_is_polled_and_fulfilled(self, payments, daraja, clock):
        txn = _pay_for_plan(payments)
        clock.advance(seconds=301)

        result = payments.query_status(txn.checkout_request_id)

        assert result.status == PaymentStatus.COMPLETED
        assert len(daraja.calls_to("/query")) == 1
        [sub] = _active_subscriptions()
        # Polls carry no receipt; the checkout id is the payment reference
        assert sub.transaction_id == txn.checkout_request_id

    def test_user_unreachable_stays_pending(self, payments, daraja, clock):
        daraja.query_response = (200, {"ResultCode": "1037", "ResultDesc": "DS timeout user cannot be reached"})
        txn = _pay_for_plan(payments)
        clock.advance(minutes=6)

        assert payments.query_status(txn.checkout_request_id).status == PaymentStatus.PENDING
        assert _active_subscriptions() == []

    def test_cancelled_result_from_poll(self, payments, daraja, clock):
        daraja.query_response = (200, {"ResultCode": "1032", "ResultDesc": "Request cancelled by user"})
        txn = _pay_for_plan(payments)
        clock.advance(minutes=6)

        assert payments.query_status(txn.checkout_request_id).status == PaymentStatus.CANCELLED

    def test_gateway_error_returns_stored_state(self, payments, daraja, clock):
        txn = _pay_for_plan(payments)
        clock.advance(minutes=6)
        daraja.query_response = (500, {"errorMessage": "The transaction is being processed"})

        assert payments.query_status(txn.checkout_request_id).status == PaymentStatus.PENDING

    def test_settled_transaction_is_not_polled(self, payments, processor, daraja, clock):
        txn = _pay_for_plan(payments)
        processor.process(_callback(txn))
        clock.advance(minutes=10)

        assert payments.query_status(txn.checkout_request_id).status == PaymentStatus.COMPLETED
        assert daraja.calls_to("/query") == []

    def test_callback_after_poll_does_not_fulfil_twice(self, payments, processor, clock):
        txn = _pay_for_plan(payments)
        clock.advance(minutes=6)
        payments.query_status(txn.checkout_request_id)

        processor.process(_callback(txn, desc="Callback: processed successfully."))

        [sub] = _active_subscriptions()
        assert sub.credits_remaining == 10
        assert sub.transaction_id == txn.checkout_request_id
        stored = _stored(txn.checkout_request_id)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.mpesa_receipt_number == "NLJ7RT61SV"
        assert stored.transaction_date is not None
        assert stored.result_desc == "Callback: processed successfully."

    def test_late_conflicting_result_keeps_settled_state(self, payments, processor, daraja, clock):
        daraja.query_response = (200, {"ResultCode": "1032", "ResultDesc": "Request cancelled by user"})
        txn = _pay_for_plan(payments)
        clock.advance(minutes=6)
        payments.query_status(txn.checkout_request_id)

        processor.process(_callback(txn, receipt="NLJ7RT61SW"))

        stored = _stored(txn.checkout_request_id)
        assert stored.status == PaymentStatus.CANCELLED
        assert stored.result_code == 1032
        assert stored.mpesa_receipt_number is None
        assert _active_subscriptions() == []

    def test_unknown_checkout(self, payments):
        with pytest.raises(TransactionNotFoundError):
            payments.query_status("ws_CO_missing")


def test_reconcile_polls_only_stale_pending(payments, daraja, clock):
    stale = [_pay_for_plan(payments, user_id=uid) for uid in (1, 2)]
    clock.advance(minutes=10)
    fresh = _pay_for_plan(payments, user_id=3)

    assert payments.reconcile_stale_pending() == 2

    assert len(daraja.calls_to("/query")) == 2
    assert all(_stored(t.checkout_request_id).status == PaymentStatus.COMPLETED for t in stale)
    assert _stored(fresh.checkout_request_id).status == PaymentStatus.PENDING


def test_payment_history_is_paginated(payments):
    for _ in range(3):
        _pay_for_plan(payments)
    _pay_for_plan(payments, user_id=99)

    rows, total = payments.payment_history(USER, page=1, limit=2)
    assert total == 3
    assert len(rows) == 2
    rows, _ = payments.payment_history(USER, page=2, limit=2)
    assert len(rows) == 1
