"""HTTP contract of the subscription and credit endpoints."""
import datetime as dt

from app.models.subscription_models import SubscriptionStatus, UserSubscription

USER = 34


def _subscription_row(db, *, credits: int, end_date: dt.datetime | None, plan_id: str = "starter"):
    now = dt.datetime.now(dt.timezone.utc)
    sub = UserSubscription(
        user_id=USER,
        plan_id=plan_id,
        start_date=now - dt.timedelta(days=40),
        end_date=end_date,
        status=SubscriptionStatus.ACTIVE,
        credits_remaining=credits,
    )
    db.add(sub)
    db.commit()
    return sub


def test_list_plans(client):
    resp = client.get("/api/plans")
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["success"] is True
    plans = {p["id"]: p for p in data["plans"]}
    assert list(plans) == ["free", "top", "top_featured", "starter", "basic", "premium", "business"]
    assert plans["starter"]["credits"] == 10
    assert plans["starter"]["price"] == 3000.0
    assert plans["starter"]["period"] == "month"
    assert plans["free"]["period"] is None


class TestActivation:
    def test_free_plan(self, client):
        resp = client.post("/api/activate-free-plan", json={"user_id": USER})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["success"] is True
        assert data["message"] == "Free plan activated successfully"
        assert data["credits_added"] == 7
        assert data["subscription"]["plan_name"] == "Free Plan"
        assert data["subscription"]["end_date"] is None

    def test_free_plan_twice(self, client):
        client.post("/api/activate-free-plan", json={"user_id": USER})

        resp = client.post("/api/activate-free-plan", json={"user_id": USER})

        assert resp.status_code == 409
        assert resp.json() == {
            "success": False,
            "message": "Free plan is already active",
            "code": "SUB101",
            "details": {"plan_id": "free"},
        }

    def test_missing_fields(self, client):
        resp = client.post("/api/activate-subscription", json={"user_id": USER, "plan_id": "starter"})
        assert resp.status_code == 422
        data = resp.json()
        assert data["success"] is False
        assert data["code"] == "VAL000"
        assert data["message"] == "Missing required fields: transaction_id, amount"

    def test_paid_plan(self, client):
        resp = client.post(
            "/api/activate-subscription",
            json={"user_id": USER, "plan_id": "basic", "transaction_id": "QHT5XY12AB", "amount": 5000},
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["transaction_id"] == "QHT5XY12AB"
        assert data["credits_added"] == 27
        assert data["subscription"]["status"] == "active"
        assert data["subscription"]["end_date"] is not None

    def test_unknown_plan(self, client):
        resp = client.post(
            "/api/activate-subscription",
            json={"user_id": USER, "plan_id": "gold", "transaction_id": "QX1", "amount": 1},
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "SUB100"

    def test_reused_transaction(self, client):
        body = {"user_id": USER, "plan_id": "starter", "transaction_id": "QHT5XY12AC", "amount": 3000}
        client.post("/api/activate-subscription", json=body)

        resp = client.post("/api/activate-subscription", json={**body, "user_id": USER + 1})

        assert resp.status_code == 409
        assert resp.json()["code"] == "PAY201"


def test_renew_extends_running_plan(client):
    client.post(
        "/api/activate-subscription",
        json={"user_id": USER, "plan_id": "starter", "transaction_id": "QRN1", "amount": 3000},
    )

    resp = client.post(
        "/api/renew-subscription",
        json={"user_id": USER, "plan_id": "starter", "transaction_id": "QRN2", "amount": 3000},
    )

    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["message"] == "Subscription extended successfully"
    assert data["renewal_type"] == "extension"
    assert data["total_credits"] == 20


def test_renew_rejects_wrong_amount(client):
    resp = client.post(
        "/api/renew-subscription",
        json={"user_id": USER, "plan_id": "starter", "transaction_id": "QRN3", "amount": 2500},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "SUB106"


class TestCredits:
    def test_consume(self, client):
        client.post("/api/activate-free-plan", json={"user_id": USER})

        resp = client.post("/api/consume-credit", json={"user_id": USER, "listing_id": 901})

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["credits_remaining"] == 6
        assert data["credits_used"] == 1
        assert data["plan_name"] == "Free Plan"

    def test_consume_same_listing(self, client):
        client.post("/api/activate-free-plan", json={"user_id": USER})
        client.post("/api/consume-credit", json={"user_id": USER, "listing_id": 901})

        resp = client.post("/api/consume-credit", json={"user_id": USER, "listing_id": 901})

        assert resp.status_code == 409
        assert resp.json()["code"] == "SUB105"

    def test_consume_without_subscription(self, client):
        resp = client.post("/api/consume-credit", json={"user_id": USER, "listing_id": 1})
        assert resp.status_code == 404
        assert resp.json()["code"] == "SUB102"

    def test_consume_without_credits(self, client, db_session):
        _subscription_row(db_session, credits=0, end_date=None, plan_id="top")

        resp = client.post("/api/consume-credit", json={"user_id": USER, "listing_id": 1})

        assert resp.status_code == 402
        assert resp.json()["code"] == "SUB103"

    def test_consume_on_expired_plan(self, client, db_session):
        past = dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=5)
        _subscription_row(db_session, credits=4, end_date=past)

        resp = client.post("/api/consume-credit", json={"user_id": USER, "listing_id": 1})
        assert resp.status_code == 410
        assert resp.json()["code"] == "SUB104"

        eligibility = client.get("/api/check-listing-eligibility", params={"user_id": USER}).json()
        assert eligibility["plan_status"] == "inactive"
        assert eligibility["requires_plan"] is True

    def test_purchase(self, client):
        client.post("/api/activate-free-plan", json={"user_id": USER})

        resp = client.post(
            "/api/purchase-credits",
            json={"user_id": USER, "package": "large", "transaction_id": "QPC1", "amount": 450},
        )

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["message"] == "30 credits added successfully"
        assert data["credits_remaining"] == 37
        assert data["amount_paid"] == 450.0

    def test_purchase_wrong_amount(self, client):
        client.post("/api/activate-free-plan", json={"user_id": USER})

        resp = client.post(
            "/api/purchase-credits",
            json={"user_id": USER, "package": "large", "transaction_id": "QPC2", "amount": 400},
        )

        assert resp.status_code == 400
        assert resp.json()["details"] == {"expected": "450", "received": "400"}

    def test_eligibility(self, client):
        resp = client.get("/api/check-listing-eligibility", params={"user_id": USER})
        assert resp.status_code == 200
        assert resp.json()["can_create"] is False
        assert resp.json()["plan_name"] == "No Plan"

        client.post("/api/activate-free-plan", json={"user_id": USER})
        data = client.get("/api/check-listing-eligibility", params={"user_id": USER}).json()
        assert data["can_create"] is True
        assert data["credits_remaining"] == 7
        assert data["plan_id"] == "free"

    def test_history(self, client):
        client.post("/api/activate-free-plan", json={"user_id": USER})
        client.post("/api/consume-credit", json={"user_id": USER, "listing_id": 77})

        resp = client.get("/api/credit-history", params={"user_id": USER, "limit": 1})

        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 2
        assert data["limit"] == 1
        [entry] = data["history"]
        assert entry["action_type"] == "listing_creation"
        assert entry["listing_id"] == 77
        assert "transaction_id" not in entry
