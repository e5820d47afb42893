from __future__ import annotations

import datetime as dt
import itertools
import os

os.environ.setdefault("APP_ENV", "test")

import httpx  # noqa: E402
import pytest  # noqa: E402

from app.core.config import settings  # noqa: E402
from app.db import session as db_session  # noqa: E402
from app.db.base_class import Base  # noqa: E402
from app.db.session import SessionLocal  # noqa: E402
from app.models import payment_models, subscription_models  # noqa: E402,F401
from app.services.mpesa import DarajaClient, MpesaConfig  # noqa: E402
from app.services.plan_catalog import seed_default_plans  # noqa: E402

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")


# Same engine options as the app: StaticPool for :memory:, foreign keys on for SQLite
test_engine = db_session.build_engine(TEST_DATABASE_URL)

# Ensure application code uses the test engine
settings.ENV = "test"  # type: ignore[attr-defined]
db_session.engine = test_engine  # type: ignore[assignment]
SessionLocal.configure(bind=test_engine)


@pytest.fixture(autouse=True)
def _reset_database_state():
    """Each test gets a fresh schema with the default plan catalogue."""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    session = SessionLocal()
    try:
        seed_default_plans(session)
        session.commit()
    finally:
        session.close()
    yield


@pytest.fixture
def db_session():
    """Provide a database session for tests."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


class FakeClock:
    """Settable clock passed to services in place of ``utcnow``."""

    def __init__(self, start: dt.datetime | None = None):
        self.now = start or dt.datetime(2026, 3, 10, 9, 0, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += dt.timedelta(**delta)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeDaraja:
    """Stands in for the Safaricom Daraja API behind ``httpx.MockTransport``.

    ``stk_response``/``query_response`` hold ``(status_code, json)``; when ``stk_response``
    is None every push gets fresh checkout/merchant ids. Set ``fail_with`` to an exception
    class to simulate a network failure.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_response = (200, {"access_token": "test-token", "expires_in": "3599"})
        self.stk_response: tuple[int, dict] | None = None
        self.query_response = (200, {"ResultCode": "0", "ResultDesc": "The service request is processed successfully."})
        self.fail_with: type[httpx.RequestError] | None = None
        self._ids = itertools.count(1)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with("connection refused", request=request)
        path = request.url.path
        if path.startswith("/oauth"):
            status, body = self.token_response
        elif path.endswith("/processrequest"):
            status, body = self.stk_response or self._accepted_push()
        elif path.endswith("/query"):
            status, body = self.query_response
        else:
            status, body = 404, {"errorMessage": "unknown path"}
        return httpx.Response(status, json=body)

    def _accepted_push(self) -> tuple[int, dict]:
        n = next(self._ids)
        return 200, {
            "MerchantRequestID": f"29115-3462-{n}",
            "CheckoutRequestID": f"ws_CO_1003202609000{n}",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }

    def calls_to(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]


@pytest.fixture
def daraja() -> FakeDaraja:
    return FakeDaraja()


@pytest.fixture
def mpesa_config() -> MpesaConfig:
    return MpesaConfig.from_settings(settings)


@pytest.fixture
def daraja_client(daraja: FakeDaraja, mpesa_config: MpesaConfig) -> DarajaClient:
    client = DarajaClient(mpesa_config, transport=httpx.MockTransport(daraja.handler))
    yield client
    client.close()


# FastAPI TestClient fixture
from fastapi.testclient import TestClient  # noqa: E402
from app.api import dependencies  # noqa: E402
from app.api.main import app  # noqa: E402


@pytest.fixture
def client(daraja_client: DarajaClient):
    """TestClient with the Daraja client swapped for the fake gateway."""
    app.dependency_overrides[dependencies.daraja_client] = lambda: daraja_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
