"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import sys
import time
import uuid
from contextlib import ExitStack
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch

import bcrypt
import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Configure the app before it is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BACKGROUND_TASKS_ENABLED"] = "false"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.core.config import Settings
from app.core.context import AppContext, get_context
from app.db import redis as redis_module
from app.db.session import get_db
from app.models import Base, Vendor, VendorCustomer
from app.services.auth_service import hash_password
from app.services.stripe_service import StripeGateway


WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_PASSWORD = "AdminPassword123!"
VENDOR_PASSWORD = "VendorPassword123!"

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite defers BEGIN until the first DML statement, which breaks SAVEPOINTs.
# Let SQLAlchemy emit BEGIN itself.
@event.listens_for(test_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(test_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header for ``payload``"""
    ts = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = None, created: int = None) -> dict:
    """A Stripe event envelope"""
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()) if created is None else created,
        "livemode": False,
        "data": {"object": obj},
    }


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        STRIPE_SECRET_KEY="sk_test_dummy",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        STRIPE_SUBSCRIPTION_PRICE_ID="price_test123",
        ADMIN_USERNAME="admin",
        ADMIN_PASSWORD_HASH=bcrypt.hashpw(ADMIN_PASSWORD.encode("utf-8"), bcrypt.gensalt(4)).decode("utf-8"),
        BACKGROUND_TASKS_ENABLED=False,
    )


@pytest.fixture(scope="function")
def app_context(test_settings: Settings) -> AppContext:
    """AppContext wired to the test database and a keyed Stripe gateway"""
    return AppContext(
        settings=test_settings,
        stripe=StripeGateway(test_settings.STRIPE_SECRET_KEY, max_retries=test_settings.STRIPE_MAX_RETRIES),
        session_factory=TestSessionLocal,
    )


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Replace the Redis client with fakeredis (Lua enabled for the rate limiter)"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, app_context: AppContext) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, mocked Redis and test context"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_context] = lambda: app_context

    try:
        # No `with`: the lifespan (database init, background tasks) is not run
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def post_webhook(client: TestClient):
    """Sign and deliver an event to the webhook endpoint"""
    def _post(event: dict, secret: str = WEBHOOK_SECRET, timestamp: int = None):
        payload = json.dumps(event)
        return client.post(
            "/api/webhooks/stripe",
            content=payload,
            headers={"Stripe-Signature": sign_payload(payload, secret, timestamp), "Content-Type": "application/json"},
        )
    return _post


@pytest.fixture(scope="function")
def mock_stripe():
    """Patch the Stripe resource methods used by the gateway.

    Only attributes are patched; ``stripe``'s exception classes stay real.
    Returns a dict of the mocks keyed by "<Resource>.<method>".
    """
    targets = {
        "Customer.create": {"id": "cus_test123", "email": "vendor@example.com"},
        "Customer.retrieve": {"id": "cus_test123", "name": "Test Customer", "email": "customer@example.com",
                              "phone": None, "invoice_settings": {"default_payment_method": None}},
        "Customer.modify": {"id": "cus_test123"},
        "SetupIntent.create": {"id": "seti_test123", "client_secret": "seti_secret_test123"},
        "PaymentMethod.attach": {"id": "pm_test123"},
        "Invoice.create": {"id": "in_test123", "status": "draft"},
        "InvoiceItem.create": {"id": "ii_test123"},
        "Invoice.finalize_invoice": {"id": "in_test123", "status": "open",
                                     "hosted_invoice_url": "https://invoice.stripe.com/i/test123"},
        "Invoice.list": {"data": []},
        "Subscription.create": {"id": "sub_test123", "status": "active"},
        "Subscription.list": {"data": [{"id": "sub_test123", "status": "active"}]},
        "Subscription.cancel": {"id": "sub_test123", "status": "canceled"},
        "Account.create": {"id": "acct_test123"},
        "AccountLink.create": {"url": "https://connect.stripe.com/setup/test123"},
        "Payout.create": {"id": "po_test123", "status": "pending"},
        "Payout.list": {"data": [{"id": "po_test123", "amount": 5000, "currency": "usd",
                                  "status": "paid", "arrival_date": 1700000000}]},
        "Refund.create": {"id": "re_test123", "status": "succeeded"},
    }
    mocks = {}
    with ExitStack() as stack:
        for target, return_value in targets.items():
            mocks[target] = stack.enter_context(
                patch(f"stripe.{target}", Mock(return_value=return_value))
            )
        yield mocks


@pytest.fixture(scope="function")
def make_vendor(db_session: Session):
    """Factory for vendors stored directly in the database"""
    def _make(username: str = "v1", approved: bool = True, customer_id: str = "cus_vendor1",
              customers=(), subscription_status: str = "trialing") -> Vendor:
        vendor = Vendor(
            username=username,
            password_hash=hash_password(VENDOR_PASSWORD),
            approved=approved,
            stripe_customer_id=customer_id,
            subscription_status=subscription_status,
        )
        for customer in customers:
            vendor.customers.append(VendorCustomer(stripe_customer_id=customer))
        db_session.add(vendor)
        db_session.commit()
        db_session.refresh(vendor)
        return vendor
    return _make


@pytest.fixture(scope="function")
def vendor_client(client: TestClient, make_vendor) -> TestClient:
    """Client logged in as approved vendor ``v1`` billing ``cus_1``"""
    make_vendor(username="v1", approved=True, customers=("cus_1",))
    response = client.post("/api/auth/login", json={"username": "v1", "password": VENDOR_PASSWORD})
    assert response.status_code == 200
    return client


@pytest.fixture(scope="function")
def admin_client(client: TestClient) -> TestClient:
    """Client logged in as the configured admin"""
    response = client.post("/api/auth/admin/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return client
