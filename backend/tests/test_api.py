"""API route tests"""
import pytest
import stripe
from fastapi import status

from app.models import ActivityLog, Invoice, Vendor
from app.models.invoice import InvoiceStatus
from conftest import ADMIN_PASSWORD, VENDOR_PASSWORD


def _login(client, username="v1", password=VENDOR_PASSWORD):
    return client.post("/api/auth/login", json={"username": username, "password": password})


@pytest.mark.critical
class TestRegistration:
    """Vendor registration"""

    def test_register_creates_pending_vendor(self, client, mock_stripe, db_session):
        response = client.post("/api/auth/register", json={"username": "shop@example.com", "password": "Secret123!"})

        assert response.status_code == status.HTTP_201_CREATED
        assert "Awaiting admin approval" in response.json()["message"]
        vendor = db_session.query(Vendor).filter(Vendor.username == "shop@example.com").one()
        assert vendor.approved is False
        assert vendor.subscription_status == "trialing"
        assert vendor.trial_ends_at is not None
        assert vendor.stripe_customer_id == "cus_test123"
        assert vendor.password_hash != "Secret123!"
        assert db_session.query(ActivityLog).filter(ActivityLog.event_type == "vendor_registered").count() == 1

    def test_duplicate_username_conflicts(self, client, mock_stripe, make_vendor):
        make_vendor(username="v1")

        response = client.post("/api/auth/register", json={"username": "v1", "password": "Secret123!"})

        assert response.status_code == status.HTTP_409_CONFLICT
        mock_stripe["Customer.create"].assert_not_called()

    def test_stripe_failure_stores_nothing(self, client, mock_stripe, db_session):
        mock_stripe["Customer.create"].side_effect = stripe.APIError("Stripe is down")

        response = client.post("/api/auth/register", json={"username": "v2", "password": "Secret123!"})

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.json()["step"] == "create_customer"
        assert db_session.query(Vendor).count() == 0

    def test_short_password_is_rejected(self, client, mock_stripe):
        response = client.post("/api/auth/register", json={"username": "v3", "password": "short"})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.critical
class TestAuthentication:
    """Session login and protected routes"""

    def test_protected_routes_require_session(self, client):
        assert client.get("/api/vendor/invoices").status_code == status.HTTP_401_UNAUTHORIZED
        assert client.get("/api/admin/analytics").status_code == status.HTTP_401_UNAUTHORIZED
        assert client.get("/api/customers/cus_1/invoices").status_code == status.HTTP_401_UNAUTHORIZED

    def test_pending_vendor_cannot_log_in(self, client, make_vendor):
        make_vendor(username="v1", approved=False)

        response = _login(client)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert "awaiting admin approval" in response.json()["detail"]

    def test_wrong_password_is_unauthorized(self, client, make_vendor):
        make_vendor(username="v1")
        assert _login(client, password="wrong-password").status_code == status.HTTP_401_UNAUTHORIZED

    def test_login_sets_session_cookie(self, client, make_vendor, mock_redis):
        make_vendor(username="v1")

        response = _login(client)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["user"]["username"] == "v1"
        session_id = response.cookies.get("session_id")
        assert session_id
        assert mock_redis.get(f"session:{session_id}") is not None

    def test_me_and_logout(self, vendor_client):
        assert vendor_client.get("/api/auth/me").json()["user"]["username"] == "v1"

        assert vendor_client.post("/api/auth/logout").status_code == status.HTTP_200_OK
        vendor_client.cookies.clear()
        assert vendor_client.get("/api/auth/me").json() == {"user": None}

    def test_admin_login_with_bad_password(self, client):
        response = client.post("/api/auth/admin/login", json={"username": "admin", "password": "nope"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_vendor_cannot_use_admin_routes(self, vendor_client):
        assert vendor_client.get("/api/admin/vendors").status_code == status.HTTP_403_FORBIDDEN
        assert vendor_client.post("/api/admin/vendors/v1/approve").status_code == status.HTTP_403_FORBIDDEN

    def test_admin_is_not_a_vendor(self, admin_client):
        assert admin_client.get("/api/vendor/invoices").status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.critical
class TestAdminRoutes:
    """Approval, listings, analytics and the activity log"""

    def test_approve_vendor_enables_login(self, admin_client, make_vendor, db_session):
        make_vendor(username="v1", approved=False)

        response = admin_client.post("/api/admin/vendors/v1/approve")

        assert response.status_code == status.HTTP_200_OK
        entry = db_session.query(ActivityLog).filter(ActivityLog.event_type == "vendor_approved").one()
        assert "v1" in entry.description
        assert _login(admin_client).status_code == status.HTTP_200_OK

    def test_approving_twice_writes_one_entry(self, admin_client, make_vendor, db_session):
        make_vendor(username="v1", approved=False)
        admin_client.post("/api/admin/vendors/v1/approve")

        response = admin_client.post("/api/admin/vendors/v1/approve")

        assert "already approved" in response.json()["message"]
        assert db_session.query(ActivityLog).filter(ActivityLog.event_type == "vendor_approved").count() == 1

    def test_approve_unknown_vendor(self, admin_client):
        assert admin_client.post("/api/admin/vendors/ghost/approve").status_code == status.HTTP_404_NOT_FOUND

    def test_vendor_listings(self, admin_client, make_vendor):
        make_vendor(username="alpha", customer_id="cus_a", approved=False)
        make_vendor(username="beta", customer_id="cus_b", subscription_status="active")

        pending = admin_client.get("/api/admin/vendors/pending").json()
        assert [v["username"] for v in pending] == ["alpha"]

        active = admin_client.get("/api/admin/vendors", params={"subscription_status": "active"}).json()
        assert [v["username"] for v in active] == ["beta"]

        found = admin_client.get("/api/admin/vendors", params={"search": "ALP"}).json()
        assert [v["username"] for v in found] == ["alpha"]

    def test_vendor_details_include_invoices(self, admin_client, make_vendor, db_session):
        make_vendor(username="v1", customers=("cus_1",))
        db_session.add(Invoice(stripe_invoice_id="in_1", customer_id="cus_1", amount=10, status=InvoiceStatus.OPEN))
        db_session.commit()

        details = admin_client.get("/api/admin/vendors/v1").json()

        assert details["customers"] == [{"id": "cus_1"}]
        assert [i["stripe_invoice_id"] for i in details["invoices"]] == ["in_1"]

    def test_analytics(self, admin_client, make_vendor):
        make_vendor(username="alpha", customer_id="cus_a", approved=False)
        make_vendor(username="beta", customer_id="cus_b", subscription_status="active")

        data = admin_client.get("/api/admin/analytics").json()

        assert data == {"total_vendors": 2, "approved_vendors": 1, "trialing_vendors": 1}

    def test_activity_log_filters(self, admin_client, make_vendor):
        make_vendor(username="alpha", customer_id="cus_a", approved=False)
        make_vendor(username="beta", customer_id="cus_b", approved=False)
        admin_client.post("/api/admin/vendors/alpha/approve")
        admin_client.post("/api/admin/vendors/beta/approve")

        entries = admin_client.get("/api/admin/activity-log", params={"search": "beta"}).json()
        assert len(entries) == 1
        assert entries[0]["event_type"] == "vendor_approved"

        assert admin_client.get("/api/admin/activity-log", params={"limit": 0}).status_code == \
            status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.high
class TestVendorCustomers:
    """Customer management"""

    def test_create_customer(self, vendor_client, mock_stripe, db_session):
        response = vendor_client.post("/api/vendor/customers",
                                      json={"email": "buyer@example.com", "name": "Buyer"})

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["customer_id"] == "cus_test123"
        vendor = db_session.query(Vendor).filter(Vendor.username == "v1").one()
        assert vendor.customer_ids == ["cus_1", "cus_test123"]
        entry = db_session.query(ActivityLog).filter(ActivityLog.event_type == "customer_added").one()
        assert entry.related_id == "cus_test123"

    def test_associating_twice_conflicts(self, vendor_client):
        assert vendor_client.post("/api/vendor/customers/cus_2").status_code == status.HTTP_200_OK
        assert vendor_client.post("/api/vendor/customers/cus_2").status_code == status.HTTP_409_CONFLICT

    def test_list_customers_survives_stripe_failure(self, vendor_client, mock_stripe):
        mock_stripe["Customer.retrieve"].side_effect = stripe.APIConnectionError("Connection reset")

        response = vendor_client.get("/api/vendor/customers")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()[0]["name"] == "Customer cus_1 (unavailable)"

    def test_setup_intent_for_own_customer(self, vendor_client, mock_stripe):
        response = vendor_client.post("/api/vendor/setup-intent", json={"customer_id": "cus_1"})
        assert response.json() == {"client_secret": "seti_secret_test123"}

        response = vendor_client.post("/api/vendor/setup-intent", json={"customer_id": "cus_other"})
        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.high
class TestCustomerInvoices:
    """Invoices by customer"""

    def _seed(self, db_session):
        db_session.add(Invoice(stripe_invoice_id="in_1", customer_id="cus_1", amount=10, status=InvoiceStatus.OPEN))
        db_session.add(Invoice(stripe_invoice_id="in_2", customer_id="cus_9", amount=20, status=InvoiceStatus.PAID))
        db_session.commit()

    def test_vendor_sees_own_customer(self, vendor_client, db_session):
        self._seed(db_session)
        invoices = vendor_client.get("/api/customers/cus_1/invoices").json()
        assert [i["stripe_invoice_id"] for i in invoices] == ["in_1"]

    def test_vendor_cannot_see_other_customer(self, vendor_client, db_session):
        self._seed(db_session)
        assert vendor_client.get("/api/customers/cus_9/invoices").status_code == status.HTTP_404_NOT_FOUND

    def test_admin_sees_any_customer(self, admin_client, db_session):
        self._seed(db_session)
        invoices = admin_client.get("/api/customers/cus_9/invoices").json()
        assert invoices[0]["status"] == InvoiceStatus.PAID


@pytest.mark.high
class TestSubscription:
    """Platform subscription"""

    def test_subscribe_sets_provisional_status(self, vendor_client, mock_stripe, db_session):
        response = vendor_client.post("/api/vendor/subscription", json={"payment_method_id": "pm_1"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "active"
        assert mock_stripe["Subscription.create"].call_args.kwargs["items"] == [{"price": "price_test123"}]
        vendor = db_session.query(Vendor).filter(Vendor.username == "v1").one()
        assert vendor.subscription_status == "active"
        assert vendor.subscription_event_created is None

    def test_subscribe_without_plan(self, vendor_client, mock_stripe, app_context):
        app_context.settings.STRIPE_SUBSCRIPTION_PRICE_ID = ""

        response = vendor_client.post("/api/vendor/subscription", json={"payment_method_id": "pm_1"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        mock_stripe["PaymentMethod.attach"].assert_not_called()

    def test_cancel(self, vendor_client, mock_stripe, db_session):
        response = vendor_client.post("/api/vendor/subscription/cancel")

        assert response.json()["status"] == "canceled"
        mock_stripe["Subscription.cancel"].assert_called_once()
        assert db_session.query(ActivityLog).filter(ActivityLog.event_type == "subscription_canceled").count() == 1

    def test_cancel_without_subscription(self, vendor_client, mock_stripe):
        mock_stripe["Subscription.list"].return_value = {"data": []}

        response = vendor_client.post("/api/vendor/subscription/cancel")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        mock_stripe["Subscription.cancel"].assert_not_called()


@pytest.mark.high
class TestConnectAndPayouts:
    """Stripe Connect onboarding and payouts"""

    def test_payouts_require_connected_account(self, vendor_client, mock_stripe):
        response = vendor_client.post("/api/vendor/payouts", json={"amount": "50.00"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        mock_stripe["Payout.create"].assert_not_called()

    def test_connect_account_is_created_once(self, vendor_client, mock_stripe):
        first = vendor_client.post("/api/vendor/connect-account").json()
        second = vendor_client.post("/api/vendor/connect-account").json()

        assert first["account_id"] == second["account_id"] == "acct_test123"
        assert first["url"] == "https://connect.stripe.com/setup/test123"
        mock_stripe["Account.create"].assert_called_once()
        assert mock_stripe["AccountLink.create"].call_count == 2

    def test_request_and_list_payouts(self, vendor_client, mock_stripe, db_session):
        vendor_client.post("/api/vendor/connect-account")

        response = vendor_client.post("/api/vendor/payouts", json={"amount": "50.00"})

        assert response.json()["payout_id"] == "po_test123"
        params = mock_stripe["Payout.create"].call_args.kwargs
        assert params["amount"] == 5000
        assert params["stripe_account"] == "acct_test123"
        assert params["idempotency_key"].startswith("payout-")
        assert db_session.query(ActivityLog).filter(ActivityLog.event_type == "payout_requested").count() == 1

        payouts = vendor_client.get("/api/vendor/payouts").json()
        assert payouts[0]["amount"] == 50.0
        assert payouts[0]["currency"] == "USD"


@pytest.mark.high
class TestOperationalEndpoints:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == status.HTTP_200_OK
        assert "invoicing_webhook_events_total" in response.text


def test_admin_login_sets_role(client):
    response = client.post("/api/auth/admin/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert response.json()["user"]["role"] == "admin"
    assert client.get("/api/auth/me").json()["user"] == {"username": "admin", "role": "admin"}
