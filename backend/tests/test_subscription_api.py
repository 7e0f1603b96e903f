"""
Subscription and billing API tests (TestClient, database mocked).
Auth enforcement, plan catalogue, select-plan responses (free/premium/conflict),
payment verification status codes and invoices listing.
"""
import hashlib
import hmac
from datetime import datetime, timezone, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from jose import jwt

import auth
from services.razorpay_service import RazorpayService, PaymentGatewayError

SECRET = "test-secret"


def _token(sub="user-1", email="user@example.com", **overrides):
    claims = {
        "sub": sub,
        "email": email,
        "aud": auth.JWT_AUDIENCE,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        **overrides,
    }
    return jwt.encode(claims, auth.JWT_SECRET, algorithm=auth.JWT_ALGORITHM)


@pytest.fixture
def headers():
    return {"Authorization": f"Bearer {_token()}"}


@pytest.fixture
def db(mock_db):
    with patch("services.subscription_service.database.get_db", return_value=mock_db):
        yield mock_db


@pytest.fixture
def gateway():
    gateway = RazorpayService(key_id="rzp_test_key", key_secret=SECRET)
    with patch("services.subscription_service.razorpay_service", gateway):
        yield gateway


class TestAuth:
    def test_missing_token(self, client):
        assert client.get("/api/subscription").status_code == 401

    def test_bad_token(self, client):
        response = client.get("/api/subscription", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_wrong_audience(self, client):
        token = _token(aud="someone-else")
        response = client.get("/api/subscription", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_expired_token(self, client):
        token = _token(exp=datetime.now(timezone.utc) - timedelta(minutes=5))
        response = client.get("/api/subscription", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestPublicEndpoints:
    def test_root(self, client):
        assert client.get("/api").json()["service"] == "ProspectFlow"

    def test_plans_without_auth(self, client):
        response = client.get("/api/subscription/plans")
        assert response.status_code == 200
        plans = response.json()["plans"]
        assert [p["id"] for p in plans] == ["free", "premium-1m", "premium-6m", "premium-12m"]


class TestGetSubscription:
    def test_no_record_resolves_free(self, client, headers, db):
        response = client.get("/api/subscription", headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["subscription"] is None
        assert data["effective_tier_for_limits"] == "free"
        assert data["limits"] == {"companies": 30, "contacts": 30, "jobOpenings": 30}

    def test_expired_premium_in_grace(self, client, headers, db):
        expiry = datetime.now(timezone.utc) - timedelta(days=2)
        db.user_subscriptions.find_one = AsyncMock(return_value={
            "user_id": "user-1", "tier": "premium", "status": "active",
            "plan_start_date": expiry - timedelta(days=30), "plan_expiry_date": expiry,
        })
        data = client.get("/api/subscription", headers=headers).json()
        assert data["actual_tier"] == "premium"
        assert data["effective_tier_for_limits"] == "free"
        assert data["in_grace_period"] is True
        assert data["days_left_in_grace_period"] == 5

    def test_usage(self, client, headers, db):
        db.contacts.count_documents = AsyncMock(return_value=4)
        data = client.get("/api/subscription/usage", headers=headers).json()
        assert data["usage"]["contacts"]["used"] == 4
        assert data["usage"]["contacts"]["remaining"] == 26


class TestSelectPlan:
    def test_free_when_already_free_conflicts(self, client, headers, db):
        response = client.post("/api/billing/select-plan", json={"plan_id": "free"}, headers=headers)
        assert response.status_code == 409

    def test_unknown_plan(self, client, headers, db):
        response = client.post("/api/billing/select-plan", json={"plan_id": "gold"}, headers=headers)
        assert response.status_code == 400

    def test_premium_returns_checkout_order(self, client, headers, db, gateway):
        gateway.create_order = AsyncMock(return_value={"order_id": "order_9", "amount": 53100, "currency": "INR"})
        response = client.post("/api/billing/select-plan", json={"plan_id": "premium-12m"}, headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["requires_payment"] is True
        assert data["key_id"] == "rzp_test_key"
        assert data["order_id"] == "order_9"
        assert data["amount"] == 53100
        assert data["plan_id"] == "premium-12m"
        assert db.payment_orders.insert_one.await_args.args[0]["user_id"] == "user-1"

    def test_gateway_failure_is_502(self, client, headers, db, gateway):
        gateway.create_order = AsyncMock(side_effect=PaymentGatewayError("Razorpay rejected checkout request."))
        response = client.post("/api/billing/select-plan", json={"plan_id": "premium-1m"}, headers=headers)
        assert response.status_code == 502

    def test_missing_plan_id_is_422(self, client, headers):
        response = client.post("/api/billing/select-plan", json={}, headers=headers)
        assert response.status_code == 422
        assert "request_id" in response.json()


class TestVerify:
    ORDER_ID, PAYMENT_ID = "order_ABCDEF", "pay_XYZ"

    def _body(self, signature=None, payment_id=None, **extra):
        payment_id = payment_id or self.PAYMENT_ID
        if signature is None:
            signature = hmac.new(SECRET.encode(), f"{self.ORDER_ID}|{payment_id}".encode(), hashlib.sha256).hexdigest()
        return {
            "razorpay_order_id": self.ORDER_ID,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature,
            **extra,
        }

    def _store_order(self, db, **fields):
        row = {
            "order_id": self.ORDER_ID, "user_id": "user-1", "plan_id": "premium-1m",
            "amount": 5900, "currency": "INR", "status": "created", **fields,
        }

        async def find_one(query, projection=None):
            if query.get("order_id") == self.ORDER_ID:
                return dict(row)
            return None

        async def update_one(query, update, upsert=False):
            if query.get("status") and query["status"] != row["status"]:
                return SimpleNamespace(modified_count=0)
            row.update(update.get("$set", {}))
            return SimpleNamespace(modified_count=1)

        db.payment_orders.find_one = AsyncMock(side_effect=find_one)
        db.payment_orders.update_one = AsyncMock(side_effect=update_one)
        return row

    def _bind_subscription(self, db):
        stored = {}

        async def update_one(query, update, upsert=False):
            stored.update(update["$set"])

        async def find_one(query, projection=None):
            return dict(stored) if stored else None

        db.user_subscriptions.update_one = AsyncMock(side_effect=update_one)
        db.user_subscriptions.find_one = AsyncMock(side_effect=find_one)
        return stored

    def test_bad_signature_is_400(self, client, headers, db, gateway):
        self._store_order(db)
        response = client.post("/api/billing/verify", json=self._body("deadbeef"), headers=headers)
        assert response.status_code == 400
        db.user_subscriptions.update_one.assert_not_called()

    def test_valid_signature_applies_premium(self, client, headers, db, gateway):
        self._bind_subscription(db)
        row = self._store_order(db)

        response = client.post("/api/billing/verify", json=self._body(), headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["effective_tier_for_limits"] == "premium"
        assert data["subscription"]["razorpay_payment_id"] == "pay_XYZ"
        assert data["invoice"]["amount_paid"] == 59
        assert row["status"] == "paid"

    def test_client_plan_id_ignored(self, client, headers, db, gateway):
        stored = self._bind_subscription(db)
        self._store_order(db)

        response = client.post("/api/billing/verify", json=self._body(plan_id="premium-12m"), headers=headers)

        assert response.status_code == 200
        assert response.json()["invoice"]["plan_id"] == "premium-1m"
        months = (stored["plan_expiry_date"].year - stored["plan_start_date"].year) * 12 \
            + stored["plan_expiry_date"].month - stored["plan_start_date"].month
        assert months == 1

    def test_replay_returns_current_state(self, client, headers, db, gateway):
        stored = self._bind_subscription(db)
        self._store_order(db)

        first = client.post("/api/billing/verify", json=self._body(), headers=headers)
        expiry = stored["plan_expiry_date"]
        second = client.post("/api/billing/verify", json=self._body(), headers=headers)

        assert first.status_code == 200 and second.status_code == 200
        assert second.json()["already_applied"] is True
        assert second.json()["invoice"] is None
        assert stored["plan_expiry_date"] == expiry
        assert db.invoices.insert_one.await_count == 1

    def test_unknown_order_is_404(self, client, headers, db, gateway):
        response = client.post("/api/billing/verify", json=self._body(), headers=headers)
        assert response.status_code == 404
        db.user_subscriptions.update_one.assert_not_called()

    def test_other_users_order_is_403(self, client, headers, db, gateway):
        self._store_order(db, user_id="user-2")
        response = client.post("/api/billing/verify", json=self._body(), headers=headers)
        assert response.status_code == 403
        db.payment_orders.update_one.assert_not_called()
        db.user_subscriptions.update_one.assert_not_called()

    def test_order_settled_by_other_payment_is_409(self, client, headers, db, gateway):
        self._store_order(db, status="paid", razorpay_payment_id="pay_EARLIER")
        response = client.post("/api/billing/verify", json=self._body(payment_id="pay_OTHER"), headers=headers)
        assert response.status_code == 409
        db.user_subscriptions.update_one.assert_not_called()


class TestInvoices:
    def test_list_invoices(self, client, headers, db):
        invoices = [{"invoice_number": "INV-20240115-ABCDEF", "amount_paid": 59}]
        db.invoices.find.return_value.sort.return_value.limit.return_value.to_list = AsyncMock(return_value=invoices)
        data = client.get("/api/billing/invoices", headers=headers).json()
        assert data == {"invoices": invoices, "total": 1}
        db.invoices.find.assert_called_once_with({"user_id": "user-1"}, {"_id": 0})
