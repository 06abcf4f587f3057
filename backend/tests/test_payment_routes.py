"""
Payment route tests: HTTP status mapping for the Midtrans notification,
checkout creation and manual verification endpoints.
"""
from unittest.mock import AsyncMock, patch

from services.payment_service import (
    InvalidSignatureError,
    InvalidOrderIdError,
    InvalidTierError,
    OrderNotFoundError,
    PaymentGatewayError,
    ReconcileOutcome,
)

NOTIFICATION = {
    "order_id": "flxbt-abc-1718000000000",
    "status_code": "200",
    "gross_amount": "999000.00",
    "signature_key": "deadbeef",
    "transaction_status": "settlement",
}


class TestNotificationEndpoint:
    def test_processed_notification_returns_plain_ok(self, client):
        handler = AsyncMock(return_value=ReconcileOutcome.SUCCESS)
        with patch("routes.payment.payment_service.handle_notification", handler):
            response = client.post("/api/payment/notification", json=NOTIFICATION)
        assert response.status_code == 200
        assert response.text == "OK"
        forwarded = handler.call_args[0][0]
        assert forwarded["order_id"] == NOTIFICATION["order_id"]
        assert forwarded["gross_amount"] == "999000.00"

    def test_numeric_fields_are_forwarded_as_strings(self, client):
        handler = AsyncMock(return_value=ReconcileOutcome.PENDING)
        body = dict(NOTIFICATION, status_code=201)
        with patch("routes.payment.payment_service.handle_notification", handler):
            client.post("/api/payment/notification", json=body)
        assert handler.call_args[0][0]["status_code"] == "201"

    def test_signature_mismatch_is_403(self, client):
        handler = AsyncMock(side_effect=InvalidSignatureError("x"))
        with patch("routes.payment.payment_service.handle_notification", handler):
            response = client.post("/api/payment/notification", json=NOTIFICATION)
        assert response.status_code == 403

    def test_malformed_order_id_is_400(self, client):
        handler = AsyncMock(side_effect=InvalidOrderIdError("x"))
        with patch("routes.payment.payment_service.handle_notification", handler):
            response = client.post("/api/payment/notification", json=NOTIFICATION)
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid Order ID format"

    def test_processing_failure_is_500_so_midtrans_retries(self, client):
        handler = AsyncMock(side_effect=PaymentGatewayError("timeout"))
        with patch("routes.payment.payment_service.handle_notification", handler):
            response = client.post("/api/payment/notification", json=NOTIFICATION)
        assert response.status_code == 500

    def test_non_json_body_is_400(self, client):
        response = client.post(
            "/api/payment/notification",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400


class TestCreateTransactionEndpoint:
    def test_requires_authentication(self, client, memory_db):
        response = client.post("/api/payment/transaction", json={"tier": "growth"})
        assert response.status_code == 401

    def test_returns_token_and_redirect(self, client, memory_db, user_factory, auth_headers):
        user = user_factory()
        memory_db.users.docs.append(user)
        result = {"token": "tok", "redirect_url": "https://pay", "order_id": "flxbt-x-1"}
        with patch("routes.payment.payment_service.create_order", AsyncMock(return_value=result)) as create:
            response = client.post("/api/payment/transaction", json={"tier": "growth"}, headers=auth_headers(user))
        assert response.status_code == 200
        assert response.json() == result
        principal, tier = create.call_args[0]
        assert principal["user_id"] == user["user_id"]
        assert "password_hash" not in principal
        assert tier == "growth"

    def test_invalid_tier_is_400(self, client, memory_db, user_factory, auth_headers):
        user = user_factory()
        memory_db.users.docs.append(user)
        with patch("routes.payment.payment_service.create_order", AsyncMock(side_effect=InvalidTierError("free"))):
            response = client.post("/api/payment/transaction", json={"tier": "free"}, headers=auth_headers(user))
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid tier selected"

    def test_gateway_failure_is_500(self, client, memory_db, user_factory, auth_headers):
        user = user_factory()
        memory_db.users.docs.append(user)
        with patch("routes.payment.payment_service.create_order", AsyncMock(side_effect=PaymentGatewayError("x"))):
            response = client.post("/api/payment/transaction", json={"tier": "pro"}, headers=auth_headers(user))
        assert response.status_code == 500


class TestVerifyEndpoint:
    def test_disabled_in_production(self, client, memory_db, user_factory, auth_headers, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        user = user_factory()
        memory_db.users.docs.append(user)
        response = client.post("/api/payment/verify", json={"orderId": "flxbt-x-1"}, headers=auth_headers(user))
        assert response.status_code == 403

    def test_verifies_own_order(self, client, memory_db, user_factory, auth_headers, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "development")
        user = user_factory()
        memory_db.users.docs.append(user)
        verified = {"status": "success", "message": "Payment verified"}
        with patch("routes.payment.payment_service.verify_order", AsyncMock(return_value=verified)):
            response = client.post("/api/payment/verify", json={"orderId": "flxbt-x-1"}, headers=auth_headers(user))
        assert response.status_code == 200
        assert response.json() == verified

    def test_unknown_order_is_404(self, client, memory_db, user_factory, auth_headers, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "development")
        user = user_factory()
        memory_db.users.docs.append(user)
        with patch("routes.payment.payment_service.verify_order", AsyncMock(side_effect=OrderNotFoundError("x"))):
            response = client.post("/api/payment/verify", json={"orderId": "flxbt-x-1"}, headers=auth_headers(user))
        assert response.status_code == 404


def test_tier_catalog_is_public(client):
    response = client.get("/api/payment/tiers")
    assert response.status_code == 200
    tiers = {t["tier"]: t for t in response.json()["tiers"]}
    assert tiers["pro"]["price"] == 1999000
