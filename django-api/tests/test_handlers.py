"""Tests for the HTTP handlers.

Run with: pytest tests/test_handlers.py -v
"""

import json
from unittest import mock

import pytest

from reservations import models as orm
from reservations.gateway import signatures


def _payload(method: str = "zelle", **overrides) -> dict:
    payload = {
        "contact": {"email": "ana@example.com", "phone": "+58 414-1234567"},
        "items": [
            {"full_name": "Ana Pérez", "identification": "V12345678", "size": "M", "gender": "F"},
            {"full_name": "Eva Pérez", "identification": "V23456789", "size": "M", "gender": "F"},
        ],
        "payment_method": method,
        "payment_reference": "ZL-1001",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def registered(api_client, stock):
    stock("M:F", 10)
    response = api_client.post("/api/groups", _payload(), format="json")
    assert response.status_code == 201
    return response.json()["group"]


@pytest.mark.django_db
class TestGroupEndpoints:
    """Tests for registration and lookup."""

    def test_register_manual_group(self, api_client, stock):
        stock("M:F", 10)
        response = api_client.post("/api/groups", _payload(), format="json")
        assert response.status_code == 201
        body = response.json()
        assert body["amount"] == "50.00"
        assert body["currency"] == "USD"
        assert body["group"]["payment_status"] == "pending"
        assert body["group"]["code"].startswith("G")
        assert len(body["group"]["items"]) == 2
        assert orm.InventoryUnit.objects.get(category="M:F").reserved == 2

    def test_store_payment_returns_numbers(self, api_client, stock):
        stock("M:F", 10)
        response = api_client.post(
            "/api/groups", _payload("cash_usd", performed_by="cashier-1"), format="json"
        )
        assert response.status_code == 201
        assert response.json()["numbers"] == ["0001", "0002"]

    def test_malformed_body_is_400(self, api_client, db):
        response = api_client.post("/api/groups", {"contact": {}}, format="json")
        assert response.status_code == 400

    def test_business_rule_violation_carries_error_code(self, api_client, stock):
        stock("M:F", 10)
        response = api_client.post("/api/groups", _payload(payment_reference=None), format="json")
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_FAILED"
        assert response.json()["field"] == "payment_reference"

    def test_sold_out_is_409_with_counts(self, api_client, stock):
        stock("M:F", 1)
        response = api_client.post("/api/groups", _payload(), format="json")
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "INSUFFICIENT_INVENTORY"
        assert (body["category"], body["requested"], body["available"]) == ("M:F", 2, 1)

    def test_get_group(self, api_client, registered):
        response = api_client.get(f"/api/groups/{registered['id']}")
        assert response.status_code == 200
        assert response.json()["code"] == registered["code"]

    def test_unknown_group_is_404(self, api_client, db):
        response = api_client.get("/api/groups/7f1c9a52-3e0b-4d52-9a3c-2f1d0c8b6e11")
        assert response.status_code == 404
        assert response.json()["error"] == "GROUP_NOT_FOUND"

    def test_malformed_group_id_is_400(self, api_client, db):
        assert api_client.get("/api/groups/not-a-uuid").status_code == 400

    def test_delete_group(self, api_client, registered):
        response = api_client.delete(
            f"/api/groups/{registered['id']}", {"performed_by": "admin"}, format="json"
        )
        assert response.status_code == 200
        assert response.json()["released_units"] == 2
        assert not orm.Group.objects.exists()


@pytest.mark.django_db
class TestAdminEndpoints:
    """Tests for confirmation and rejection."""

    def test_confirm_then_confirm_again(self, api_client, registered):
        url = f"/api/groups/{registered['id']}/confirm"
        first = api_client.post(url, {"performed_by": "admin"}, format="json")
        assert first.status_code == 200
        assert first.json()["numbers"] == ["0001", "0002"]
        assert first.json()["group"]["payment_status"] == "confirmed"

        second = api_client.post(url, {"performed_by": "admin"}, format="json")
        assert second.status_code == 409
        assert second.json()["error"] == "ALREADY_PROCESSED"

    def test_reject(self, api_client, registered):
        response = api_client.post(
            f"/api/groups/{registered['id']}/reject",
            {"performed_by": "admin", "reason": "Payment not found"},
            format="json",
        )
        assert response.status_code == 200
        assert response.json()["group"]["rejection_reason"] == "Payment not found"

    def test_confirm_requires_actor(self, api_client, registered):
        response = api_client.post(f"/api/groups/{registered['id']}/confirm", {}, format="json")
        assert response.status_code == 400

    def test_transactions(self, api_client, registered):
        response = api_client.get(f"/api/groups/{registered['id']}/transactions")
        assert response.status_code == 200
        [transaction] = response.json()
        assert transaction["channel"] == "manual_proof"
        assert transaction["reference"] == "ZL-1001"


@pytest.mark.django_db
class TestInventoryEndpoints:
    def test_availability(self, api_client, stock):
        stock("M:F", 3)
        response = api_client.get("/api/availability", {"category": "M:F", "quantity": 2})
        assert response.status_code == 200
        assert response.json() == {"category": "M:F", "requested": 2, "available": 3, "is_available": True}

    def test_set_capacity(self, api_client, stock):
        stock("M:F", 3)
        response = api_client.put("/api/inventory", {"category": "M:F", "capacity": 12}, format="json")
        assert response.status_code == 200
        assert response.json()["available"] == 12
        assert api_client.get("/api/inventory").json()[0]["capacity"] == 12

    def test_banks(self, api_client):
        response = api_client.get("/api/gateway/banks")
        assert response.status_code == 200
        assert {"code": "0134", "name": "Banesco"} in response.json()


@pytest.mark.django_db
class TestGatewayEndpoints:
    """The orchestrator is swapped for one wired to a mocked gateway."""

    @pytest.fixture(autouse=True)
    def wired(self, orchestrator):
        with mock.patch("reservations.handlers.views.build_orchestrator", return_value=orchestrator):
            yield

    @pytest.fixture
    def group(self, orchestrator, stock, contact, make_item):
        from reservations.domain import PaymentMethod

        stock("M:F", 10)
        return orchestrator.register(contact, [make_item()], PaymentMethod.MOBILE_P2C).group

    def test_declined_payment_is_402(self, api_client, group, http, gateway_response):
        http.post.side_effect = [
            gateway_response(codigo="00", control="ABC123"),
            gateway_response(codigo="05", descripcion="FONDOS INSUFICIENTES", control="ABC123"),
        ]
        response = api_client.post(
            f"/api/groups/{group.id}/gateway-payment",
            {"phone": "04145551234", "bank_code": "0134", "national_id": "12345678"},
            format="json",
        )
        assert response.status_code == 402
        body = response.json()
        assert body["outcome"] == "declined"
        assert body["transaction"]["response_code"] == "05"
        assert body["numbers"] == []

    def test_approved_payment_is_200(self, api_client, group, http, gateway_response):
        http.post.side_effect = [
            gateway_response(codigo="00", control="ABC123"),
            gateway_response(codigo="00", descripcion="APROBADA", control="ABC123"),
        ]
        response = api_client.post(
            f"/api/groups/{group.id}/gateway-payment",
            {"phone": "04145551234", "bank_code": "0134", "national_id": "12345678"},
            format="json",
        )
        assert response.status_code == 200
        assert response.json()["numbers"] == ["0001"]

    def test_invalid_bank_is_400(self, api_client, group, http):
        response = api_client.post(
            f"/api/groups/{group.id}/gateway-payment",
            {"phone": "04145551234", "bank_code": "9999", "national_id": "12345678"},
            format="json",
        )
        assert response.status_code == 400
        http.post.assert_not_called()

    def test_reconcile_unknown_control_is_404(self, api_client):
        response = api_client.post("/api/gateway/transactions/NOPE/reconcile", {}, format="json")
        assert response.status_code == 404


@pytest.mark.django_db
class TestGatewayWebhook:
    """Signed status notifications pushed by the gateway."""

    SECRET = "whsec-test"

    @pytest.fixture(autouse=True)
    def wired(self, orchestrator, settings):
        gateway = {**settings.RESERVATIONS["GATEWAY"], "WEBHOOK_SECRET": self.SECRET}
        settings.RESERVATIONS = {**settings.RESERVATIONS, "GATEWAY": gateway}
        with mock.patch("reservations.handlers.views.build_orchestrator", return_value=orchestrator):
            yield

    @pytest.fixture
    def attempt(self, orchestrator, stock, contact, make_item, http, gateway_response):
        import requests

        from reservations.domain import PaymentMethod
        from reservations.gateway import MobilePayer

        stock("M:F", 10)
        group = orchestrator.register(contact, [make_item()], PaymentMethod.MOBILE_P2C).group
        http.post.side_effect = [gateway_response(codigo="00", control="ABC123")] + [requests.Timeout()] * 3
        return orchestrator.pay_with_gateway(group.id, MobilePayer("04145551234", "0134", "12345678"))

    def _post(self, api_client, payload: dict, secret: str | None = SECRET):
        body = json.dumps(payload).encode()
        headers = {"HTTP_X_GATEWAY_SIGNATURE": signatures.sign(secret, body)} if secret else {}
        return api_client.post("/api/gateway/webhook", body, content_type="application/json", **headers)

    def test_signed_approval_confirms_group(self, api_client, attempt):
        response = self._post(api_client, {"control": "ABC123", "estado": "A", "codigo": "00", "authid": "42"})
        assert response.status_code == 200
        body = response.json()
        assert body["received"] is True
        assert body["outcome"] == "approved"
        assert body["numbers"] == ["0001"]

    def test_signed_decline_rejects_group(self, api_client, attempt):
        response = self._post(api_client, {"control": "ABC123", "estado": "R", "codigo": "51"})
        assert response.status_code == 200
        assert response.json()["group"]["payment_status"] == "rejected"

    def test_bad_signature_is_401(self, api_client, attempt):
        response = self._post(api_client, {"control": "ABC123", "estado": "A"}, secret="someone-else")
        assert response.status_code == 401
        assert orm.Group.objects.get().payment_status == "processing"

    def test_missing_signature_is_401(self, api_client, attempt):
        response = self._post(api_client, {"control": "ABC123", "estado": "A"}, secret=None)
        assert response.status_code == 401

    def test_missing_control_is_400(self, api_client, attempt):
        response = self._post(api_client, {"estado": "A"})
        assert response.status_code == 400

    def test_unknown_control_is_404(self, api_client, db):
        response = self._post(api_client, {"control": "NOPE", "estado": "A"})
        assert response.status_code == 404

    def test_disabled_without_secret(self, api_client, settings, db):
        gateway = {**settings.RESERVATIONS["GATEWAY"], "WEBHOOK_SECRET": ""}
        settings.RESERVATIONS = {**settings.RESERVATIONS, "GATEWAY": gateway}
        response = self._post(api_client, {"control": "ABC123", "estado": "A"})
        assert response.status_code == 403
