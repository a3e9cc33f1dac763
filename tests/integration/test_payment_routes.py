"""
Integration tests for payout onboarding and the gateway webhook.
"""
import json
from uuid import UUID

import pytest

from marketplace.models import Payment, User
from marketplace.lib.metrics import get_metrics_collector

pytestmark = pytest.mark.integration


def _post_event(client, event):
    return client.post(
        "/payments/webhook",
        content=json.dumps(event),
        headers={"Content-Type": "application/json", "Stripe-Signature": "t=1,v1=test"},
    )


class TestConnect:

    def test_customer_is_idempotent(self, client, make_user, gateway):
        user = make_user()

        first = client.post("/payments/connect/customer", json={"user_id": str(user.id)})
        second = client.post("/payments/connect/customer", json={"user_id": str(user.id)})

        assert first.status_code == 200
        assert first.json()["data"]["customer_id"] == second.json()["data"]["customer_id"]
        assert gateway.call_count("create_customer") == 1

    def test_account_then_onboarding_link(self, client, make_user, db_session):
        user = make_user()

        missing = client.post("/payments/connect/onboarding-link", json={"user_id": str(user.id)})
        assert missing.status_code == 400

        account_id = client.post("/payments/connect/account", json={"user_id": str(user.id)}).json()["data"]["account_id"]
        link = client.post("/payments/connect/onboarding-link", json={"user_id": str(user.id)}).json()["data"]

        assert link["account_id"] == account_id
        assert link["url"]
        assert db_session.get(User, user.id, populate_existing=True).gateway_account_id == account_id

    def test_gateway_failure_is_502(self, client, make_user, gateway):
        gateway.fail_operations.add("create_account")
        user = make_user()

        response = client.post("/payments/connect/account", json={"user_id": str(user.id)})

        assert response.status_code == 502
        assert response.json()["details"]["operation"] == "create_account"
        assert get_metrics_collector().get_counter_value("gateway_errors_total", {"operation": "create_account"}) == 1


class TestWebhook:

    @pytest.fixture
    def booked(self, client, make_user, make_provider, make_listing):
        customer = make_user()
        provider = make_provider()
        listing = make_listing(provider)
        data = client.post("/bookings", json={
            "customer_id": str(customer.id),
            "provider_id": str(provider.id),
            "service_id": str(listing.id),
            "amount": 40,
        }).json()["data"]
        return data["payment"]

    def test_intent_succeeded_completes_payment(self, client, booked, db_session):
        response = _post_event(client, {
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": booked["payment_intent_id"]}},
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data == {"type": "payment_intent.succeeded", "payments_updated": 1, "invoices_updated": 0, "received": True}
        payment = db_session.get(Payment, UUID(booked["id"]), populate_existing=True)
        assert payment.status.value == "completed"

    def test_charge_refunded(self, client, booked, db_session):
        _post_event(client, {
            "type": "charge.refunded",
            "data": {"object": {"payment_intent": booked["payment_intent_id"]}},
        })

        payment = db_session.get(Payment, UUID(booked["id"]), populate_existing=True)
        assert payment.status.value == "refunded"

    def test_capture_event_after_cancellation_keeps_refund(self, client, booked, db_session):
        client.post(f"/bookings/{booked['booking_id']}/cancel", json={"cancelled_by": "customer"})

        response = _post_event(client, {
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": booked["payment_intent_id"]}},
        })

        assert response.json()["data"]["payments_updated"] == 0
        payment = db_session.get(Payment, UUID(booked["id"]), populate_existing=True)
        assert payment.status.value == "refunded"

    def test_other_events_are_acknowledged(self, client):
        response = _post_event(client, {"type": "customer.created", "data": {"object": {}}})

        assert response.status_code == 200
        assert response.json()["data"]["payments_updated"] == 0

    def test_malformed_payload_is_rejected(self, client):
        response = client.post("/payments/webhook", content=b"not json")

        assert response.status_code == 400
        assert response.json()["message"] == "Webhook error"
