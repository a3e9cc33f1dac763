"""
Unit tests for the payment gateway adapters.
"""
import json
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from marketplace.api.middleware.error_handler import UpstreamServiceException
from marketplace.services import payment_gateway
from marketplace.services.payment_gateway import (
    PaymentGatewayError,
    SandboxPaymentGateway,
    StripePaymentGateway,
    from_minor_units,
    gateway_call,
    get_payment_gateway,
    to_minor_units,
)


@pytest.mark.unit
def test_minor_unit_conversion():
    assert to_minor_units(12.34) == 1234
    assert to_minor_units(220) == 22000
    assert from_minor_units(1999) == 19.99
    assert from_minor_units(None) == 0


@pytest.mark.unit
class TestSandboxGateway:

    def test_manual_capture_flow(self, gateway):
        intent = gateway.create_payment_intent(100, "inr", capture_mode="manual", commission=20, destination="acct_1")

        assert intent.status == "requires_capture"
        assert intent.is_authorized and not intent.is_captured

        captured = gateway.capture_payment_intent(intent.id)
        assert captured.is_captured
        assert captured.amount_received == 100

        refund = gateway.create_refund(intent.id, 60)
        assert refund.amount == 60
        with pytest.raises(PaymentGatewayError):
            gateway.create_refund(intent.id, 41)

    def test_automatic_capture(self, gateway):
        intent = gateway.create_payment_intent(40, "eur", capture_mode="automatic")
        assert intent.status == "succeeded"

    def test_declined_method(self, gateway):
        intent = gateway.create_payment_intent(10, "inr", payment_method_id=SandboxPaymentGateway.DECLINED_METHOD)
        assert intent.status == "requires_payment_method"
        assert not intent.is_authorized

    def test_cannot_refund_uncaptured(self, gateway):
        intent = gateway.create_payment_intent(10, "inr")
        with pytest.raises(PaymentGatewayError):
            gateway.create_refund(intent.id, 10)

    def test_cannot_capture_twice(self, gateway):
        intent = gateway.create_payment_intent(10, "inr")
        gateway.capture_payment_intent(intent.id)
        with pytest.raises(PaymentGatewayError):
            gateway.capture_payment_intent(intent.id)

    def test_unknown_intent(self, gateway):
        with pytest.raises(PaymentGatewayError) as exc:
            gateway.retrieve_payment_intent("pi_missing")
        assert exc.value.operation == "retrieve_payment_intent"

    def test_simulated_failures(self, gateway):
        gateway.fail_operations.add("create_customer")
        with pytest.raises(PaymentGatewayError):
            gateway.create_or_attach_customer("a@example.com")
        assert gateway.call_count("create_customer") == 1

    def test_existing_customer_is_reused(self, gateway):
        assert gateway.create_or_attach_customer("a@example.com", existing_id="cus_1") == "cus_1"

    def test_webhook_payload(self, gateway):
        event = gateway.construct_webhook_event(json.dumps({"type": "charge.refunded"}).encode(), None)
        assert event["type"] == "charge.refunded"

        with pytest.raises(PaymentGatewayError):
            gateway.construct_webhook_event(b"not json", None)
        with pytest.raises(PaymentGatewayError):
            gateway.construct_webhook_event(b"{}", None)


@pytest.mark.unit
def test_gateway_call_wraps_errors():
    def boom():
        raise PaymentGatewayError("card_declined", "create_payment_intent")

    with pytest.raises(UpstreamServiceException) as exc:
        gateway_call("create_payment_intent", boom)

    assert exc.value.details == {"operation": "create_payment_intent", "reason": "card_declined"}


@pytest.mark.unit
def test_gateway_selection(monkeypatch):
    monkeypatch.setattr(payment_gateway, "_sandbox_gateway", None)
    monkeypatch.setattr(payment_gateway.settings, "payment_provider", "sandbox")

    first = get_payment_gateway()
    assert isinstance(first, SandboxPaymentGateway)
    assert get_payment_gateway() is first

    monkeypatch.setattr(payment_gateway.settings, "payment_provider", "stripe")
    monkeypatch.setattr(payment_gateway.settings, "stripe_secret_key", "sk_test_123")
    assert isinstance(get_payment_gateway(), StripePaymentGateway)


@pytest.mark.unit
class TestStripeGateway:

    @pytest.fixture
    def stripe_gateway(self):
        return StripePaymentGateway(api_key="sk_test_123", webhook_secret="whsec_123")

    def test_requires_key(self, monkeypatch):
        monkeypatch.setattr(payment_gateway.settings, "stripe_secret_key", "")
        with pytest.raises(ValueError):
            StripePaymentGateway()

    def test_destination_charge_params(self, stripe_gateway):
        fake = SimpleNamespace(id="pi_1", status="requires_capture", amount=10000, amount_received=0, currency="inr")

        with patch.object(stripe.PaymentIntent, "create", return_value=fake) as create:
            result = stripe_gateway.create_payment_intent(
                100, "inr", capture_mode="manual", commission=20, destination="acct_9", customer_id="cus_3",
            )

        params = create.call_args.kwargs
        assert params["amount"] == 10000
        assert params["capture_method"] == "manual"
        assert params["application_fee_amount"] == 2000
        assert params["transfer_data"] == {"destination": "acct_9"}
        assert params["customer"] == "cus_3"
        assert params["confirm"] is True
        assert result.amount == 100
        assert result.is_authorized

    def test_refund_in_minor_units(self, stripe_gateway):
        fake = SimpleNamespace(id="re_1", status="succeeded", amount=4550)

        with patch.object(stripe.Refund, "create", return_value=fake) as create:
            refund = stripe_gateway.create_refund("pi_1", 45.5)

        create.assert_called_once_with(payment_intent="pi_1", amount=4550)
        assert refund.amount == 45.5

    def test_stripe_errors_become_gateway_errors(self, stripe_gateway):
        error = stripe.CardError("Your card was declined.", param=None, code="card_declined")

        with patch.object(stripe.PaymentIntent, "capture", side_effect=error):
            with pytest.raises(PaymentGatewayError) as exc:
                stripe_gateway.capture_payment_intent("pi_1")

        assert exc.value.operation == "capture_payment_intent"

    def test_webhook_signature_failure(self, stripe_gateway):
        error = stripe.SignatureVerificationError("bad signature", "t=1,v1=abc")

        with patch.object(stripe.Webhook, "construct_event", side_effect=error):
            with pytest.raises(PaymentGatewayError):
                stripe_gateway.construct_webhook_event(b"{}", "t=1,v1=abc")

    def test_webhook_requires_secret(self, monkeypatch):
        monkeypatch.setattr(payment_gateway.settings, "stripe_webhook_secret", "")
        gateway = StripePaymentGateway(api_key="sk_test_123")

        with pytest.raises(PaymentGatewayError):
            gateway.construct_webhook_event(b"{}", "sig")
