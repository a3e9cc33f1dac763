"""
Unit tests for payment gateway webhook reconciliation.
"""
import pytest

from marketplace.models import Booking, BookingStatus, Invoice, InvoiceStatus, Payment, PaymentStatus
from marketplace.services.webhook_service import WebhookService


@pytest.fixture
def service(db_session, clock):
    return WebhookService(db_session, clock=clock)


@pytest.fixture
def payment(db_session, make_user, make_provider, make_listing):
    provider = make_provider()
    customer = make_user()
    listing = make_listing(provider)
    booking = Booking(
        customer_id=customer.id,
        provider_id=provider.id,
        service_id=listing.id,
        amount=100,
        status=BookingStatus.BOOKED,
    )
    db_session.add(booking)
    db_session.flush()
    payment = Payment(
        booking_id=booking.id,
        customer_id=customer.id,
        provider_id=provider.id,
        service_id=listing.id,
        provider_gateway_id=provider.gateway_account_id,
        payment_intent_id="pi_test_1",
        amount=100,
        app_commission=20,
        provider_amount=80,
        currency="inr",
        status=PaymentStatus.PENDING,
    )
    db_session.add(payment)
    db_session.commit()
    return payment


def _event(event_type, **obj):
    return {"type": event_type, "data": {"object": obj}}


@pytest.mark.unit
def test_intent_succeeded_completes_payment(service, payment, db_session, clock):
    summary = service.handle_event(_event("payment_intent.succeeded", id="pi_test_1"))

    assert summary == {"type": "payment_intent.succeeded", "payments_updated": 1, "invoices_updated": 0}
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.completed_at == clock.now


@pytest.mark.unit
def test_intent_succeeded_pays_invoice(service, payment, db_session):
    invoice = Invoice(
        provider_id=payment.provider_id,
        booking_id=payment.booking_id,
        commission_due=20,
        penalty_due=20,
        total_due=40,
        offense_number=1,
        status=InvoiceStatus.UNPAID,
        payment_intent_id="pi_invoice_9",
    )
    db_session.add(invoice)
    db_session.commit()

    summary = service.handle_event(_event("payment_intent.succeeded", id="pi_invoice_9"))

    assert summary["invoices_updated"] == 1
    assert summary["payments_updated"] == 0
    db_session.refresh(invoice)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_at is not None


@pytest.mark.unit
def test_charge_refunded(service, payment, db_session):
    summary = service.handle_event(_event("charge.refunded", id="ch_1", payment_intent="pi_test_1"))

    assert summary["payments_updated"] == 1
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.REFUNDED
    assert payment.refunded_at is not None


@pytest.mark.unit
def test_unrelated_events_are_ignored(service, payment, db_session):
    summary = service.handle_event(_event("customer.created", id="cus_1"))

    assert summary["payments_updated"] == 0
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.PENDING


@pytest.mark.unit
def test_unknown_intent_touches_nothing(service, payment):
    summary = service.handle_event(_event("payment_intent.succeeded", id="pi_other"))
    assert summary["payments_updated"] == 0


@pytest.mark.unit
def test_event_without_data(service):
    summary = service.handle_event({"type": "charge.refunded"})
    assert summary["payments_updated"] == 0


@pytest.mark.unit
def test_late_success_does_not_undo_refund(service, payment, db_session):
    payment.status = PaymentStatus.REFUNDED
    db_session.commit()

    summary = service.handle_event(_event("payment_intent.succeeded", id="pi_test_1"))

    assert summary["payments_updated"] == 0
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.REFUNDED
    assert payment.completed_at is None


@pytest.mark.unit
def test_repeated_refund_event_keeps_first_timestamp(service, payment, db_session, clock):
    service.handle_event(_event("charge.refunded", payment_intent="pi_test_1"))
    db_session.refresh(payment)
    first = payment.refunded_at

    clock.advance(minutes=5)
    summary = service.handle_event(_event("charge.refunded", payment_intent="pi_test_1"))

    assert summary["payments_updated"] == 0
    db_session.refresh(payment)
    assert payment.refunded_at == first
