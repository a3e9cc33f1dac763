"""
Payment API routes - payout onboarding and the gateway webhook.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_clock, get_db, get_payment_gateway
from marketplace.api.middleware.error_handler import BadRequestException
from marketplace.api.schemas import envelope
from marketplace.lib.cooldown import Clock
from marketplace.lib.logging import get_logger
from marketplace.services.payment_gateway import PaymentGateway, PaymentGatewayError
from marketplace.services.payout_service import PayoutService
from marketplace.services.webhook_service import WebhookService


logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])


class ConnectRequest(BaseModel):
    user_id: UUID


@router.post("/connect/customer")
def create_customer(
    request: ConnectRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    customer_id = PayoutService(db, gateway).ensure_customer(request.user_id)
    return envelope({"customer_id": customer_id}, "Payment customer ready")


@router.post("/connect/account")
def create_account(
    request: ConnectRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    account_id = PayoutService(db, gateway).create_connected_account(request.user_id)
    return envelope({"account_id": account_id}, "Payout account ready")


@router.post("/connect/onboarding-link")
def create_onboarding_link(
    request: ConnectRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    data = PayoutService(db, gateway).create_onboarding_link(request.user_id)
    return envelope(data, "Onboarding link created")


@router.post("/webhook")
async def gateway_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    clock: Clock = Depends(get_clock),
):
    """
    Verify and apply a gateway event.

    Invalid signatures or payloads return 400 so the gateway retries.
    """
    payload = await request.body()
    try:
        event = gateway.construct_webhook_event(payload, stripe_signature)
    except PaymentGatewayError as e:
        logger.warning(f"Webhook rejected: {e.message}")
        raise BadRequestException("Webhook error", details={"reason": e.message})

    summary = WebhookService(db, clock=clock).handle_event(event)
    return envelope(dict(summary, received=True), "Webhook processed")
