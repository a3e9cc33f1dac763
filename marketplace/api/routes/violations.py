"""
Violation API routes - offense flagging, invoice payment and appeals.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_clock, get_db, get_notification_service, get_payment_gateway
from marketplace.api.schemas import envelope, serialize_invoice
from marketplace.lib.cooldown import Clock
from marketplace.services.notification_service import NotificationService
from marketplace.services.payment_gateway import PaymentGateway
from marketplace.services.violation_service import ViolationService


router = APIRouter(prefix="/violations", tags=["violations"])


class FlagRequest(BaseModel):
    booking_id: UUID
    provider_id: Optional[UUID] = None
    amount: Optional[float] = Field(default=None, ge=0)


class PayInvoiceRequest(BaseModel):
    provider_id: UUID
    payment_method_id: str


class AppealRequest(BaseModel):
    action: str = Field(description='"approve" or "reject"')


def get_violation_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
) -> ViolationService:
    return ViolationService(db, gateway, notifier, clock=clock)


@router.post("/flag")
def flag_violation(request: FlagRequest, service: ViolationService = Depends(get_violation_service)):
    outcome = service.flag_unpaid_booking(request.booking_id, provider_id=request.provider_id, amount=request.amount)
    data = {
        "created": outcome.created,
        "action": outcome.action.value if outcome.action else None,
        "invoice": serialize_invoice(outcome.invoice) if outcome.invoice else None,
    }
    return envelope(data, outcome.message)


@router.post("/invoices/{invoice_id}/pay")
def pay_invoice(
    invoice_id: UUID,
    request: PayInvoiceRequest,
    service: ViolationService = Depends(get_violation_service),
):
    invoice = service.pay_invoice(invoice_id, request.provider_id, request.payment_method_id)
    return envelope(serialize_invoice(invoice), "Invoice paid, restriction lifted")


@router.post("/invoices/{invoice_id}/appeal")
def review_appeal(
    invoice_id: UUID,
    request: AppealRequest,
    service: ViolationService = Depends(get_violation_service),
):
    invoice = service.review_appeal(invoice_id, request.action)
    message = "Appeal approved" if request.action.strip().lower() == "approve" else "Appeal rejected"
    return envelope(serialize_invoice(invoice), message)


@router.get("/providers/{provider_id}/invoices")
def list_provider_invoices(provider_id: UUID, service: ViolationService = Depends(get_violation_service)):
    invoices = service.list_provider_invoices(provider_id)
    return envelope([serialize_invoice(i) for i in invoices], "Invoices fetched")
