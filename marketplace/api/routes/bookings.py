"""
Booking API routes - the booking lifecycle from payment authorization to
capture or refund.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_clock, get_db, get_notification_service, get_payment_gateway
from marketplace.api.schemas import envelope, serialize_booking, serialize_payment
from marketplace.lib.cooldown import Clock
from marketplace.lib.logging import get_logger
from marketplace.models.bookings import BookingStatus
from marketplace.services.booking_service import BookingService
from marketplace.services.notification_service import NotificationService
from marketplace.services.payment_gateway import PaymentGateway


logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


class BookingCreate(BaseModel):
    customer_id: UUID
    provider_id: UUID
    service_id: UUID
    amount: int = Field(gt=0, description="Amount in whole currency units")
    payment_method_id: Optional[str] = None


class StartRequest(BaseModel):
    provider_id: Optional[UUID] = None


class VerifyOtpRequest(BaseModel):
    otp: str = Field(min_length=1, max_length=12)


class CancelRequest(BaseModel):
    cancelled_by: str = Field(default="customer", description="customer, provider or admin")
    reason: Optional[str] = Field(default=None, max_length=500)


def get_booking_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
) -> BookingService:
    return BookingService(db, gateway, notifier, clock=clock)


@router.post("", status_code=201)
def create_booking(request: BookingCreate, service: BookingService = Depends(get_booking_service)):
    """
    Create a booking and authorize its payment.

    A declined authorization returns 402 with the booking in ``payment_failed``.
    """
    booking, payment = service.create_booking(
        request.customer_id,
        request.provider_id,
        request.service_id,
        request.amount,
        payment_method_id=request.payment_method_id,
    )
    data = {"booking": serialize_booking(booking), "payment": serialize_payment(payment)}
    if booking.status == BookingStatus.PAYMENT_FAILED:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=envelope(data, "Payment authorization failed", success=False),
        )
    return envelope(data, "Booking created successfully")


@router.get("/user/{user_id}")
def list_user_bookings(user_id: UUID, service: BookingService = Depends(get_booking_service)):
    """Bookings where the user is customer or provider, newest first."""
    items = service.list_user_bookings(user_id)
    return envelope(
        [dict(serialize_booking(item.booking), role=item.role) for item in items],
        "Bookings fetched",
    )


@router.get("/{booking_id}")
def get_booking(booking_id: UUID, service: BookingService = Depends(get_booking_service)):
    booking = service.get_booking(booking_id)
    data = {"booking": serialize_booking(booking), "payment": serialize_payment(service.get_payment(booking))}
    return envelope(data, "Booking fetched")


@router.post("/{booking_id}/start")
def start_service(
    booking_id: UUID,
    request: Optional[StartRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    """Issue a start code to the customer; the booking stays ``booked``."""
    provider_id = request.provider_id if request else None
    booking = service.start_service(booking_id, provider_id=provider_id)
    return envelope(serialize_booking(booking), "Start code sent to customer")


@router.post("/{booking_id}/verify-otp")
def verify_otp(booking_id: UUID, request: VerifyOtpRequest, service: BookingService = Depends(get_booking_service)):
    booking = service.verify_otp(booking_id, request.otp)
    return envelope(serialize_booking(booking), "Service started")


@router.post("/{booking_id}/complete")
def complete_service(booking_id: UUID, service: BookingService = Depends(get_booking_service)):
    booking = service.complete_service(booking_id)
    data = {"booking": serialize_booking(booking), "payment": serialize_payment(service.get_payment(booking))}
    return envelope(data, "Service completed and payment captured")


@router.post("/{booking_id}/cancel")
def cancel_booking(
    booking_id: UUID,
    request: Optional[CancelRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    request = request or CancelRequest()
    booking = service.cancel_booking(booking_id, request.cancelled_by, reason=request.reason)
    data = {"booking": serialize_booking(booking), "payment": serialize_payment(service.get_payment(booking))}
    return envelope(data, "Booking cancelled")
