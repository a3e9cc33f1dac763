"""
Booking lifecycle.

    pending_payment -> booked -> started -> completed
    pending_payment -> payment_failed
    booked -> cancelled

Every transition is a conditional UPDATE guarded on the expected current
status, so concurrent requests on one booking cannot both succeed. Gateway
calls run before the transition is committed; a gateway failure leaves the
booking in its last committed state, except at creation where the booking
is marked payment_failed.
"""
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update, or_
from sqlalchemy.orm import Session

from marketplace.api.middleware.error_handler import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    PreconditionException,
    UpstreamServiceException,
)
from marketplace.lib.cooldown import Clock, utc_now
from marketplace.lib.logging import get_logger
from marketplace.lib.metrics import get_metrics_collector
from marketplace.lib.money import percentage_of
from marketplace.lib.settings import settings
from marketplace.models.bookings import Booking, BookingStatus
from marketplace.models.payments import Payment, PaymentStatus
from marketplace.models.services import ServiceListing
from marketplace.models.users import User, UserStatus
from marketplace.services.notification_service import NotificationService
from marketplace.services.payment_gateway import PaymentGateway, PaymentGatewayError, gateway_call
from marketplace.services.performance_service import PerformanceService
from marketplace.services.policy_service import PolicyService

logger = get_logger(__name__)


def compute_commission(amount: int, percentage: float) -> Tuple[int, int]:
    """
    Split a booking amount into (commission, provider_amount).

    Commission is rounded half-up once; the provider gets the exact remainder.
    """
    commission = percentage_of(amount, percentage)
    return commission, amount - commission


def generate_otp(digits: int) -> str:
    """Random numeric code of exactly ``digits`` digits."""
    return f"{secrets.randbelow(10 ** digits):0{digits}d}"


def hash_otp(booking_id: UUID, code: str) -> str:
    """Hash a start code for storage; bound to the booking id."""
    return hashlib.sha256(f"{booking_id}:{code}".encode()).hexdigest()


@dataclass
class UserBooking:
    booking: Booking
    role: str


class BookingService:
    """Booking state machine with payment coordination."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        notifier: NotificationService,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock
        self.metrics = get_metrics_collector()

    # Lookups

    def get_booking(self, booking_id: UUID) -> Booking:
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundException("Booking", str(booking_id))
        return booking

    def get_payment(self, booking: Booking) -> Optional[Payment]:
        return self.db.execute(
            select(Payment).where(Payment.booking_id == booking.id)
        ).scalar_one_or_none()

    def _get_user(self, user_id: UUID, resource: str = "User") -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundException(resource, str(user_id))
        return user

    def _require_intent(self, booking: Booking) -> Payment:
        payment = self.get_payment(booking)
        if payment is None or not payment.payment_intent_id:
            raise ConflictException(
                "Booking has no authorized payment",
                details={"booking_id": str(booking.id)},
            )
        return payment

    def _transition(self, booking: Booking, expected: BookingStatus, target: BookingStatus, **values) -> None:
        """Compare-and-swap the booking status; caller commits."""
        result = self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == expected)
            .values(status=target, updated_at=self.clock(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictException(
                f"Booking is no longer {expected.value}",
                details={"booking_id": str(booking.id), "expected_status": expected.value},
            )
        self.metrics.increment_booking_transitions(target.value)

    def _require_status(self, booking: Booking, expected: BookingStatus, action: str) -> None:
        if booking.status != expected:
            raise ConflictException(
                f"Cannot {action} a booking in status {booking.status.value}",
                details={
                    "booking_id": str(booking.id),
                    "status": booking.status.value,
                    "required_status": expected.value,
                },
            )

    # Create

    def create_booking(
        self,
        customer_id: UUID,
        provider_id: UUID,
        service_id: UUID,
        amount: int,
        payment_method_id: Optional[str] = None,
    ) -> Tuple[Booking, Payment]:
        """
        Create a booking and authorize its payment (manual capture).

        Returns the booking and payment; the booking ends in ``booked`` when
        the gateway authorized the intent, ``payment_failed`` otherwise.

        Raises:
            BadRequestException: invalid amount or parties
            NotFoundException: unknown customer, provider or service
            PreconditionException: provider has no payout account
            UpstreamServiceException: gateway error (booking is marked payment_failed)
        """
        if amount is None or int(amount) != amount or amount <= 0:
            raise BadRequestException("amount must be a positive whole number", details={"field": "amount"})
        amount = int(amount)
        if customer_id == provider_id:
            raise BadRequestException("You cannot book your own service")

        customer = self._get_user(customer_id, "Customer")
        provider = self._get_user(provider_id, "Provider")
        service = self.db.get(ServiceListing, service_id)
        if service is None or service.delete_approved:
            raise NotFoundException("Service", str(service_id))
        if service.owner_id != provider.id:
            raise BadRequestException(
                "Service does not belong to this provider",
                details={"service_id": str(service_id), "provider_id": str(provider_id)},
            )
        if provider.status == UserStatus.BANNED:
            raise PreconditionException(
                "Provider is suspended and cannot accept bookings",
                details={"provider_id": str(provider_id), "status": provider.status.value},
            )
        if not provider.gateway_account_id:
            raise PreconditionException(
                "Provider has not completed payout onboarding",
                details={
                    "provider_id": str(provider_id),
                    "onboarding_required": True,
                    "onboarding_endpoint": "/payments/connect/account",
                },
            )

        if not customer.gateway_customer_id:
            customer.gateway_customer_id = gateway_call(
                "create_customer",
                self.gateway.create_or_attach_customer,
                customer.email,
                customer.name,
            )

        percentage = PolicyService.get_commission_percentage(self.db)
        commission, provider_amount = compute_commission(amount, percentage)

        booking = Booking(
            customer_id=customer.id,
            provider_id=provider.id,
            service_id=service.id,
            amount=amount,
            status=BookingStatus.PENDING_PAYMENT,
        )
        self.db.add(booking)
        self.db.flush()

        payment = Payment(
            booking_id=booking.id,
            customer_id=customer.id,
            provider_id=provider.id,
            service_id=service.id,
            customer_gateway_id=customer.gateway_customer_id,
            provider_gateway_id=provider.gateway_account_id,
            amount=amount,
            app_commission=commission,
            provider_amount=provider_amount,
            currency=settings.payment_currency,
            status=PaymentStatus.PENDING,
        )
        self.db.add(payment)
        self.db.flush()
        booking.payment_id = payment.id
        self.db.commit()
        self.metrics.increment_booking_transitions(BookingStatus.PENDING_PAYMENT.value)

        logger.info(
            "Booking created",
            extra={
                "booking_id": str(booking.id),
                "amount": amount,
                "commission": commission,
                "commission_percentage": percentage,
            },
        )

        try:
            intent = self.gateway.create_payment_intent(
                amount=amount,
                currency=settings.payment_currency,
                capture_mode="manual",
                commission=commission,
                destination=provider.gateway_account_id,
                customer_id=customer.gateway_customer_id,
                payment_method_id=payment_method_id,
                description=f"Booking {booking.id} service {service.id}",
            )
        except PaymentGatewayError as e:
            self.metrics.increment_gateway_errors("create_payment_intent")
            self._transition(booking, BookingStatus.PENDING_PAYMENT, BookingStatus.PAYMENT_FAILED)
            payment.status = PaymentStatus.FAILED
            self.db.commit()
            self.db.refresh(booking)
            logger.error(
                f"Payment intent creation failed: {e.message}",
                extra={"booking_id": str(booking.id)},
            )
            raise UpstreamServiceException(
                "Payment provider error",
                details={"operation": e.operation, "booking_id": str(booking.id), "status": booking.status.value},
            ) from e

        payment.payment_intent_id = intent.id
        if intent.is_authorized:
            self._transition(booking, BookingStatus.PENDING_PAYMENT, BookingStatus.BOOKED)
        else:
            self._transition(booking, BookingStatus.PENDING_PAYMENT, BookingStatus.PAYMENT_FAILED)
            payment.status = PaymentStatus.FAILED
        self.db.commit()
        self.db.refresh(booking)

        logger.info(
            "Booking payment processed",
            extra={"booking_id": str(booking.id), "intent_status": intent.status, "status": booking.status.value},
        )

        if booking.status == BookingStatus.BOOKED:
            self.notifier.send_booking_confirmation(booking, customer, provider, service)
        return booking, payment

    # Start / verify

    def start_service(self, booking_id: UUID, provider_id: Optional[UUID] = None) -> Booking:
        """Issue a start code for a booked booking and email it to the customer."""
        booking = self.get_booking(booking_id)
        if provider_id is not None and booking.provider_id != provider_id:
            raise ForbiddenException("Only the booking's provider can start the service")
        self._require_status(booking, BookingStatus.BOOKED, "start")

        code = generate_otp(settings.service_otp_digits)
        expiry = self.clock() + timedelta(seconds=settings.service_otp_ttl_seconds)

        result = self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == BookingStatus.BOOKED)
            .values(otp_hash=hash_otp(booking.id, code), otp_expiry=expiry, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictException("Booking is no longer booked", details={"booking_id": str(booking.id)})
        self.db.commit()
        self.db.refresh(booking)

        logger.info("Service start code issued", extra={"booking_id": str(booking.id)})

        customer = self.db.get(User, booking.customer_id)
        if customer is not None:
            self.notifier.send_service_otp(booking, customer, code, settings.service_otp_ttl_seconds)
        return booking

    def verify_otp(self, booking_id: UUID, code: str) -> Booking:
        """
        Check the start code and move the booking to ``started``.

        Raises:
            ConflictException: booking is not booked
            PreconditionException: no code issued, code expired or mismatched
        """
        booking = self.get_booking(booking_id)
        self._require_status(booking, BookingStatus.BOOKED, "verify a start code for")

        if not booking.otp_hash or booking.otp_expiry is None:
            raise PreconditionException("No OTP generated for this booking", details={"booking_id": str(booking.id)})
        if self.clock() > booking.otp_expiry:
            raise PreconditionException(
                "OTP expired",
                details={"booking_id": str(booking.id), "expired_at": booking.otp_expiry.isoformat()},
            )
        if not hmac.compare_digest(booking.otp_hash, hash_otp(booking.id, str(code).strip())):
            raise PreconditionException("Invalid OTP", details={"booking_id": str(booking.id)})

        self._transition(
            booking,
            BookingStatus.BOOKED,
            BookingStatus.STARTED,
            otp_hash=None,
            otp_expiry=None,
            started_at=self.clock(),
        )
        self.db.commit()
        self.db.refresh(booking)

        logger.info("Service started", extra={"booking_id": str(booking.id)})

        customer = self.db.get(User, booking.customer_id)
        if customer is not None:
            self.notifier.notify_service_started(booking, customer)
        return booking

    # Complete

    def complete_service(self, booking_id: UUID) -> Booking:
        """Capture the authorized payment and complete a started booking."""
        booking = self.get_booking(booking_id)
        self._require_status(booking, BookingStatus.STARTED, "complete")
        payment = self._require_intent(booking)

        try:
            gateway_call("capture_payment_intent", self.gateway.capture_payment_intent, payment.payment_intent_id)
        except UpstreamServiceException:
            # A concurrent completion may already have captured the funds
            intent = gateway_call(
                "retrieve_payment_intent", self.gateway.retrieve_payment_intent, payment.payment_intent_id
            )
            if intent.is_captured:
                raise ConflictException(
                    "Booking is already being completed",
                    details={"booking_id": str(booking.id), "intent_status": intent.status},
                )
            raise

        now = self.clock()
        self._transition(booking, BookingStatus.STARTED, BookingStatus.COMPLETED, completed_at=now)
        payment.status = PaymentStatus.COMPLETED
        payment.completed_at = now
        self.db.commit()
        self.db.refresh(booking)

        logger.info(
            "Booking completed",
            extra={"booking_id": str(booking.id), "payment_id": str(payment.id)},
        )

        PerformanceService.apply_batch(self.db, booking.provider_id, completed_count=1, clock=self.clock)

        customer = self.db.get(User, booking.customer_id)
        provider = self.db.get(User, booking.provider_id)
        if customer is not None and provider is not None:
            self.notifier.send_payment_captured(booking, customer, provider)
        return booking

    # Cancel

    def cancel_booking(self, booking_id: UUID, cancelled_by: str, reason: Optional[str] = None) -> Booking:
        """
        Cancel a booked booking and refund it minus the cancellation fee.

        An uncaptured authorization is captured in full first; refunds are
        only possible against captured funds.
        """
        booking = self.get_booking(booking_id)
        self._require_status(booking, BookingStatus.BOOKED, "cancel")
        payment = self._require_intent(booking)

        policy = PolicyService.get_cancellation_policy(self.db)
        cancellation_fee = percentage_of(booking.amount, policy.effective_percentage)
        refund_amount = booking.amount - cancellation_fee

        intent = gateway_call("retrieve_payment_intent", self.gateway.retrieve_payment_intent, payment.payment_intent_id)
        if intent.status == "requires_capture":
            intent = gateway_call("capture_payment_intent", self.gateway.capture_payment_intent, intent.id)
        if not intent.is_captured:
            raise ConflictException(
                f"Payment in status {intent.status} cannot be refunded",
                details={"booking_id": str(booking.id), "intent_status": intent.status},
            )

        refund = None
        if refund_amount > 0:
            refund = gateway_call("create_refund", self.gateway.create_refund, intent.id, refund_amount)

        now = self.clock()
        self._transition(
            booking,
            BookingStatus.BOOKED,
            BookingStatus.CANCELLED,
            cancelled_by=cancelled_by,
            cancel_reason=reason,
            cancellation_fee=cancellation_fee,
            refund_amount=refund_amount,
        )
        payment.status = PaymentStatus.REFUNDED
        payment.refund_id = refund.id if refund else None
        payment.refund_reason = reason
        payment.refund_amount = refund_amount
        payment.refund_fee = cancellation_fee
        payment.refunded_at = now
        self.db.commit()
        self.db.refresh(booking)

        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": str(booking.id),
                "cancelled_by": cancelled_by,
                "refund_amount": refund_amount,
                "cancellation_fee": cancellation_fee,
            },
        )

        customer = self.db.get(User, booking.customer_id)
        if customer is not None:
            self.notifier.send_refund_issued(booking, customer, refund_amount, cancellation_fee)
        return booking

    # Listing

    def list_user_bookings(self, user_id: UUID) -> List[UserBooking]:
        """Bookings where the user is customer or provider, newest first."""
        bookings = self.db.execute(
            select(Booking)
            .where(or_(Booking.customer_id == user_id, Booking.provider_id == user_id))
            .order_by(Booking.created_at.desc())
        ).scalars().all()
        return [
            UserBooking(booking=b, role="customer" if b.customer_id == user_id else "provider")
            for b in bookings
        ]
