"""
Violation / penalty engine for providers.

An unpaid booking becomes an offense: the provider receives an invoice for
the platform commission plus an escalating penalty, and their account is
restricted or banned. Paying the invoice or a successful appeal reinstates
the account.

Offense numbers come from ``User.active_offense_count``, incremented with a
single UPDATE so concurrent flags for one provider get distinct numbers.
"""
import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from marketplace.api.middleware.error_handler import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    PreconditionException,
    ValidationException,
)
from marketplace.lib.cooldown import Clock, utc_now
from marketplace.lib.logging import get_logger
from marketplace.lib.metrics import get_metrics_collector
from marketplace.lib.money import round_cents
from marketplace.lib.settings import settings
from marketplace.models.bookings import Booking
from marketplace.models.invoices import Invoice, InvoiceStatus
from marketplace.models.payments import Payment, PaymentStatus
from marketplace.models.users import User, UserStatus
from marketplace.services.notification_service import NotificationService
from marketplace.services.payment_gateway import PaymentGateway, gateway_call
from marketplace.services.policy_service import PolicyService

logger = get_logger(__name__)


class PenaltyAction(str, enum.Enum):
    WARN = "warn"
    TEMPORARY_BLOCK = "temporary_block"
    SUSPEND = "suspend"


# Status the provider is moved to for each action
ACTION_STATUS = {
    PenaltyAction.WARN: UserStatus.RESTRICTED,
    PenaltyAction.TEMPORARY_BLOCK: UserStatus.RESTRICTED,
    PenaltyAction.SUSPEND: UserStatus.BANNED,
}


def compute_penalty(previous_offenses: int, base_penalty: float) -> Tuple[Decimal, PenaltyAction]:
    """
    Penalty and action for the next offense.

    Args:
        previous_offenses: Offenses already on record (0 for a first offense)
        base_penalty: Penalty for a first offense

    Returns:
        (penalty, action): B/warn, then 2B/temporary_block, then 5B/suspend
    """
    base = Decimal(str(base_penalty))
    if previous_offenses <= 0:
        return base, PenaltyAction.WARN
    if previous_offenses == 1:
        return base * 2, PenaltyAction.TEMPORARY_BLOCK
    return base * 5, PenaltyAction.SUSPEND


@dataclass
class ViolationOutcome:
    invoice: Optional[Invoice]
    action: Optional[PenaltyAction]
    created: bool
    message: str


class ViolationService:
    """Offense flagging, invoice payment and appeal review."""

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

    def _get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundException("Invoice", str(invoice_id))
        return invoice

    def _set_provider_status(self, provider_id: UUID, status: UserStatus) -> None:
        self.db.execute(
            update(User)
            .where(User.id == provider_id)
            .values(status=status, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )

    def _next_offense_number(self, provider_id: UUID) -> int:
        """Atomically bump the provider's offense counter and return the new value."""
        self.db.execute(
            update(User)
            .where(User.id == provider_id)
            .values(active_offense_count=User.active_offense_count + 1)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(
            select(User.active_offense_count).where(User.id == provider_id)
        ).scalar_one()

    def flag_unpaid_booking(
        self,
        booking_id: UUID,
        provider_id: Optional[UUID] = None,
        amount: Optional[float] = None,
    ) -> ViolationOutcome:
        """
        Record an offense for a booking that ended without a completed payment.

        No-op when the booking's payment is completed. Flagging the same
        booking twice returns the existing invoice.
        """
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundException("Booking", str(booking_id))
        if provider_id is not None and provider_id != booking.provider_id:
            raise BadRequestException(
                "Provider does not match booking",
                details={"booking_id": str(booking_id), "provider_id": str(provider_id)},
            )
        provider_id = booking.provider_id
        if amount is None:
            amount = booking.amount
        if amount < 0:
            raise BadRequestException("amount must not be negative", details={"field": "amount"})

        payment = self.db.execute(
            select(Payment).where(Payment.booking_id == booking.id)
        ).scalar_one_or_none()
        if payment is not None and payment.status == PaymentStatus.COMPLETED:
            return ViolationOutcome(invoice=None, action=None, created=False, message="Payment exists")

        existing = self.db.execute(
            select(Invoice)
            .where(Invoice.booking_id == booking.id)
            .where(Invoice.status != InvoiceStatus.CANCELED)
        ).scalar_one_or_none()
        if existing is not None:
            return ViolationOutcome(invoice=existing, action=None, created=False, message="Invoice already exists")

        percentage = PolicyService.get_commission_percentage(self.db)
        commission_due = round_cents(Decimal(str(amount)) * Decimal(str(percentage)) / Decimal(100))

        offense_number = self._next_offense_number(provider_id)
        penalty, action = compute_penalty(offense_number - 1, settings.default_penalty_amount)
        total_due = round_cents(commission_due + penalty)

        invoice = Invoice(
            provider_id=provider_id,
            booking_id=booking.id,
            commission_due=commission_due,
            penalty_due=round_cents(penalty),
            total_due=total_due,
            offense_number=offense_number,
            status=InvoiceStatus.UNPAID,
        )
        self.db.add(invoice)
        self._set_provider_status(provider_id, ACTION_STATUS[action])
        self.db.commit()
        self.db.refresh(invoice)

        self.metrics.increment_violations(action.value)
        logger.warning(
            "Provider violation flagged",
            extra={
                "provider_id": str(provider_id),
                "booking_id": str(booking.id),
                "offense_number": offense_number,
                "action": action.value,
                "total_due": total_due,
            },
        )

        provider = self.db.get(User, provider_id)
        if provider is not None:
            self.db.refresh(provider)
            self.notifier.notify_violation(provider, invoice, action.value)
        return ViolationOutcome(invoice=invoice, action=action, created=True, message="Invoice created")

    def pay_invoice(self, invoice_id: UUID, provider_id: UUID, payment_method_id: str) -> Invoice:
        """
        Charge the provider for an unpaid invoice with an immediate capture.

        On success the invoice is paid and the provider reinstated.
        """
        invoice = self._get_invoice(invoice_id)
        if invoice.provider_id != provider_id:
            raise ForbiddenException("Invoice belongs to another provider")
        if invoice.status != InvoiceStatus.UNPAID:
            raise ConflictException(
                f"Invoice is {invoice.status.value}",
                details={"invoice_id": str(invoice.id), "status": invoice.status.value},
            )

        provider = self.db.get(User, provider_id)
        if provider is None:
            raise NotFoundException("Provider", str(provider_id))

        if not provider.gateway_customer_id:
            provider.gateway_customer_id = gateway_call(
                "create_customer",
                self.gateway.create_or_attach_customer,
                provider.email,
                provider.name,
            )
            self.db.commit()

        intent = gateway_call(
            "create_payment_intent",
            self.gateway.create_payment_intent,
            amount=float(invoice.total_due),
            currency=settings.penalty_currency,
            capture_mode="automatic",
            customer_id=provider.gateway_customer_id,
            payment_method_id=payment_method_id,
            description=f"Invoice {invoice.id} for booking {invoice.booking_id}",
        )
        if not intent.is_captured:
            raise PreconditionException(
                "Invoice payment was not completed",
                details={"invoice_id": str(invoice.id), "intent_status": intent.status},
            )

        result = self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == InvoiceStatus.UNPAID)
            .values(
                status=InvoiceStatus.PAID,
                payment_intent_id=intent.id,
                paid_at=self.clock(),
                updated_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictException("Invoice was already settled", details={"invoice_id": str(invoice.id)})
        self._set_provider_status(provider_id, UserStatus.ACTIVE)
        self.db.commit()
        self.db.refresh(invoice)

        logger.info(
            "Invoice paid, restriction lifted",
            extra={"invoice_id": str(invoice.id), "provider_id": str(provider_id), "intent_id": intent.id},
        )
        return invoice

    def review_appeal(self, invoice_id: UUID, action: str) -> Invoice:
        """
        Admin decision on a provider's appeal.

        ``approve`` cancels the invoice, removes the offense from the
        provider's record and reinstates them; ``reject`` changes nothing.
        """
        normalized = (action or "").strip().lower()
        if normalized not in ("approve", "reject"):
            raise ValidationException("Invalid action", errors={"action": "must be 'approve' or 'reject'"})

        invoice = self._get_invoice(invoice_id)
        if normalized == "reject":
            logger.info("Appeal rejected", extra={"invoice_id": str(invoice.id)})
            return invoice

        if invoice.status != InvoiceStatus.UNPAID:
            raise ConflictException(
                f"Cannot approve an appeal for a {invoice.status.value} invoice",
                details={"invoice_id": str(invoice.id), "status": invoice.status.value},
            )

        result = self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == InvoiceStatus.UNPAID)
            .values(status=InvoiceStatus.CANCELED, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictException("Invoice was already settled", details={"invoice_id": str(invoice.id)})

        self.db.execute(
            update(User)
            .where(User.id == invoice.provider_id, User.active_offense_count > 0)
            .values(active_offense_count=User.active_offense_count - 1)
            .execution_options(synchronize_session=False)
        )
        self._set_provider_status(invoice.provider_id, UserStatus.ACTIVE)
        self.db.commit()
        self.db.refresh(invoice)

        logger.info(
            "Appeal approved, invoice canceled",
            extra={"invoice_id": str(invoice.id), "provider_id": str(invoice.provider_id)},
        )
        return invoice

    def list_provider_invoices(self, provider_id: UUID) -> List[Invoice]:
        return list(
            self.db.execute(
                select(Invoice)
                .where(Invoice.provider_id == provider_id)
                .order_by(Invoice.created_at.desc())
            ).scalars().all()
        )
