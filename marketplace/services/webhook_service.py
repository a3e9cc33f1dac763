"""
Reconciliation of payment gateway webhook events.

Only two event types change local state; everything else is acknowledged
and ignored.
"""
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from marketplace.lib.cooldown import Clock, utc_now
from marketplace.lib.logging import get_logger
from marketplace.models.invoices import Invoice, InvoiceStatus
from marketplace.models.payments import Payment, PaymentStatus

logger = get_logger(__name__)


def _event_object(event: Any) -> Dict[str, Any]:
    data = event["data"] if "data" in event else {}
    return data["object"] if data and "object" in data else {}


class WebhookService:
    """Apply gateway events to payments and invoices."""

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    def handle_event(self, event: Any) -> Dict[str, Any]:
        """
        Apply one verified event.

        ``payment_intent.succeeded`` completes the matching pending payment and pays
        the matching invoice; ``charge.refunded`` marks the payment refunded.
        A refunded payment is never moved back to completed.
        Returns a summary of rows touched.
        """
        event_type = event["type"]
        obj = _event_object(event)
        payments = invoices = 0

        if event_type == "payment_intent.succeeded":
            intent_id = obj.get("id")
            # Capture during cancellation also emits this event, possibly after the refund
            payments = self._update_payments(
                intent_id,
                Payment.status == PaymentStatus.PENDING,
                status=PaymentStatus.COMPLETED,
                completed_at=self.clock(),
            )
            if intent_id:
                invoices = self.db.execute(
                    update(Invoice)
                    .where(Invoice.payment_intent_id == intent_id)
                    .where(Invoice.status != InvoiceStatus.PAID)
                    .values(status=InvoiceStatus.PAID, paid_at=self.clock())
                    .execution_options(synchronize_session=False)
                ).rowcount
        elif event_type == "charge.refunded":
            payments = self._update_payments(
                obj.get("payment_intent"),
                Payment.status != PaymentStatus.REFUNDED,
                status=PaymentStatus.REFUNDED,
                refunded_at=self.clock(),
            )
        else:
            logger.debug("Ignoring webhook event", extra={"event_type": event_type})

        self.db.commit()
        logger.info(
            "Webhook event processed",
            extra={"event_type": event_type, "payments": payments, "invoices": invoices},
        )
        return {"type": event_type, "payments_updated": payments, "invoices_updated": invoices}

    def _update_payments(self, intent_id: Optional[str], guard, **values) -> int:
        """Update payments for ``intent_id`` whose current status passes ``guard``."""
        if not intent_id:
            return 0
        return self.db.execute(
            update(Payment)
            .where(Payment.payment_intent_id == intent_id, guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
