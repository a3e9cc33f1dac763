"""
Invoice model - penalty record for a provider offense.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
import enum

from sqlalchemy import String, Numeric, Integer, Uuid, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.lib.db import Base, UTCDateTime, utcnow


class InvoiceStatus(str, enum.Enum):
    """Invoice status enumeration."""
    UNPAID = "unpaid"
    PAID = "paid"
    CANCELED = "canceled"


class Invoice(Base):
    """
    Invoice entity.

    offense_number is assigned once at creation (1 = first offense).
    """
    __tablename__ = "invoices"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    provider_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    commission_due: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    penalty_due: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    total_due: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    offense_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, name="invoice_status"),
        nullable=False,
        default=InvoiceStatus.UNPAID,
        index=True,
    )
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, provider_id={self.provider_id}, offense={self.offense_number})>"
