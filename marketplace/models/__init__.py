"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from marketplace.models.users import User, UserStatus
from marketplace.models.categories import Category, category_members
from marketplace.models.services import ServiceListing, ServiceType
from marketplace.models.bookings import Booking, BookingStatus
from marketplace.models.payments import Payment, PaymentStatus
from marketplace.models.invoices import Invoice, InvoiceStatus
from marketplace.models.policies import CommissionSetting, CancellationSetting
from marketplace.models.reviews import Review

__all__ = [
    "User",
    "UserStatus",
    "Category",
    "category_members",
    "ServiceListing",
    "ServiceType",
    "Booking",
    "BookingStatus",
    "Payment",
    "PaymentStatus",
    "Invoice",
    "InvoiceStatus",
    "CommissionSetting",
    "CancellationSetting",
    "Review",
]
