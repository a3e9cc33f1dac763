"""
Shared response helpers and serializers for API routes.
"""
from typing import Any, Dict, Optional

from marketplace.models.bookings import Booking
from marketplace.models.invoices import Invoice
from marketplace.models.payments import Payment
from marketplace.models.reviews import Review
from marketplace.models.services import ServiceListing
from marketplace.models.users import User


def envelope(data: Any = None, message: str = "OK", success: bool = True) -> Dict[str, Any]:
    """Canonical response body: ``{success, message, data}``."""
    return {"success": success, "message": message, "data": data}


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_listing(listing: ServiceListing, distance_km: Optional[float] = None) -> Dict[str, Any]:
    data = {
        "id": str(listing.id),
        "owner_id": str(listing.owner_id),
        "category_id": str(listing.category_id),
        "title": listing.title,
        "description": listing.description,
        "language": listing.language,
        "tags": list(listing.tags or []),
        "max_participants": listing.max_participants,
        "is_free": listing.is_free,
        "price": float(listing.price or 0),
        "currency": listing.currency,
        "location": {
            "name": listing.location_name,
            "latitude": listing.latitude,
            "longitude": listing.longitude,
        },
        "service_type": listing.service_type.value,
        "date": _iso(listing.date),
        "start_time": listing.start_time,
        "end_time": listing.end_time,
        "recurring_slots": list(listing.recurring_slots or []),
        "is_promoted": listing.is_promoted,
        "delete_requested": listing.delete_requested,
        "delete_approved": listing.delete_approved,
        "created_at": _iso(listing.created_at),
    }
    if distance_km is not None:
        data["distance_km"] = round(distance_km, 3)
    return data


def serialize_user(user: User, distance_km: Optional[float] = None) -> Dict[str, Any]:
    """Public user card; no gateway identifiers."""
    data = {
        "id": str(user.id),
        "name": user.name,
        "city": user.city,
        "interests": list(user.interests or []),
        "offered_tags": list(user.offered_tags or []),
        "status": user.status.value,
        "location": user.location_dict() if user.has_location else None,
    }
    if distance_km is not None:
        data["distance_km"] = round(distance_km, 3)
    return data


def serialize_booking(booking: Booking) -> Dict[str, Any]:
    return {
        "id": str(booking.id),
        "customer_id": str(booking.customer_id),
        "provider_id": str(booking.provider_id),
        "service_id": str(booking.service_id),
        "payment_id": str(booking.payment_id) if booking.payment_id else None,
        "amount": booking.amount,
        "status": booking.status.value,
        "cancelled_by": booking.cancelled_by,
        "cancel_reason": booking.cancel_reason,
        "cancellation_fee": booking.cancellation_fee,
        "refund_amount": booking.refund_amount,
        "started_at": _iso(booking.started_at),
        "completed_at": _iso(booking.completed_at),
        "created_at": _iso(booking.created_at),
    }


def serialize_payment(payment: Optional[Payment]) -> Optional[Dict[str, Any]]:
    if payment is None:
        return None
    return {
        "id": str(payment.id),
        "booking_id": str(payment.booking_id),
        "payment_intent_id": payment.payment_intent_id,
        "amount": payment.amount,
        "app_commission": payment.app_commission,
        "provider_amount": payment.provider_amount,
        "currency": payment.currency,
        "status": payment.status.value,
        "refund_amount": payment.refund_amount,
        "refund_fee": payment.refund_fee,
    }


def serialize_invoice(invoice: Invoice) -> Dict[str, Any]:
    return {
        "id": str(invoice.id),
        "provider_id": str(invoice.provider_id),
        "booking_id": str(invoice.booking_id),
        "commission_due": float(invoice.commission_due),
        "penalty_due": float(invoice.penalty_due),
        "total_due": float(invoice.total_due),
        "offense_number": invoice.offense_number,
        "status": invoice.status.value,
        "payment_intent_id": invoice.payment_intent_id,
        "paid_at": _iso(invoice.paid_at),
        "created_at": _iso(invoice.created_at),
    }


def serialize_review(review: Review) -> Dict[str, Any]:
    return {
        "id": str(review.id),
        "service_id": str(review.service_id),
        "user_id": str(review.user_id),
        "username": review.username,
        "rating": review.rating,
        "text": review.text,
        "created_at": _iso(review.created_at),
    }
