"""
Listing Service for provider-owned service listings.

Create, update, delete and view listings. Creation is gated on the owner's
account status and performance score; listings with bookings are only
soft-deleted and need admin approval.
"""
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.api.middleware.error_handler import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    PreconditionException,
)
from marketplace.lib.cooldown import Clock, utc_now
from marketplace.lib.geo import is_valid_coordinate
from marketplace.lib.logging import get_logger
from marketplace.lib.money import round_cents
from marketplace.lib.settings import settings
from marketplace.models.bookings import Booking
from marketplace.models.categories import Category, category_members
from marketplace.models.services import ServiceListing, ServiceType
from marketplace.models.users import User, UserStatus
from marketplace.services.discovery_service import WEEKDAYS
from marketplace.services.notification_service import NotificationService
from marketplace.services.performance_service import PerformanceService

logger = get_logger(__name__)


TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Fields a caller may set on a listing
LISTING_FIELDS = (
    "title", "description", "language", "category_id", "tags", "max_participants",
    "is_free", "price", "currency", "location", "service_type", "date",
    "start_time", "end_time", "recurring_slots",
)


def is_valid_time(value: Any) -> bool:
    """True for a 24-hour ``HH:MM`` string."""
    if not isinstance(value, str):
        return False
    match = TIME_PATTERN.match(value)
    if match is None:
        return False
    hours, minutes = int(match.group(1)), int(match.group(2))
    return 0 <= hours < 24 and 0 <= minutes < 60


def parse_iso_date(value: Any) -> Optional[date]:
    """``YYYY-MM-DD`` string or date to a date; None when invalid."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _canonical_day(value: Any) -> Optional[str]:
    key = str(value or "").strip().lower()
    if len(key) < 3:
        return None
    for day in WEEKDAYS:
        if day.startswith(key):
            return day.capitalize()
    return None


def normalize_slots(raw: Any) -> List[Dict[str, Any]]:
    """
    Normalize recurring slots.

    Accepts day names (``"mon"``, ``"Monday"``) or dicts with ``day`` and/or
    ``date``; slot times are optional and validated when present.
    """
    if not isinstance(raw, list) or not raw:
        raise BadRequestException(
            "recurring_slots required for recurring services",
            details={"field": "recurring_slots"},
        )

    slots = []
    for entry in raw:
        if isinstance(entry, str):
            entry = {"day": entry}
        if not isinstance(entry, dict):
            raise BadRequestException("Invalid recurring slot", details={"slot": entry})

        slot: Dict[str, Any] = {}
        if entry.get("day"):
            day = _canonical_day(entry["day"])
            if day is None:
                raise BadRequestException("Invalid recurring day", details={"day": entry["day"]})
            slot["day"] = day
        if entry.get("date"):
            slot_date = parse_iso_date(entry["date"])
            if slot_date is None:
                raise BadRequestException("Invalid recurring date", details={"date": entry["date"]})
            slot["date"] = slot_date.isoformat()
        if not slot:
            raise BadRequestException("Recurring slot needs a day or a date", details={"slot": entry})

        for key in ("start_time", "end_time"):
            if entry.get(key) is not None:
                if not is_valid_time(entry[key]):
                    raise BadRequestException(f"Invalid {key} in recurring slot", details={key: entry[key]})
                slot[key] = entry[key]
        slots.append(slot)
    return slots


class ListingService:
    """Listing lifecycle for providers and moderation for admins."""

    def __init__(self, db: Session, notifier: NotificationService, clock: Clock = utc_now):
        self.db = db
        self.notifier = notifier
        self.clock = clock

    def _get_listing(self, listing_id: UUID) -> ServiceListing:
        listing = self.db.get(ServiceListing, listing_id)
        if listing is None or listing.delete_approved:
            raise NotFoundException("Service", str(listing_id))
        return listing

    def _get_category(self, category_id: Any) -> Category:
        if not category_id:
            raise BadRequestException("category_id is required", details={"field": "category_id"})
        category = self.db.get(Category, category_id)
        if category is None:
            raise NotFoundException("Category", str(category_id))
        return category

    def _normalize(self, data: Dict[str, Any], category: Category) -> Dict[str, Any]:
        """Validate a full listing payload and map it to column values."""
        title = str(data.get("title") or "").strip()
        if not title:
            raise BadRequestException("Title is required", details={"field": "title"})

        location = data.get("location") or {}
        name = location.get("name")
        latitude = location.get("latitude")
        longitude = location.get("longitude")
        if not name or latitude is None or longitude is None:
            raise BadRequestException(
                "Location (name, latitude, longitude) is required",
                details={"field": "location"},
            )
        try:
            latitude, longitude = float(latitude), float(longitude)
        except (TypeError, ValueError):
            raise BadRequestException("invalid coordinates", details={"field": "location"})
        if not is_valid_coordinate(latitude, longitude):
            raise BadRequestException(
                "invalid coordinates",
                details={"latitude": latitude, "longitude": longitude},
            )

        start_time, end_time = data.get("start_time"), data.get("end_time")
        if not is_valid_time(start_time) or not is_valid_time(end_time):
            raise BadRequestException("Invalid start_time or end_time", details={"field": "start_time"})

        try:
            service_type = ServiceType(data.get("service_type") or ServiceType.ONE_TIME.value)
        except ValueError:
            raise BadRequestException(
                "service_type must be one_time or recurring",
                details={"service_type": data.get("service_type")},
            )

        listing_date = None
        slots: List[Dict[str, Any]] = []
        if service_type == ServiceType.ONE_TIME:
            listing_date = parse_iso_date(data.get("date"))
            if listing_date is None:
                raise BadRequestException(
                    "Valid date (YYYY-MM-DD) required for one_time",
                    details={"field": "date"},
                )
        else:
            slots = normalize_slots(data.get("recurring_slots"))

        requested_tags = data.get("tags") or []
        if not isinstance(requested_tags, list) or not requested_tags:
            raise BadRequestException("tags must be a non-empty array", details={"field": "tags"})
        tags, rejected = category.canonical_tags(requested_tags)
        if not tags:
            raise BadRequestException(
                "No valid tags selected from this category",
                details={"rejected_tags": rejected},
            )

        max_participants = int(data.get("max_participants") or 1)
        if max_participants < 1:
            raise BadRequestException("max_participants must be at least 1", details={"field": "max_participants"})

        is_free = bool(data.get("is_free"))
        price = Decimal(0) if is_free else round_cents(data.get("price") or 0)
        if price < 0:
            raise BadRequestException("price must not be negative", details={"field": "price"})

        return {
            "title": title,
            "description": data.get("description") or "",
            "language": data.get("language") or "English",
            "category_id": category.id,
            "tags": tags,
            "max_participants": max_participants,
            "is_free": is_free,
            "price": price,
            "currency": (data.get("currency") or settings.payment_currency).lower(),
            "location_name": str(name),
            "latitude": latitude,
            "longitude": longitude,
            "service_type": service_type,
            "date": listing_date,
            "start_time": start_time,
            "end_time": end_time,
            "recurring_slots": slots,
        }

    def _interested_users(self, listing: ServiceListing) -> List[User]:
        """Active users whose interests overlap the listing's tags."""
        wanted = {str(t).lower() for t in listing.tags or []}
        users = self.db.execute(
            select(User)
            .where(User.id != listing.owner_id)
            .where(User.is_active.is_(True))
            .where(User.status == UserStatus.ACTIVE)
        ).scalars().all()
        return [u for u in users if wanted & {str(t).lower() for t in u.interests or []}]

    def link_category_member(self, category_id: UUID, user_id: UUID) -> bool:
        """Best-effort category membership; failures are logged only."""
        try:
            exists = self.db.execute(
                select(category_members.c.user_id)
                .where(category_members.c.category_id == category_id)
                .where(category_members.c.user_id == user_id)
            ).first()
            if exists is None:
                self.db.execute(insert(category_members).values(category_id=category_id, user_id=user_id))
                self.db.commit()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(
                f"Category membership update failed: {e}",
                extra={"category_id": str(category_id), "user_id": str(user_id)},
            )
            return False

    def create_listing(self, owner_id: UUID, payload: Dict[str, Any]) -> ServiceListing:
        """
        Create a listing for an active provider.

        Raises:
            NotFoundException: unknown owner or category
            ForbiddenException: owner inactive, restricted or banned
            PreconditionException: owner blocked for low performance
            BadRequestException: invalid payload
        """
        owner = self.db.get(User, owner_id)
        if owner is None:
            raise NotFoundException("User", str(owner_id))
        if not owner.is_active or owner.status in (UserStatus.BANNED, UserStatus.RESTRICTED, UserStatus.INACTIVE):
            raise ForbiddenException("User is not active")

        check = PerformanceService.check_service_creation(self.db, owner_id, clock=self.clock)
        if not check.allowed:
            raise PreconditionException(
                check.reason,
                details={"restricted_until": check.restricted_until.isoformat() if check.restricted_until else None},
            )

        category = self._get_category(payload.get("category_id"))
        values = self._normalize(payload, category)

        listing = ServiceListing(owner_id=owner_id, **values)
        self.db.add(listing)
        self.db.commit()
        self.db.refresh(listing)

        logger.info(
            "Service listing created",
            extra={"service_id": str(listing.id), "owner_id": str(owner_id), "category_id": str(category.id)},
        )

        self.link_category_member(category.id, owner_id)
        self.notifier.notify_new_service(listing, self._interested_users(listing))
        return listing

    def update_listing(self, listing_id: UUID, owner_id: UUID, payload: Dict[str, Any]) -> ServiceListing:
        """Partial update by the owner; the merged listing is re-validated."""
        listing = self._get_listing(listing_id)
        if listing.owner_id != owner_id:
            raise ForbiddenException("Only the owner can update this service")

        merged: Dict[str, Any] = {
            "title": listing.title,
            "description": listing.description,
            "language": listing.language,
            "category_id": listing.category_id,
            "tags": list(listing.tags or []),
            "max_participants": listing.max_participants,
            "is_free": listing.is_free,
            "price": listing.price,
            "currency": listing.currency,
            "location": {
                "name": listing.location_name,
                "latitude": listing.latitude,
                "longitude": listing.longitude,
            },
            "service_type": listing.service_type.value,
            "date": listing.date,
            "start_time": listing.start_time,
            "end_time": listing.end_time,
            "recurring_slots": list(listing.recurring_slots or []),
        }
        for key in LISTING_FIELDS:
            if key in payload and payload[key] is not None:
                merged[key] = payload[key]

        category = self._get_category(merged["category_id"])
        values = self._normalize(merged, category)
        for key, value in values.items():
            setattr(listing, key, value)
        self.db.commit()
        self.db.refresh(listing)

        logger.info("Service listing updated", extra={"service_id": str(listing.id)})
        self.notifier.notify_service_updated(listing, self._interested_users(listing))
        return listing

    def delete_listing(self, listing_id: UUID, owner_id: UUID) -> str:
        """
        Delete a listing, or request deletion if it has bookings.

        Returns ``"deleted"`` or ``"delete_requested"``.
        """
        listing = self._get_listing(listing_id)
        if listing.owner_id != owner_id:
            raise ForbiddenException("Only the owner can delete this service")

        booking_count = self.db.execute(
            select(func.count(Booking.id)).where(Booking.service_id == listing.id)
        ).scalar_one()
        if booking_count == 0:
            self.db.delete(listing)
            self.db.commit()
            logger.info("Service listing deleted", extra={"service_id": str(listing_id)})
            return "deleted"

        if not listing.delete_requested:
            listing.delete_requested = True
            listing.delete_requested_at = self.clock()
            self.db.commit()
            logger.info(
                "Service deletion requested",
                extra={"service_id": str(listing_id), "bookings": booking_count},
            )
        return "delete_requested"

    def approve_deletion(self, listing_id: UUID) -> ServiceListing:
        listing = self._get_listing(listing_id)
        if not listing.delete_requested:
            raise ConflictException("Deletion was not requested for this service")
        listing.delete_approved = True
        listing.delete_approved_at = self.clock()
        self.db.commit()
        self.db.refresh(listing)
        logger.info("Service deletion approved", extra={"service_id": str(listing_id)})
        return listing

    def get_listing(self, listing_id: UUID, viewer_id: Optional[UUID] = None) -> ServiceListing:
        """Fetch a listing; a known viewer triggers the owner's viewed notification."""
        listing = self._get_listing(listing_id)
        if viewer_id is not None:
            viewer = self.db.get(User, viewer_id)
            owner = self.db.get(User, listing.owner_id)
            if viewer is not None and owner is not None:
                self.notifier.notify_service_viewed(viewer, listing, owner)
        return listing
