"""
Service listing API routes.
"""
from datetime import date as date_type
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_clock, get_db, get_notification_service
from marketplace.api.schemas import envelope, serialize_listing
from marketplace.lib.cooldown import Clock
from marketplace.services.listing_service import ListingService
from marketplace.services.notification_service import NotificationService


router = APIRouter(prefix="/listings", tags=["listings"])


class LocationIn(BaseModel):
    name: str
    latitude: float
    longitude: float


class ListingFields(BaseModel):
    """Shared listing fields; all optional so updates can be partial."""
    title: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    category_id: Optional[UUID] = None
    tags: Optional[List[str]] = None
    max_participants: Optional[int] = Field(default=None, ge=1)
    is_free: Optional[bool] = None
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    location: Optional[LocationIn] = None
    service_type: Optional[str] = None
    date: Optional[Union[date_type, str]] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    recurring_slots: Optional[List[Union[str, Dict[str, Any]]]] = None

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ListingCreate(ListingFields):
    owner_id: UUID


class ListingUpdate(ListingFields):
    owner_id: UUID


def _service(db: Session, notifier: NotificationService, clock: Clock) -> ListingService:
    return ListingService(db, notifier, clock=clock)


@router.post("", status_code=201)
def create_listing(
    request: ListingCreate,
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
):
    """
    Create a listing.

    Blocked (400 with ``restricted_until``) while the owner is restricted
    for low performance.
    """
    payload = request.payload()
    payload.pop("owner_id")
    listing = _service(db, notifier, clock).create_listing(request.owner_id, payload)
    return envelope(serialize_listing(listing), "Service created successfully")


@router.get("/{listing_id}")
def get_listing(
    listing_id: UUID,
    viewer_id: Optional[UUID] = Query(None, description="Viewing user; the owner is notified"),
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
):
    listing = _service(db, notifier, clock).get_listing(listing_id, viewer_id=viewer_id)
    return envelope(serialize_listing(listing), "Service fetched")


@router.put("/{listing_id}")
def update_listing(
    listing_id: UUID,
    request: ListingUpdate,
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
):
    payload = request.payload()
    payload.pop("owner_id")
    listing = _service(db, notifier, clock).update_listing(listing_id, request.owner_id, payload)
    return envelope(serialize_listing(listing), "Service updated successfully")


@router.delete("/{listing_id}")
def delete_listing(
    listing_id: UUID,
    owner_id: UUID = Query(...),
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
):
    outcome = _service(db, notifier, clock).delete_listing(listing_id, owner_id)
    message = "Service deleted" if outcome == "deleted" else "Deletion requested; awaiting admin approval"
    return envelope({"id": str(listing_id), "outcome": outcome}, message)
