"""
Admin API routes - platform policies and listing moderation.

Provides:
- GET/PUT /admin/commission: platform commission percentage
- GET/PUT /admin/cancellation: cancellation fee policy
- POST /admin/listings/{listing_id}/approve-deletion
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_clock, get_db, get_notification_service
from marketplace.api.schemas import envelope, serialize_listing
from marketplace.lib.cooldown import Clock
from marketplace.lib.logging import get_logger
from marketplace.services.listing_service import ListingService
from marketplace.services.notification_service import NotificationService
from marketplace.services.policy_service import PolicyService


logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


class CommissionUpdate(BaseModel):
    percentage: float
    admin_id: Optional[UUID] = None


class CancellationUpdate(BaseModel):
    enabled: bool
    percentage: Optional[float] = None


@router.get("/commission")
def get_commission(db: Session = Depends(get_db)):
    return envelope({"percentage": PolicyService.get_commission_percentage(db)}, "Commission fetched")


@router.put("/commission")
def update_commission(request: CommissionUpdate, db: Session = Depends(get_db)):
    row = PolicyService.update_commission(db, request.percentage, admin_id=request.admin_id)
    logger.info("Commission updated", extra={"percentage": row.percentage})
    return envelope({"percentage": row.percentage}, "Commission updated")


@router.get("/cancellation")
def get_cancellation(db: Session = Depends(get_db)):
    policy = PolicyService.get_cancellation_policy(db)
    return envelope({"enabled": policy.enabled, "percentage": policy.percentage}, "Cancellation policy fetched")


@router.put("/cancellation")
def update_cancellation(request: CancellationUpdate, db: Session = Depends(get_db)):
    """Disabling the policy resets the percentage to 0."""
    policy = PolicyService.update_cancellation_policy(db, request.enabled, percentage=request.percentage)
    return envelope({"enabled": policy.enabled, "percentage": policy.percentage}, "Cancellation policy updated")


@router.post("/listings/{listing_id}/approve-deletion")
def approve_deletion(
    listing_id: UUID,
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
):
    listing = ListingService(db, notifier, clock=clock).approve_deletion(listing_id)
    return envelope(serialize_listing(listing), "Service deletion approved")
