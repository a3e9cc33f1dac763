"""
User API routes.

Provides:
- POST /users/{user_id}/location: location update
- POST /users/{user_id}/interests: interest/offer tag add or remove
- GET /users/{user_id}/performance: provider performance profile
"""
from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_clock, get_db, get_notification_service
from marketplace.api.middleware.error_handler import NotFoundException
from marketplace.api.schemas import envelope
from marketplace.lib.cooldown import Clock
from marketplace.models.users import User
from marketplace.services.location_service import LocationService
from marketplace.services.notification_service import NotificationService
from marketplace.services.performance_service import PerformanceService
from marketplace.services.user_service import UserService


router = APIRouter(prefix="/users", tags=["users"])


class LocationUpdateRequest(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = Field(default=None, ge=0)
    provider: Optional[str] = Field(default=None, description="gps, network, wifi, ...")
    recorded_at: Optional[datetime] = None


class TagUpdateRequest(BaseModel):
    type: str = Field(description='"interest" or "offer"')
    tags: Union[List[str], str]
    action: str = "add"
    category_id: Optional[UUID] = None


@router.post("/{user_id}/location")
def update_location(
    user_id: UUID,
    request: LocationUpdateRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    Store a location reading.

    Always 200 for a valid request; ``outcome`` tells whether the reading
    was stored (``updated``) or skipped (``zero_coordinates``, ``too_close``,
    ``stale_timestamp``).
    """
    result = LocationService(db, clock=clock).update_location(
        user_id,
        request.latitude,
        request.longitude,
        accuracy=request.accuracy,
        provider=request.provider,
        recorded_at=request.recorded_at,
    )
    return envelope(
        {"outcome": result.outcome.value, "location": result.location},
        result.message,
    )


@router.post("/{user_id}/interests")
def update_tags(
    user_id: UUID,
    request: TagUpdateRequest,
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
):
    data = UserService(db, notifier).update_tags(
        user_id,
        request.type,
        request.tags,
        action=request.action,
        category_id=request.category_id,
    )
    return envelope(data, "Tags updated")


@router.get("/{user_id}/performance")
def get_performance(
    user_id: UUID,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundException("User", str(user_id))
    return envelope(PerformanceService.get_profile(user, clock=clock), "Performance fetched")
