"""
Discovery API routes.

Provides:
- POST /search/services: listing search (list view + map view)
- POST /search/users: nearby-user search
"""
from datetime import date as date_type
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_clock, get_db
from marketplace.api.schemas import envelope, serialize_listing, serialize_user
from marketplace.lib.cooldown import Clock
from marketplace.lib.geo import BoundingBox
from marketplace.services.discovery_service import DiscoveryQuery, DiscoveryResult, DiscoveryService, GeoPoint
from marketplace.services.location_service import LocationService


router = APIRouter(prefix="/search", tags=["search"])


class PointIn(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ViewportIn(BaseModel):
    """Map bounds; ``west > east`` means the box crosses the antimeridian."""
    north: float = Field(ge=-90, le=90)
    south: float = Field(ge=-90, le=90)
    east: float = Field(ge=-180, le=180)
    west: float = Field(ge=-180, le=180)

    @model_validator(mode="after")
    def check_lat_order(self):
        if self.south > self.north:
            raise ValueError("south must not exceed north")
        return self


class SearchRequest(BaseModel):
    category_ids: List[UUID] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    free_only: bool = False
    date: Optional[date_type] = None
    keyword: Optional[str] = Field(default=None, max_length=200)
    user_location: Optional[PointIn] = None
    area: Optional[PointIn] = Field(default=None, description="Alternate radius center, e.g. a city")
    radius_km: Optional[float] = Field(default=None, ge=0)
    viewport: Optional[ViewportIn] = None
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
    requester_id: Optional[UUID] = Field(default=None, description="Excluded from user search")

    def to_query(self) -> DiscoveryQuery:
        return DiscoveryQuery(
            category_ids=list(self.category_ids),
            tags=list(self.tags),
            free_only=self.free_only,
            target_date=self.date,
            keyword=self.keyword,
            user_point=GeoPoint(self.user_location.latitude, self.user_location.longitude) if self.user_location else None,
            area_point=GeoPoint(self.area.latitude, self.area.longitude) if self.area else None,
            radius_km=self.radius_km,
            viewport=BoundingBox(
                min_lat=self.viewport.south,
                max_lat=self.viewport.north,
                min_lon=self.viewport.west,
                max_lon=self.viewport.east,
            ) if self.viewport else None,
            page=self.page,
            limit=self.limit or 0,
        )


def _discovery(db: Session, clock: Clock) -> DiscoveryService:
    location_service = LocationService(db, clock=clock)
    return DiscoveryService(db, housekeeping=location_service.maybe_sweep_stale)


def _result_body(result: DiscoveryResult, serialize) -> dict:
    return {
        "total": result.total,
        "page": result.page,
        "limit": result.limit,
        "mode": result.mode.value,
        "map_mode": result.map_mode.value,
        "list_results": [serialize(item.entity, item.distance_km) for item in result.list_results],
        "map_results": [serialize(item.entity, item.distance_km) for item in result.map_results],
    }


@router.post("/services")
def search_services(
    request: SearchRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    Search listings.

    A non-empty keyword overrides radius and area filters. Distances are
    kilometres from ``user_location``.
    """
    result = _discovery(db, clock).search_services(request.to_query())
    return envelope(_result_body(result, serialize_listing), "Services fetched")


@router.post("/users")
def search_users(
    request: SearchRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    result = _discovery(db, clock).search_users(request.to_query(), requester_id=request.requester_id)
    return envelope(_result_body(result, serialize_user), "Users fetched")
