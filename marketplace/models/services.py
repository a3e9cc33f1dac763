"""
Service listing model - a provider's location-anchored, schedulable offering.
"""
from datetime import date as date_type, datetime
from typing import Optional
from uuid import UUID, uuid4
import enum

from sqlalchemy import (
    String, Text, Numeric, Integer, Boolean, Float, Date, JSON, Uuid,
    ForeignKey, Enum as SQLEnum, CheckConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.lib.db import Base, UTCDateTime, utcnow


class ServiceType(str, enum.Enum):
    """Scheduling mode."""
    ONE_TIME = "one_time"
    RECURRING = "recurring"


class ServiceListing(Base):
    """
    ServiceListing entity.

    Exactly one owner and one category. Listings with bookings are never
    hard-deleted; they go through delete_requested -> delete_approved.
    """
    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    owner_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("categories.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Details
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language: Mapped[str] = mapped_column(String(50), nullable=False, default="English")
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Pricing
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="inr")

    # Location
    location_name: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)

    # Scheduling
    service_type: Mapped[ServiceType] = mapped_column(
        SQLEnum(ServiceType, name="service_type"),
        nullable=False,
        default=ServiceType.ONE_TIME,
    )
    date: Mapped[Optional[date_type]] = mapped_column(Date, nullable=True, index=True)
    start_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    end_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    recurring_slots: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="[{day, date?, start_time, end_time}, ...]",
    )

    # Promotion (informational)
    is_promoted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    promoted_from: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    promoted_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Moderation
    delete_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delete_requested_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    delete_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delete_approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("latitude >= -90 AND latitude <= 90", name="service_latitude_range"),
        CheckConstraint("longitude >= -180 AND longitude <= 180", name="service_longitude_range"),
        Index("ix_services_lat_lon", "latitude", "longitude"),
    )

    def __repr__(self) -> str:
        return f"<ServiceListing(id={self.id}, title={self.title}, owner_id={self.owner_id})>"
