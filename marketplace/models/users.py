"""
User model - every account can both book services and provide them.

Embeds the user's last known location and the provider performance state.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
import enum

from sqlalchemy import String, Boolean, Float, Integer, JSON, Uuid, Enum as SQLEnum, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.lib.db import Base, UTCDateTime, utcnow


class UserStatus(str, enum.Enum):
    """Account status; restricted/banned are set by the violation engine."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    RESTRICTED = "restricted"
    BANNED = "banned"


class User(Base):
    """
    User entity - customers and providers alike.
    """
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Profile
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    mobile: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    interests: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    offered_tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Status
    status: Mapped[UserStatus] = mapped_column(
        SQLEnum(UserStatus, name="user_status"),
        nullable=False,
        default=UserStatus.ACTIVE,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Payment gateway references
    gateway_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gateway_account_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Connected payout account; required to receive bookings",
    )

    # Last known location
    loc_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    loc_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    loc_accuracy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    loc_provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    loc_recorded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    loc_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    loc_is_stale: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Provider performance
    performance_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    restriction_on_new_service_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Non-canceled invoices; incremented atomically when an offense is flagged
    active_offense_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "performance_points >= 0 AND performance_points <= 100",
            name="user_performance_range",
        ),
    )

    @property
    def has_location(self) -> bool:
        return (
            self.loc_latitude is not None
            and self.loc_longitude is not None
            and not self.loc_is_stale
            and not (self.loc_latitude == 0 and self.loc_longitude == 0)
        )

    def location_dict(self) -> Optional[dict]:
        """Serializable view of the stored location, or None when never recorded."""
        if self.loc_recorded_at is None and self.loc_latitude is None:
            return None
        return {
            "latitude": self.loc_latitude,
            "longitude": self.loc_longitude,
            "accuracy": self.loc_accuracy,
            "provider": self.loc_provider,
            "recorded_at": self.loc_recorded_at.isoformat() if self.loc_recorded_at else None,
            "updated_at": self.loc_updated_at.isoformat() if self.loc_updated_at else None,
            "is_stale": self.loc_is_stale,
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name={self.name}, status={self.status})>"
