"""
Admin-managed platform policies: commission and cancellation.

Each table holds at most one row; absence means "use the default".
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, Float, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.lib.db import Base, UTCDateTime, utcnow


class CommissionSetting(Base):
    """Platform commission percentage applied to new bookings."""
    __tablename__ = "commission_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    percentage: Mapped[float] = mapped_column(Float, nullable=False, default=20.0)
    updated_by: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<CommissionSetting(percentage={self.percentage})>"


class CancellationSetting(Base):
    """Cancellation fee policy; percentage is 0 whenever disabled."""
    __tablename__ = "cancellation_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<CancellationSetting(enabled={self.enabled}, percentage={self.percentage})>"
