"""
Review model - a user's rating and comment on a service listing.
"""
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import String, Integer, Uuid, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.lib.db import Base, UTCDateTime, utcnow


class Review(Base):
    """
    Review entity (many per listing).
    """
    __tablename__ = "reviews"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    service_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Reviewer name at the time of writing
    username: Mapped[str] = mapped_column(String(255), nullable=False)

    # Rating (0-5 scale)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(String(2000), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("rating >= 0 AND rating <= 5", name="review_rating_range"),
    )

    def __repr__(self) -> str:
        return f"<Review(id={self.id}, service_id={self.service_id}, rating={self.rating})>"
