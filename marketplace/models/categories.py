"""
Category model - groups listings and owns the allowed tag vocabulary.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import String, JSON, Uuid, ForeignKey, Table, Column
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.lib.db import Base, UTCDateTime, utcnow


# Users who offer or follow a category (best-effort membership)
category_members = Table(
    "category_members",
    Base.metadata,
    Column("category_id", Uuid, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Category(Base):
    """
    Category entity.
    """
    __tablename__ = "categories"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def canonical_tags(self, requested: list) -> tuple:
        """
        Split requested tags into (accepted, rejected).

        Matching is case-insensitive; accepted tags use the category's casing.
        """
        by_key = {str(tag).strip().lower(): str(tag).strip() for tag in (self.tags or [])}
        accepted, rejected = [], []
        for raw in requested:
            key = str(raw).strip().lower()
            if key and key in by_key:
                if by_key[key] not in accepted:
                    accepted.append(by_key[key])
            else:
                rejected.append(raw)
        return accepted, rejected

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name={self.name})>"
