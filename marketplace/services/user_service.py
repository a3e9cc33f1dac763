"""
User tag management: interests (what a user follows) and offered tags
(what a provider offers), both validated against a category's vocabulary.
"""
from typing import Any, Dict, List
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.api.middleware.error_handler import BadRequestException, NotFoundException
from marketplace.lib.logging import get_logger
from marketplace.models.categories import Category, category_members
from marketplace.models.users import User, UserStatus
from marketplace.services.listing_service import ListingService
from marketplace.services.notification_service import NotificationService

logger = get_logger(__name__)


TAG_FIELDS = {"interest": "interests", "offer": "offered_tags"}


def normalize_tags(raw: Any) -> List[str]:
    """Tags from a list or a comma-separated string, blanks dropped."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        raw = [raw]
    return [str(t).strip() for t in raw if str(t).strip()]


class UserService:
    """Tag updates with best-effort category membership."""

    def __init__(self, db: Session, notifier: NotificationService):
        self.db = db
        self.notifier = notifier

    def update_tags(
        self,
        user_id: UUID,
        tag_type: str,
        tags: Any,
        action: str = "add",
        category_id: Any = None,
    ) -> Dict[str, Any]:
        """
        Add or remove interest/offer tags for a user.

        Only tags present in the category are applied (in the category's
        casing); the rest are reported back as rejected.

        Raises:
            BadRequestException: bad type/action, empty tags, or no valid tag
            NotFoundException: unknown user or category
        """
        tag_type = (tag_type or "").strip().lower()
        action = (action or "add").strip().lower()
        requested = normalize_tags(tags)

        if tag_type not in TAG_FIELDS:
            raise BadRequestException('type must be "offer" or "interest"', details={"field": "type"})
        if not requested:
            raise BadRequestException("tags must be a non-empty array", details={"field": "tags"})
        if action not in ("add", "remove"):
            raise BadRequestException('action must be "add" or "remove"', details={"field": "action"})
        if not category_id:
            raise BadRequestException("category_id is required for tag verification", details={"field": "category_id"})

        category = self.db.get(Category, category_id)
        if category is None:
            raise NotFoundException("Category", str(category_id))

        accepted, rejected = category.canonical_tags(requested)
        if not accepted:
            raise BadRequestException(
                "No valid tags found in this category",
                details={"accepted_tags": [], "rejected_tags": rejected},
            )

        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", str(user_id))

        field_name = TAG_FIELDS[tag_type]
        current = list(getattr(user, field_name) or [])
        if action == "add":
            updated = current + [t for t in accepted if t not in current]
        else:
            removed = {t.lower() for t in accepted}
            updated = [t for t in current if str(t).lower() not in removed]
        # Reassign so the JSON column is flagged dirty
        setattr(user, field_name, updated)
        self.db.commit()
        self.db.refresh(user)

        logger.info(
            "User tags updated",
            extra={"user_id": str(user_id), "field": field_name, "action": action, "accepted": accepted},
        )

        self._sync_membership(category.id, user.id, action)

        if tag_type == "interest" and action == "add":
            self.notifier.notify_interest_update(user, self._providers_offering(accepted, user.id))

        return {
            "field": field_name,
            "tags": updated,
            "accepted_tags": accepted,
            "rejected_tags": rejected,
        }

    def _providers_offering(self, tags: List[str], exclude_id: UUID) -> List[User]:
        wanted = {t.lower() for t in tags}
        users = self.db.execute(
            select(User)
            .where(User.id != exclude_id)
            .where(User.is_active.is_(True))
            .where(User.status == UserStatus.ACTIVE)
        ).scalars().all()
        return [u for u in users if wanted & {str(t).lower() for t in u.offered_tags or []}]

    def _sync_membership(self, category_id: UUID, user_id: UUID, action: str) -> None:
        if action == "add":
            ListingService(self.db, self.notifier).link_category_member(category_id, user_id)
            return
        try:
            self.db.execute(
                delete(category_members)
                .where(category_members.c.category_id == category_id)
                .where(category_members.c.user_id == user_id)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(
                f"Category membership removal failed: {e}",
                extra={"category_id": str(category_id), "user_id": str(user_id)},
            )
