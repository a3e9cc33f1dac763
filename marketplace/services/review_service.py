"""
Review Service for listing ratings and comments.
"""
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.api.middleware.error_handler import BadRequestException, NotFoundException
from marketplace.lib.cooldown import Clock, utc_now
from marketplace.lib.logging import get_logger
from marketplace.models.reviews import Review
from marketplace.models.services import ServiceListing
from marketplace.models.users import User

logger = get_logger(__name__)


MIN_RATING = 0
MAX_RATING = 5


class ReviewService:
    """Create and list reviews on live listings."""

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    def _get_listing(self, listing_id: UUID) -> ServiceListing:
        listing = self.db.get(ServiceListing, listing_id)
        if listing is None or listing.delete_approved:
            raise NotFoundException("Service", str(listing_id))
        return listing

    def create_review(
        self,
        listing_id: UUID,
        user_id: UUID,
        rating: Any,
        text: Optional[str] = None,
    ) -> Review:
        """
        Store a review with the reviewer's current name.

        Raises:
            BadRequestException: rating missing, not a whole number or outside 0-5
            NotFoundException: listing or user does not exist
        """
        if rating is None or isinstance(rating, bool):
            raise BadRequestException("rating is required", details={"field": "rating"})
        try:
            value = float(rating)
        except (TypeError, ValueError) as e:
            raise BadRequestException("rating must be a number", details={"field": "rating"}) from e
        if not value.is_integer() or not MIN_RATING <= value <= MAX_RATING:
            raise BadRequestException(
                f"rating must be a whole number between {MIN_RATING} and {MAX_RATING}",
                details={"field": "rating", "value": rating},
            )

        listing = self._get_listing(listing_id)
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", str(user_id))

        review = Review(
            service_id=listing.id,
            user_id=user.id,
            username=user.name,
            rating=int(value),
            text=(text or "").strip(),
            created_at=self.clock(),
        )
        self.db.add(review)
        self.db.commit()
        self.db.refresh(review)

        logger.info(
            "Review created",
            extra={"review_id": str(review.id), "service_id": str(listing.id), "rating": review.rating},
        )
        return review

    def list_reviews(self, listing_id: UUID) -> List[Review]:
        """Reviews for a listing, newest first."""
        self._get_listing(listing_id)
        stmt = (
            select(Review)
            .where(Review.service_id == listing_id)
            .order_by(Review.created_at.desc(), Review.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    @staticmethod
    def summarize(reviews: List[Review]) -> Dict[str, Any]:
        count = len(reviews)
        average = round(sum(r.rating for r in reviews) / count, 2) if count else None
        return {"count": count, "average_rating": average}
