"""
Listing review API routes.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_clock, get_db
from marketplace.api.schemas import envelope, serialize_review
from marketplace.lib.cooldown import Clock
from marketplace.services.review_service import ReviewService


router = APIRouter(tags=["reviews"])


class ReviewCreate(BaseModel):
    service_id: UUID
    user_id: UUID
    rating: Optional[float] = None
    text: Optional[str] = Field(default=None, max_length=2000)


@router.post("/reviews", status_code=201)
def create_review(request: ReviewCreate, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    review = ReviewService(db, clock=clock).create_review(
        request.service_id, request.user_id, request.rating, request.text
    )
    return envelope(serialize_review(review), "Review submitted successfully")


@router.get("/listings/{listing_id}/reviews")
def list_reviews(listing_id: UUID, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Reviews for a listing, newest first, with count and average rating."""
    reviews = ReviewService(db, clock=clock).list_reviews(listing_id)
    data = ReviewService.summarize(reviews)
    data["reviews"] = [serialize_review(r) for r in reviews]
    return envelope(data, "Reviews fetched")
