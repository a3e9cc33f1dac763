"""
Performance Service for provider scoring.

Maintains a running weighted completion score per provider and uses it to
gate new listing creation. Providers without any bookings are exempt.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from marketplace.api.middleware.error_handler import NotFoundException
from marketplace.lib.cooldown import Clock, utc_now
from marketplace.lib.logging import get_logger
from marketplace.lib.money import round_half_up
from marketplace.lib.settings import settings
from marketplace.models.users import User

logger = get_logger(__name__)


@dataclass(frozen=True)
class ServiceCreationCheck:
    allowed: bool
    restricted_until: Optional[datetime] = None
    reason: Optional[str] = None


def weighted_score(old_score: float, old_total: int, completed: int, failed: int) -> Optional[int]:
    """
    New running score after a batch, or None when the batch is empty.

    Args:
        old_score: Current score (0-100)
        old_total: Bookings already counted in ``old_score``
        completed: Completed bookings in this batch
        failed: Failed bookings in this batch

    Returns:
        Weighted average rounded to an integer
    """
    batch_total = completed + failed
    if batch_total == 0:
        return None
    service_score = completed / batch_total * 100
    return round_half_up(
        (old_score * old_total + service_score * batch_total) / (old_total + batch_total)
    )


class PerformanceService:
    """Service for provider performance scoring and the listing gate."""

    @staticmethod
    def apply_batch(
        db: Session,
        provider_id: UUID,
        completed_count: int = 0,
        failed_count: int = 0,
        clock: Clock = utc_now,
    ) -> Optional[User]:
        """
        Fold a batch of booking outcomes into the provider's score.

        A score below the threshold restricts new listings for
        ``performance_restriction_hours``; otherwise any restriction is lifted.
        Commits the session. Returns the provider, or None when no-op.
        """
        batch_total = completed_count + failed_count
        if batch_total == 0:
            return None

        provider = db.get(User, provider_id, with_for_update=True)
        if provider is None:
            logger.warning("Performance update for unknown provider", extra={"provider_id": str(provider_id)})
            return None

        new_score = weighted_score(
            provider.performance_points or 0,
            provider.total_bookings or 0,
            completed_count,
            failed_count,
        )
        provider.performance_points = new_score
        provider.total_bookings = (provider.total_bookings or 0) + batch_total
        provider.successful_bookings = (provider.successful_bookings or 0) + completed_count

        if new_score < settings.performance_threshold:
            provider.restriction_on_new_service_until = clock() + timedelta(
                hours=settings.performance_restriction_hours
            )
        else:
            provider.restriction_on_new_service_until = None

        db.commit()

        logger.info(
            "Provider performance updated",
            extra={
                "provider_id": str(provider_id),
                "score": new_score,
                "total_bookings": provider.total_bookings,
                "restricted_until": provider.restriction_on_new_service_until,
            },
        )
        return provider

    @staticmethod
    def check_service_creation(db: Session, provider_id: UUID, clock: Clock = utc_now) -> ServiceCreationCheck:
        """
        Decide whether the provider may create a listing right now.

        A low score at check time starts a fresh restriction window, so the
        check itself commits when it blocks a provider.
        """
        provider = db.get(User, provider_id)
        if provider is None:
            raise NotFoundException("User", str(provider_id))

        if not provider.total_bookings:
            return ServiceCreationCheck(allowed=True)

        now = clock()
        until = provider.restriction_on_new_service_until
        if until is not None and until > now:
            return ServiceCreationCheck(
                allowed=False,
                restricted_until=until,
                reason="You cannot create a service now; you are restricted for low performance",
            )

        if (provider.performance_points or 0) < settings.performance_threshold:
            provider.restriction_on_new_service_until = now + timedelta(
                hours=settings.performance_restriction_hours
            )
            db.commit()
            logger.info(
                "Provider restricted on service creation attempt",
                extra={"provider_id": str(provider_id), "score": provider.performance_points},
            )
            return ServiceCreationCheck(
                allowed=False,
                restricted_until=provider.restriction_on_new_service_until,
                reason=f"Your score is low; you are blocked for {settings.performance_restriction_hours} hours",
            )

        return ServiceCreationCheck(allowed=True)

    @staticmethod
    def get_profile(provider: User, clock: Clock = utc_now) -> Dict[str, Any]:
        total = provider.total_bookings or 0
        success = provider.successful_bookings or 0
        until = provider.restriction_on_new_service_until
        return {
            "provider_id": str(provider.id),
            "points": provider.performance_points or 0,
            "total_bookings": total,
            "successful_bookings": success,
            "success_rate": 0 if total == 0 else round_half_up(success / total * 100),
            "restricted": until is not None and until > clock(),
            "restricted_until": until.isoformat() if until else None,
        }
