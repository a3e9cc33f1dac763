"""
Location tracking for users.

Updates are accepted only when they are strictly newer than the stored
reading (checked by the database in a conditional UPDATE) and moved at
least ``location_min_move_meters``. (0, 0) means "no reading" and echoes
the stored location. Old readings are zeroed by a best-effort sweep that
runs at most once per cooldown window per process.
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import update, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.api.middleware.error_handler import BadRequestException, NotFoundException
from marketplace.lib.cooldown import Clock, CooldownGate, utc_now
from marketplace.lib.geo import haversine_meters, is_valid_coordinate
from marketplace.lib.logging import get_logger
from marketplace.lib.metrics import get_metrics_collector
from marketplace.lib.settings import settings
from marketplace.models.users import User

logger = get_logger(__name__)


ALLOWED_LOCATION_SOURCES = frozenset({"gps", "network", "wifi", "cell", "fused", "passive", "mock"})


class LocationOutcome(str, enum.Enum):
    UPDATED = "updated"
    ZERO_COORDINATES = "zero_coordinates"
    TOO_CLOSE = "too_close"
    STALE_TIMESTAMP = "stale_timestamp"


_MESSAGES = {
    LocationOutcome.UPDATED: "Location updated",
    LocationOutcome.ZERO_COORDINATES: "Kept previous location",
    LocationOutcome.TOO_CLOSE: "Location too close to previous, skipped",
    LocationOutcome.STALE_TIMESTAMP: "No update performed (incoming point older than stored)",
}


@dataclass
class LocationUpdateResult:
    outcome: LocationOutcome
    location: Optional[dict]

    @property
    def message(self) -> str:
        return _MESSAGES[self.outcome]


_sweep_gate: Optional[CooldownGate] = None


def get_sweep_gate() -> CooldownGate:
    """Process-wide cooldown for the stale-location sweep."""
    global _sweep_gate
    if _sweep_gate is None:
        _sweep_gate = CooldownGate(timedelta(seconds=settings.location_sweep_cooldown_seconds))
    return _sweep_gate


class LocationService:
    """Freshness-guarded location writes and the stale sweep."""

    def __init__(self, db: Session, clock: Clock = utc_now, sweep_gate: Optional[CooldownGate] = None):
        self.db = db
        self.clock = clock
        self.sweep_gate = sweep_gate or get_sweep_gate()
        self.metrics = get_metrics_collector()

    def _normalize_recorded_at(self, recorded_at: Optional[datetime]) -> datetime:
        now = self.clock()
        if recorded_at is None:
            return now
        if recorded_at.tzinfo is None:
            recorded_at = recorded_at.replace(tzinfo=timezone.utc)

        if recorded_at - now > timedelta(seconds=settings.location_max_future_seconds):
            raise BadRequestException("recordedAt is in the future", details={"field": "recorded_at"})
        if now - recorded_at > timedelta(days=settings.location_max_past_days):
            raise BadRequestException("recordedAt too old", details={"field": "recorded_at"})
        return recorded_at

    def update_location(
        self,
        user_id: UUID,
        latitude: float,
        longitude: float,
        accuracy: Optional[float] = None,
        provider: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> LocationUpdateResult:
        """
        Apply one location reading.

        Raises:
            BadRequestException: invalid coordinates or recorded_at out of range
            NotFoundException: unknown user
        """
        if not is_valid_coordinate(latitude, longitude):
            raise BadRequestException(
                "invalid coordinates",
                details={"latitude": latitude, "longitude": longitude},
            )

        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", str(user_id))

        if latitude == 0 and longitude == 0:
            return self._finish(LocationOutcome.ZERO_COORDINATES, user)

        if provider is not None and provider not in ALLOWED_LOCATION_SOURCES:
            logger.warning(
                f'Unknown location provider "{provider}"',
                extra={"user_id": str(user_id)},
            )

        recorded_at = self._normalize_recorded_at(recorded_at)

        if user.loc_recorded_at is not None and user.has_location:
            moved = haversine_meters(user.loc_latitude, user.loc_longitude, latitude, longitude)
            if moved < settings.location_min_move_meters:
                return self._finish(LocationOutcome.TOO_CLOSE, user)

        stmt = (
            update(User)
            .where(User.id == user_id)
            .where(or_(User.loc_recorded_at.is_(None), User.loc_recorded_at < recorded_at))
            .values(
                loc_latitude=latitude,
                loc_longitude=longitude,
                loc_accuracy=None if accuracy is None else float(accuracy),
                loc_provider=provider[:20] if provider else None,
                loc_recorded_at=recorded_at,
                loc_updated_at=self.clock(),
                loc_is_stale=False,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        self.db.refresh(user)

        if result.rowcount == 0:
            return self._finish(LocationOutcome.STALE_TIMESTAMP, user)
        return self._finish(LocationOutcome.UPDATED, user)

    def _finish(self, outcome: LocationOutcome, user: User) -> LocationUpdateResult:
        self.metrics.increment_location_updates(outcome.value)
        logger.info(
            "Location update processed",
            extra={"user_id": str(user.id), "outcome": outcome.value},
        )
        return LocationUpdateResult(outcome=outcome, location=user.location_dict())

    def sweep_stale(self) -> int:
        """
        Zero out and flag locations older than ``location_stale_days``.

        Idempotent; returns the number of users swept.
        """
        now = self.clock()
        cutoff = now - timedelta(days=settings.location_stale_days)
        stmt = (
            update(User)
            .where(User.loc_recorded_at < cutoff)
            .where(User.loc_is_stale.is_(False))
            .values(loc_latitude=0.0, loc_longitude=0.0, loc_is_stale=True, loc_updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        self.db.expire_all()

        if result.rowcount:
            logger.info("Stale locations swept", extra={"count": result.rowcount})
        return result.rowcount

    def maybe_sweep_stale(self) -> Optional[int]:
        """
        Run the sweep unless it already ran within the cooldown window.

        Best effort: database errors are logged and swallowed. Returns the
        swept count, or None when skipped or failed.
        """
        if not self.sweep_gate.try_acquire():
            return None
        try:
            return self.sweep_stale()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Stale location sweep failed: {e}", exc_info=True)
            return None
