"""
Policy store for admin-managed commission and cancellation settings.
"""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.api.middleware.error_handler import BadRequestException
from marketplace.lib.logging import get_logger
from marketplace.lib.settings import settings
from marketplace.models.policies import CommissionSetting, CancellationSetting

logger = get_logger(__name__)


@dataclass(frozen=True)
class CancellationPolicy:
    enabled: bool
    percentage: float

    @property
    def effective_percentage(self) -> float:
        """Fee percentage actually charged; 0 while the policy is disabled."""
        return self.percentage if self.enabled else 0.0


def _validate_percentage(value: float, field: str) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise BadRequestException(f"{field} must be a number", details={"field": field})
    if not 0 <= value <= 100:
        raise BadRequestException(
            f"{field} must be between 0 and 100",
            details={"field": field, "value": value},
        )
    return value


class PolicyService:
    """Single-row commission and cancellation policies."""

    @staticmethod
    def get_commission_percentage(db: Session) -> float:
        """Current commission percentage, falling back to the configured default."""
        row = db.execute(select(CommissionSetting).limit(1)).scalar_one_or_none()
        if row is None:
            return settings.default_commission_percentage
        return row.percentage

    @staticmethod
    def update_commission(db: Session, percentage: float, admin_id: Optional[UUID] = None) -> CommissionSetting:
        percentage = _validate_percentage(percentage, "percentage")

        row = db.execute(select(CommissionSetting).limit(1)).scalar_one_or_none()
        if row is None:
            row = CommissionSetting(percentage=percentage, updated_by=admin_id)
            db.add(row)
        else:
            row.percentage = percentage
            row.updated_by = admin_id
        db.commit()
        db.refresh(row)

        logger.info(
            "Commission percentage updated",
            extra={"percentage": percentage, "admin_id": str(admin_id) if admin_id else None},
        )
        return row

    @staticmethod
    def get_cancellation_policy(db: Session) -> CancellationPolicy:
        row = db.execute(select(CancellationSetting).limit(1)).scalar_one_or_none()
        if row is None:
            return CancellationPolicy(enabled=False, percentage=0.0)
        return CancellationPolicy(enabled=row.enabled, percentage=row.percentage)

    @staticmethod
    def update_cancellation_policy(db: Session, enabled: bool, percentage: Optional[float] = None) -> CancellationPolicy:
        """
        Update the cancellation policy.

        Disabling the policy forces the percentage to 0 regardless of input.
        """
        if enabled:
            if percentage is None:
                raise BadRequestException("percentage is required when enabling cancellation fees")
            percentage = _validate_percentage(percentage, "percentage")
        else:
            percentage = 0.0

        row = db.execute(select(CancellationSetting).limit(1)).scalar_one_or_none()
        if row is None:
            row = CancellationSetting(enabled=enabled, percentage=percentage)
            db.add(row)
        else:
            row.enabled = enabled
            row.percentage = percentage
        db.commit()

        logger.info(
            "Cancellation policy updated",
            extra={"enabled": enabled, "percentage": percentage},
        )
        return CancellationPolicy(enabled=enabled, percentage=percentage)
