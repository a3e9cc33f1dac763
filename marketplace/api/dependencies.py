"""
API dependencies for FastAPI dependency injection.

Provides database sessions, the payment gateway, the notification service
and the clock. Tests override these through ``app.dependency_overrides``.
"""
from typing import Optional

from marketplace.lib.cooldown import Clock, utc_now
from marketplace.lib.db import get_db as get_db_session
from marketplace.services.notification_service import NotificationService
from marketplace.services.payment_gateway import PaymentGateway, get_payment_gateway as select_gateway


# Re-export get_db for convenience
get_db = get_db_session


# Shared so view deduplication spans requests
_notification_service: Optional[NotificationService] = None


def get_payment_gateway() -> PaymentGateway:
    return select_gateway()


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service


def get_clock() -> Clock:
    return utc_now
