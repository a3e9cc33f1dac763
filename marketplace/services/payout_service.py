"""
Payout onboarding: gateway customers for payers and connected accounts for
providers, which must exist before a provider can be booked.
"""
from typing import Dict
from uuid import UUID

from sqlalchemy.orm import Session

from marketplace.api.middleware.error_handler import NotFoundException, PreconditionException
from marketplace.lib.logging import get_logger
from marketplace.lib.settings import settings
from marketplace.models.users import User
from marketplace.services.payment_gateway import PaymentGateway, gateway_call

logger = get_logger(__name__)


class PayoutService:
    """Gateway identities for users."""

    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway

    def _get_user(self, user_id: UUID) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", str(user_id))
        return user

    def ensure_customer(self, user_id: UUID) -> str:
        """Create the user's gateway customer, or return the existing one."""
        user = self._get_user(user_id)
        if user.gateway_customer_id:
            return user.gateway_customer_id

        user.gateway_customer_id = gateway_call(
            "create_customer",
            self.gateway.create_or_attach_customer,
            user.email,
            user.name,
        )
        self.db.commit()
        logger.info("Gateway customer created", extra={"user_id": str(user_id)})
        return user.gateway_customer_id

    def create_connected_account(self, user_id: UUID) -> str:
        """Create a payout account for a provider; idempotent per user."""
        user = self._get_user(user_id)
        if user.gateway_account_id:
            return user.gateway_account_id

        user.gateway_account_id = gateway_call(
            "create_account",
            self.gateway.create_connected_account,
            user.email,
            settings.connect_account_country,
        )
        self.db.commit()
        logger.info("Connected account created", extra={"user_id": str(user_id)})
        return user.gateway_account_id

    def create_onboarding_link(self, user_id: UUID) -> Dict[str, str]:
        user = self._get_user(user_id)
        if not user.gateway_account_id:
            raise PreconditionException(
                "Provider has no payout account; create one first",
                details={"user_id": str(user_id)},
            )
        url = gateway_call(
            "create_account_link",
            self.gateway.create_onboarding_link,
            user.gateway_account_id,
        )
        return {"account_id": user.gateway_account_id, "url": url}
