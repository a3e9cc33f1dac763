"""
Payment gateway abstraction with Stripe and in-memory sandbox adapters.

Amounts cross this interface in whole currency units; the Stripe adapter
converts to minor units (x100) at the SDK boundary. All calls are
synchronous and are not retried.
"""
import json
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, List, Optional

import stripe

from marketplace.api.middleware.error_handler import UpstreamServiceException
from marketplace.lib.logging import get_logger
from marketplace.lib.metrics import get_metrics_collector
from marketplace.lib.settings import settings

logger = get_logger(__name__)


# Intent states that mean funds are authorized or already moved
CAPTURABLE_STATUSES = frozenset({"requires_capture", "succeeded"})


class PaymentGatewayError(Exception):
    """Raised when the payment provider rejects or fails a call."""

    def __init__(self, message: str, operation: str):
        self.message = message
        self.operation = operation
        super().__init__(f"{operation}: {message}")


@dataclass
class PaymentIntentResult:
    id: str
    status: str
    amount: float
    amount_received: float = 0
    currency: Optional[str] = None

    @property
    def is_authorized(self) -> bool:
        return self.status in CAPTURABLE_STATUSES

    @property
    def is_captured(self) -> bool:
        return self.status == "succeeded"


@dataclass
class RefundResult:
    id: str
    status: str
    amount: float


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def from_minor_units(amount: Optional[int]) -> float:
    return (amount or 0) / 100


class PaymentGateway(ABC):
    """Operations the marketplace needs from a payment processor."""

    @abstractmethod
    def create_or_attach_customer(self, email: str, name: Optional[str] = None,
                                  existing_id: Optional[str] = None) -> str:
        """Return the customer id, creating one only when ``existing_id`` is empty."""

    @abstractmethod
    def create_connected_account(self, email: str, country: str) -> str:
        """Create a payout (connected) account and return its id."""

    @abstractmethod
    def create_onboarding_link(self, account_id: str) -> str:
        """Return a URL where the account holder completes onboarding."""

    @abstractmethod
    def create_payment_intent(
        self,
        amount: float,
        currency: str,
        capture_mode: str = "manual",
        commission: Optional[float] = None,
        destination: Optional[str] = None,
        customer_id: Optional[str] = None,
        payment_method_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentIntentResult:
        """Create and confirm a payment intent."""

    @abstractmethod
    def capture_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        """Capture a previously authorized intent in full."""

    @abstractmethod
    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        """Fetch the current state of an intent."""

    @abstractmethod
    def create_refund(self, intent_id: str, amount: float) -> RefundResult:
        """Refund ``amount`` of a captured intent."""

    @abstractmethod
    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify and parse a webhook delivery."""


class StripePaymentGateway(PaymentGateway):
    """
    Stripe Connect adapter.

    Booking intents are destination charges: the platform keeps the
    application fee, the rest is transferred to the provider account.
    """

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        if not self.api_key:
            raise ValueError(
                "Stripe secret key not configured. "
                "Set STRIPE_SECRET_KEY environment variable."
            )
        stripe.api_key = self.api_key
        logger.info("Stripe payment gateway initialized")

    @staticmethod
    def _intent_result(intent) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount=from_minor_units(getattr(intent, "amount", None)),
            amount_received=from_minor_units(getattr(intent, "amount_received", None)),
            currency=getattr(intent, "currency", None),
        )

    def _fail(self, operation: str, exc: Exception) -> PaymentGatewayError:
        message = getattr(exc, "user_message", None) or str(exc)
        logger.error(
            f"Stripe call failed: {operation}",
            extra={"operation": operation, "error": message},
        )
        return PaymentGatewayError(message, operation)

    def create_or_attach_customer(self, email, name=None, existing_id=None):
        if existing_id:
            return existing_id
        try:
            customer = stripe.Customer.create(email=email, name=name)
        except stripe.StripeError as e:
            raise self._fail("create_customer", e) from e
        return customer.id

    def create_connected_account(self, email, country):
        try:
            account = stripe.Account.create(
                type="express",
                country=country,
                email=email,
                capabilities={
                    "transfers": {"requested": True},
                    "card_payments": {"requested": True},
                },
            )
        except stripe.StripeError as e:
            raise self._fail("create_account", e) from e
        return account.id

    def create_onboarding_link(self, account_id):
        try:
            link = stripe.AccountLink.create(
                account=account_id,
                refresh_url=settings.onboarding_refresh_url,
                return_url=settings.onboarding_return_url,
                type="account_onboarding",
            )
        except stripe.StripeError as e:
            raise self._fail("create_account_link", e) from e
        return link.url

    def create_payment_intent(
        self,
        amount,
        currency,
        capture_mode="manual",
        commission=None,
        destination=None,
        customer_id=None,
        payment_method_id=None,
        description=None,
    ):
        params: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "confirm": True,
            "capture_method": capture_mode,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
        }
        if customer_id:
            params["customer"] = customer_id
        if payment_method_id:
            params["payment_method"] = payment_method_id
        if commission is not None and destination:
            params["application_fee_amount"] = to_minor_units(commission)
        if destination:
            params["transfer_data"] = {"destination": destination}
        if description:
            params["description"] = description

        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.StripeError as e:
            raise self._fail("create_payment_intent", e) from e

        logger.info(
            "Payment intent created",
            extra={"intent_id": intent.id, "status": intent.status, "capture_method": capture_mode},
        )
        return self._intent_result(intent)

    def capture_payment_intent(self, intent_id):
        try:
            intent = stripe.PaymentIntent.capture(intent_id)
        except stripe.StripeError as e:
            raise self._fail("capture_payment_intent", e) from e
        return self._intent_result(intent)

    def retrieve_payment_intent(self, intent_id):
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as e:
            raise self._fail("retrieve_payment_intent", e) from e
        return self._intent_result(intent)

    def create_refund(self, intent_id, amount):
        try:
            refund = stripe.Refund.create(payment_intent=intent_id, amount=to_minor_units(amount))
        except stripe.StripeError as e:
            raise self._fail("create_refund", e) from e
        return RefundResult(
            id=refund.id,
            status=refund.status,
            amount=from_minor_units(getattr(refund, "amount", None)),
        )

    def construct_webhook_event(self, payload, signature):
        if not self.webhook_secret:
            raise PaymentGatewayError("Webhook secret not configured", "construct_webhook_event")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise PaymentGatewayError(str(e), "construct_webhook_event") from e
        return event


@dataclass
class _SandboxIntent:
    id: str
    amount: float
    currency: str
    status: str
    capture_mode: str
    commission: Optional[float] = None
    destination: Optional[str] = None
    customer_id: Optional[str] = None
    amount_received: float = 0
    refunded: float = 0


class SandboxPaymentGateway(PaymentGateway):
    """
    Deterministic in-memory gateway for local development and tests.

    Payment method ``pm_card_declined`` produces a declined intent; any
    operation listed in ``fail_operations`` raises PaymentGatewayError.
    Webhook payloads are plain JSON and are not signature-checked.
    """

    DECLINED_METHOD = "pm_card_declined"

    def __init__(self):
        self._lock = Lock()
        self.intents: Dict[str, _SandboxIntent] = {}
        self.refunds: List[RefundResult] = []
        self.fail_operations: set = set()
        self.calls: List[str] = []

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_operations:
            raise PaymentGatewayError("Simulated gateway failure", operation)

    def call_count(self, operation: str) -> int:
        return self.calls.count(operation)

    @staticmethod
    def _new_id(prefix: str) -> str:
        return f"{prefix}_{secrets.token_hex(8)}"

    @staticmethod
    def _result(intent: _SandboxIntent) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
            amount_received=intent.amount_received,
            currency=intent.currency,
        )

    def _get(self, intent_id: str, operation: str) -> _SandboxIntent:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise PaymentGatewayError(f"No such payment_intent: {intent_id}", operation)
        return intent

    def create_or_attach_customer(self, email, name=None, existing_id=None):
        with self._lock:
            self._record("create_customer")
            return existing_id or self._new_id("cus")

    def create_connected_account(self, email, country):
        with self._lock:
            self._record("create_account")
            return self._new_id("acct")

    def create_onboarding_link(self, account_id):
        with self._lock:
            self._record("create_account_link")
            return f"{settings.onboarding_return_url}?account={account_id}"

    def create_payment_intent(
        self,
        amount,
        currency,
        capture_mode="manual",
        commission=None,
        destination=None,
        customer_id=None,
        payment_method_id=None,
        description=None,
    ):
        with self._lock:
            self._record("create_payment_intent")
            if payment_method_id == self.DECLINED_METHOD:
                status = "requires_payment_method"
            elif capture_mode == "manual":
                status = "requires_capture"
            else:
                status = "succeeded"
            intent = _SandboxIntent(
                id=self._new_id("pi"),
                amount=amount,
                currency=currency,
                status=status,
                capture_mode=capture_mode,
                commission=commission,
                destination=destination,
                customer_id=customer_id,
                amount_received=amount if status == "succeeded" else 0,
            )
            self.intents[intent.id] = intent
            return self._result(intent)

    def capture_payment_intent(self, intent_id):
        with self._lock:
            self._record("capture_payment_intent")
            intent = self._get(intent_id, "capture_payment_intent")
            if intent.status != "requires_capture":
                raise PaymentGatewayError(
                    f"PaymentIntent in status {intent.status} cannot be captured",
                    "capture_payment_intent",
                )
            intent.status = "succeeded"
            intent.amount_received = intent.amount
            return self._result(intent)

    def retrieve_payment_intent(self, intent_id):
        with self._lock:
            self._record("retrieve_payment_intent")
            return self._result(self._get(intent_id, "retrieve_payment_intent"))

    def create_refund(self, intent_id, amount):
        with self._lock:
            self._record("create_refund")
            intent = self._get(intent_id, "create_refund")
            if intent.status != "succeeded":
                raise PaymentGatewayError("Cannot refund an uncaptured payment", "create_refund")
            if amount > intent.amount_received - intent.refunded:
                raise PaymentGatewayError("Refund exceeds captured amount", "create_refund")
            intent.refunded += amount
            refund = RefundResult(id=self._new_id("re"), status="succeeded", amount=amount)
            self.refunds.append(refund)
            return refund

    def construct_webhook_event(self, payload, signature):
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise PaymentGatewayError(f"Invalid payload: {e}", "construct_webhook_event") from e
        if not isinstance(event, dict) or "type" not in event:
            raise PaymentGatewayError("Invalid payload: missing event type", "construct_webhook_event")
        return event


_sandbox_gateway: Optional[SandboxPaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """
    Gateway selected by ``settings.payment_provider``.

    The sandbox instance is a process singleton so intents survive between
    requests.
    """
    global _sandbox_gateway

    if settings.payment_provider == "stripe":
        return StripePaymentGateway()

    if _sandbox_gateway is None:
        _sandbox_gateway = SandboxPaymentGateway()
        logger.info("Using sandbox payment gateway (dev mode)")
    return _sandbox_gateway


def gateway_call(operation: str, func, *args, **kwargs):
    """
    Invoke a gateway method, converting failures for the API layer.

    Raises:
        UpstreamServiceException: the gateway raised PaymentGatewayError
    """
    try:
        return func(*args, **kwargs)
    except PaymentGatewayError as e:
        get_metrics_collector().increment_gateway_errors(operation)
        logger.error(
            f"Payment gateway error during {operation}: {e.message}",
            extra={"operation": operation},
        )
        raise UpstreamServiceException(
            "Payment provider error",
            details={"operation": operation, "reason": e.message},
        ) from e
