"""
Notification service abstraction for marketplace events.

Delivery is fire-and-forget: a failed send is logged and never propagates
into the booking, listing or payment flow that triggered it.
Supports console output (development) and SMTP email (production).
"""
import smtplib
from abc import ABC, abstractmethod
from datetime import timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Iterable, Optional

from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from marketplace.lib.cooldown import Clock, TTLCache, utc_now
from marketplace.lib.logging import get_logger
from marketplace.lib.settings import settings
from marketplace.models.bookings import Booking
from marketplace.models.invoices import Invoice
from marketplace.models.services import ServiceListing
from marketplace.models.users import User


logger = get_logger(__name__)


class NotificationProvider(ABC):
    """
    Abstract base class for notification delivery providers.
    """

    @abstractmethod
    def send(self, to: str, subject: str, message: str, **kwargs) -> bool:
        """
        Deliver one message.

        Args:
            to: Recipient address (email)
            subject: Short title
            message: Body text
            **kwargs: Provider-specific parameters

        Returns:
            True if sent successfully, False otherwise
        """
        pass

    @property
    @abstractmethod
    def channel(self) -> str:
        """Return the channel this provider supports."""
        pass


class ConsoleNotificationProvider(NotificationProvider):
    """
    Console provider for development/testing.
    Prints messages to console instead of sending.
    """

    @property
    def channel(self) -> str:
        return "console"

    def send(self, to: str, subject: str, message: str, **kwargs) -> bool:
        print("\n" + "=" * 60)
        print(f"Notification to {to}: {subject}")
        print(f"   {message}")
        print("=" * 60 + "\n")
        logger.info("Notification logged to console", extra={"to": to, "subject": subject})
        return True


class EmailNotificationProvider(NotificationProvider):
    """
    SMTP email provider.

    Requires SMTP_USERNAME and SMTP_PASSWORD. Transient SMTP/socket errors
    are retried with exponential backoff before the send is given up.
    """

    def __init__(self):
        if not settings.smtp_username or not settings.smtp_password:
            raise ValueError(
                "SMTP credentials not configured. "
                "Set SMTP_USERNAME and SMTP_PASSWORD environment variables."
            )

        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.smtp_from_email or settings.smtp_username
        self.from_name = settings.smtp_from_name

    @property
    def channel(self) -> str:
        return "email"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((smtplib.SMTPException, OSError)),
        reraise=True,
    )
    def _deliver(self, msg: MIMEMultipart) -> None:
        if self.smtp_port == 465:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port) as server:
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)

    def send(self, to: str, subject: str, message: str, **kwargs) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(message, "plain"))

        try:
            self._deliver(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email send failed: {e}", extra={"to": to, "subject": subject})
            return False

        logger.info("Email sent", extra={"to": to, "subject": subject})
        return True


def get_notification_provider() -> NotificationProvider:
    """Provider selected by ``settings.notification_provider``."""
    provider_name = settings.notification_provider.lower()

    if provider_name == "console":
        return ConsoleNotificationProvider()
    elif provider_name == "email":
        try:
            return EmailNotificationProvider()
        except ValueError as e:
            logger.warning(f"Email provider not available ({e}), falling back to console provider")
            return ConsoleNotificationProvider()
    else:
        raise ValueError(
            f"Unknown notification provider: {provider_name}. "
            f"Valid options: console, email"
        )


class NotificationService:
    """
    Marketplace notifications.

    Every public method is best effort: it returns the number of messages
    delivered and swallows provider errors after logging them.
    """

    def __init__(
        self,
        provider: Optional[NotificationProvider] = None,
        clock: Clock = utc_now,
        view_dedup: Optional[TTLCache] = None,
    ):
        self.provider = provider or get_notification_provider()
        self.view_dedup = view_dedup or TTLCache(
            timedelta(seconds=settings.service_view_dedup_seconds),
            clock=clock,
        )

    def _dispatch(self, event: str, to: Optional[str], subject: str, message: str) -> bool:
        if not to:
            logger.warning("Notification skipped, no recipient address", extra={"event": event})
            return False
        try:
            sent = self.provider.send(to, subject, message, event=event)
        except Exception as e:
            logger.error(
                f"Notification dispatch failed: {e}",
                extra={"event": event, "to": to},
                exc_info=True,
            )
            return False
        if not sent:
            logger.warning("Notification not delivered", extra={"event": event, "to": to})
        return bool(sent)

    def _broadcast(self, event: str, recipients: Iterable[User], subject: str, message: str) -> int:
        return sum(1 for user in recipients if self._dispatch(event, user.email, subject, message))

    # Listings

    def notify_new_service(self, service: ServiceListing, recipients: Iterable[User]) -> int:
        """Tell interested users about a newly created listing."""
        return self._broadcast(
            "new_service",
            recipients,
            f"New service: {service.title}",
            f"A new service matching your interests is available at {service.location_name}.",
        )

    def notify_service_updated(self, service: ServiceListing, recipients: Iterable[User]) -> int:
        return self._broadcast(
            "service_updated",
            recipients,
            f"Service updated: {service.title}",
            f"'{service.title}' has new details.",
        )

    def notify_service_viewed(self, viewer: User, service: ServiceListing, owner: User) -> bool:
        """
        Tell the owner that someone viewed their listing.

        Repeated views by the same viewer are suppressed for
        ``service_view_dedup_seconds``; owners viewing their own listing are ignored.
        """
        if viewer.id == owner.id:
            return False
        if not self.view_dedup.add((viewer.id, service.id)):
            logger.debug(
                "Service view notification deduplicated",
                extra={"viewer_id": str(viewer.id), "service_id": str(service.id)},
            )
            return False
        return self._dispatch(
            "service_viewed",
            owner.email,
            "Someone viewed your service",
            f"{viewer.name} viewed '{service.title}'.",
        )

    def notify_interest_update(self, user: User, recipients: Iterable[User] = ()) -> int:
        """Confirm an interest change to the user and optionally tell others."""
        interests = ", ".join(user.interests or []) or "none"
        delivered = int(self._dispatch(
            "interest_update",
            user.email,
            "Your interests were updated",
            f"You now follow: {interests}.",
        ))
        return delivered + self._broadcast(
            "interest_update",
            recipients,
            "New interest in your category",
            f"{user.name} is interested in services like yours.",
        )

    # Bookings

    def send_booking_confirmation(self, booking: Booking, customer: User, provider: User,
                                  service: ServiceListing) -> int:
        delivered = int(self._dispatch(
            "booking_confirmed",
            customer.email,
            "Booking confirmed",
            f"Your booking for '{service.title}' is confirmed. Amount: {booking.amount}.",
        ))
        delivered += int(self._dispatch(
            "booking_received",
            provider.email,
            "New booking received",
            f"{customer.name} booked '{service.title}'.",
        ))
        return delivered

    def send_service_otp(self, booking: Booking, customer: User, code: str, ttl_seconds: int) -> bool:
        minutes = max(1, ttl_seconds // 60)
        return self._dispatch(
            "service_otp",
            customer.email,
            f"Your service start code: {code}",
            f"Share code {code} with your provider to start the service. "
            f"It expires in {minutes} minutes.",
        )

    def notify_service_started(self, booking: Booking, customer: User) -> bool:
        return self._dispatch(
            "service_started",
            customer.email,
            "Your service has started",
            f"Booking {booking.id} is now in progress.",
        )

    def send_payment_captured(self, booking: Booking, customer: User, provider: User) -> int:
        delivered = int(self._dispatch(
            "payment_captured",
            customer.email,
            "Payment completed",
            f"Your payment of {booking.amount} for booking {booking.id} was completed.",
        ))
        delivered += int(self._dispatch(
            "payment_captured",
            provider.email,
            "Service completed",
            f"Booking {booking.id} is complete; your payout is on its way.",
        ))
        return delivered

    def send_refund_issued(self, booking: Booking, customer: User, refund_amount: int,
                           cancellation_fee: int) -> bool:
        return self._dispatch(
            "refund_issued",
            customer.email,
            "Booking cancelled",
            f"Booking {booking.id} was cancelled. Refund: {refund_amount}, "
            f"cancellation fee: {cancellation_fee}.",
        )

    # Violations

    def notify_violation(self, provider: User, invoice: Invoice, action: str) -> bool:
        return self._dispatch(
            "violation",
            provider.email,
            "Payment violation recorded",
            f"Offense #{invoice.offense_number}: {invoice.total_due} due "
            f"(penalty {invoice.penalty_due}). Action: {action}.",
        )
