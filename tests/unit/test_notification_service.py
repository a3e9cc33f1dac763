"""
Unit tests for NotificationService and its providers.
"""
import smtplib
from types import SimpleNamespace
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from marketplace.lib.settings import settings
from marketplace.services.notification_service import (
    ConsoleNotificationProvider,
    EmailNotificationProvider,
    NotificationService,
    get_notification_provider,
)


def _user(name="Ada", email="ada@example.com", **kw):
    return SimpleNamespace(id=kw.pop("id", uuid4()), name=name, email=email, interests=kw.pop("interests", []), **kw)


@pytest.fixture
def smtp_settings(monkeypatch):
    monkeypatch.setattr(settings, "smtp_username", "bot@example.com")
    monkeypatch.setattr(settings, "smtp_password", "secret")
    monkeypatch.setattr(settings, "smtp_port", 587)


@pytest.mark.unit
def test_console_provider(capsys):
    provider = ConsoleNotificationProvider()

    assert provider.channel == "console"
    assert provider.send("ada@example.com", "Hello", "Body") is True
    assert "Notification to ada@example.com: Hello" in capsys.readouterr().out


@pytest.mark.unit
def test_email_provider_requires_credentials(monkeypatch):
    monkeypatch.setattr(settings, "smtp_username", "")
    with pytest.raises(ValueError):
        EmailNotificationProvider()


@pytest.mark.unit
def test_email_provider_sends_with_starttls(smtp_settings):
    provider = EmailNotificationProvider()

    with patch("marketplace.services.notification_service.smtplib.SMTP") as smtp:
        server = smtp.return_value.__enter__.return_value
        assert provider.send("ada@example.com", "Booking confirmed", "See you soon") is True

    server.starttls.assert_called_once()
    server.login.assert_called_once_with("bot@example.com", "secret")
    msg = server.send_message.call_args.args[0]
    assert msg["To"] == "ada@example.com"
    assert msg["Subject"] == "Booking confirmed"


@pytest.mark.unit
def test_email_provider_retries_then_gives_up(smtp_settings, monkeypatch):
    monkeypatch.setattr("time.sleep", lambda seconds: None)
    provider = EmailNotificationProvider()

    with patch("marketplace.services.notification_service.smtplib.SMTP") as smtp:
        smtp.return_value.__enter__.return_value.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")
        assert provider.send("ada@example.com", "Subject", "Body") is False

    assert smtp.call_count == 3


@pytest.mark.unit
def test_provider_selection(monkeypatch, smtp_settings):
    monkeypatch.setattr(settings, "notification_provider", "console")
    assert isinstance(get_notification_provider(), ConsoleNotificationProvider)

    monkeypatch.setattr(settings, "notification_provider", "email")
    assert isinstance(get_notification_provider(), EmailNotificationProvider)

    monkeypatch.setattr(settings, "smtp_password", "")
    assert isinstance(get_notification_provider(), ConsoleNotificationProvider)

    monkeypatch.setattr(settings, "notification_provider", "pigeon")
    with pytest.raises(ValueError):
        get_notification_provider()


@pytest.mark.unit
class TestNotificationService:

    def test_missing_address_is_skipped(self, notifier, recorder):
        assert notifier.notify_service_started(SimpleNamespace(id=uuid4()), _user(email=None)) is False
        assert recorder.sent == []

    def test_provider_errors_are_swallowed(self, clock):
        provider = MagicMock()
        provider.send.side_effect = RuntimeError("smtp down")
        service = NotificationService(provider=provider, clock=clock)

        assert service.notify_service_started(SimpleNamespace(id=uuid4()), _user()) is False

    def test_broadcast_counts_deliveries(self, notifier, recorder):
        listing = SimpleNamespace(id=uuid4(), title="Trail run", location_name="Monza")
        recipients = [_user(email="a@example.com"), _user(email=None), _user(email="c@example.com")]

        assert notifier.notify_new_service(listing, recipients) == 2
        assert [m["to"] for m in recorder.events("new_service")] == ["a@example.com", "c@example.com"]

    def test_service_otp_mentions_code_and_expiry(self, notifier, recorder):
        notifier.send_service_otp(SimpleNamespace(id=uuid4()), _user(), "0420", 600)

        sent = recorder.events("service_otp")[0]
        assert "0420" in sent["subject"]
        assert "10 minutes" in sent["message"]

    def test_violation_notice(self, notifier, recorder):
        invoice = SimpleNamespace(offense_number=2, total_due="240.00", penalty_due="40.00")

        notifier.notify_violation(_user(), invoice, "temporary_block")

        sent = recorder.events("violation")[0]
        assert "Offense #2" in sent["message"]
        assert "temporary_block" in sent["message"]

    def test_interest_update_confirms_and_broadcasts(self, notifier, recorder):
        user = _user(interests=["Yoga", "Running"])

        delivered = notifier.notify_interest_update(user, [_user(email="coach@example.com")])

        assert delivered == 2
        assert "Yoga, Running" in recorder.sent[0]["message"]

    def test_view_dedup_per_viewer_and_listing(self, notifier, recorder, clock):
        owner, viewer, other = _user(email="owner@example.com"), _user(), _user(email="bo@example.com")
        listing = SimpleNamespace(id=uuid4(), title="Yoga")

        assert notifier.notify_service_viewed(viewer, listing, owner) is True
        assert notifier.notify_service_viewed(viewer, listing, owner) is False
        assert notifier.notify_service_viewed(other, listing, owner) is True
        assert notifier.notify_service_viewed(owner, listing, owner) is False

        clock.advance(seconds=settings.service_view_dedup_seconds)
        assert notifier.notify_service_viewed(viewer, listing, owner) is True
