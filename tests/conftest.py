"""
Shared fixtures: an in-memory SQLite database, a sandbox payment gateway,
a recording notification provider and a controllable clock.
"""
import os

# Must be set before marketplace.lib.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("PAYMENT_PROVIDER", "sandbox")
os.environ.setdefault("NOTIFICATION_PROVIDER", "console")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import date, datetime, timedelta, timezone
from typing import List
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from marketplace.api import dependencies
from marketplace.api.app import app
from marketplace.lib import db as db_module
from marketplace.lib.cooldown import CooldownGate
from marketplace.lib.metrics import reset_metrics
from marketplace.models import Category, ServiceListing, ServiceType, User, UserStatus
from marketplace.services import location_service
from marketplace.services.notification_service import NotificationProvider, NotificationService
from marketplace.services.payment_gateway import SandboxPaymentGateway


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingProvider(NotificationProvider):
    """Keeps every message instead of delivering it."""

    def __init__(self):
        self.sent: List[dict] = []

    @property
    def channel(self) -> str:
        return "recording"

    def send(self, to, subject, message, **kwargs) -> bool:
        self.sent.append({"to": to, "subject": subject, "message": message, "event": kwargs.get("event")})
        return True

    def events(self, event: str) -> List[dict]:
        return [m for m in self.sent if m["event"] == event]


@pytest.fixture(scope="session", autouse=True)
def _schema():
    db_module.init_db()
    yield
    db_module.drop_db()


@pytest.fixture(autouse=True)
def _clean_state():
    """Empty every table and reset process-wide singletons between tests."""
    yield
    with db_module.engine.begin() as conn:
        for table in reversed(db_module.Base.metadata.sorted_tables):
            conn.execute(table.delete())
    reset_metrics()
    location_service._sweep_gate = None
    dependencies._notification_service = None


@pytest.fixture
def db_session():
    session = db_module.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def gateway():
    return SandboxPaymentGateway()


@pytest.fixture
def recorder():
    return RecordingProvider()


@pytest.fixture
def notifier(recorder, clock):
    return NotificationService(provider=recorder, clock=clock)


@pytest.fixture
def sweep_gate(clock):
    return CooldownGate(timedelta(hours=1), clock=clock)


@pytest.fixture
def client(gateway, notifier, clock):
    app.dependency_overrides[dependencies.get_payment_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_notification_service] = lambda: notifier
    app.dependency_overrides[dependencies.get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    def _make(**overrides) -> User:
        values = {
            "name": "User",
            "email": f"user-{uuid4().hex[:10]}@example.com",
            "status": UserStatus.ACTIVE,
            "is_active": True,
            "interests": [],
            "offered_tags": [],
        }
        values.update(overrides)
        user = User(**values)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make


@pytest.fixture
def make_provider(make_user):
    def _make(**overrides) -> User:
        values = {"name": "Provider", "gateway_account_id": f"acct_{uuid4().hex[:12]}"}
        values.update(overrides)
        return make_user(**values)
    return _make


@pytest.fixture
def category(db_session):
    cat = Category(name="Fitness", tags=["Yoga", "Running", "Pilates"])
    db_session.add(cat)
    db_session.commit()
    db_session.refresh(cat)
    return cat


@pytest.fixture
def make_listing(db_session, category):
    def _make(owner: User, **overrides) -> ServiceListing:
        values = {
            "owner_id": owner.id,
            "category_id": category.id,
            "title": "Morning yoga",
            "description": "Outdoor session",
            "tags": ["Yoga"],
            "is_free": False,
            "price": 25,
            "currency": "inr",
            "location_name": "Park",
            "latitude": 45.4642,
            "longitude": 9.19,
            "service_type": ServiceType.ONE_TIME,
            "date": date(2025, 6, 10),
            "start_time": "09:00",
            "end_time": "10:00",
            "recurring_slots": [],
        }
        values.update(overrides)
        listing = ServiceListing(**values)
        db_session.add(listing)
        db_session.commit()
        db_session.refresh(listing)
        return listing
    return _make
