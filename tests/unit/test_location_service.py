"""
Unit tests for location updates and the stale-location sweep.
"""
from datetime import timedelta
from uuid import uuid4

import pytest

from marketplace.api.middleware.error_handler import BadRequestException, NotFoundException
from marketplace.lib.metrics import get_metrics_collector
from marketplace.services.location_service import LocationOutcome, LocationService


@pytest.fixture
def service(db_session, clock, sweep_gate):
    return LocationService(db_session, clock=clock, sweep_gate=sweep_gate)


@pytest.mark.unit
class TestUpdateLocation:

    def test_first_reading_is_stored(self, service, make_user, clock):
        user = make_user()

        result = service.update_location(user.id, 45.4642, 9.19, accuracy=12.5, provider="gps")

        assert result.outcome == LocationOutcome.UPDATED
        assert result.message == "Location updated"
        assert result.location["latitude"] == 45.4642
        assert result.location["longitude"] == 9.19
        assert result.location["accuracy"] == 12.5
        assert result.location["provider"] == "gps"
        assert result.location["recorded_at"] == clock.now.isoformat()
        assert result.location["is_stale"] is False

    def test_zero_coordinates_keep_previous(self, service, make_user):
        user = make_user()
        service.update_location(user.id, 45.4642, 9.19)

        result = service.update_location(user.id, 0, 0)

        assert result.outcome == LocationOutcome.ZERO_COORDINATES
        assert result.location["latitude"] == 45.4642

    def test_zero_coordinates_without_history(self, service, make_user):
        result = service.update_location(make_user().id, 0.0, 0.0)

        assert result.outcome == LocationOutcome.ZERO_COORDINATES
        assert result.location is None

    def test_small_move_is_skipped(self, service, make_user, clock):
        user = make_user()
        service.update_location(user.id, 45.0, 9.0)
        clock.advance(minutes=1)

        # ~11 m north
        result = service.update_location(user.id, 45.0001, 9.0)

        assert result.outcome == LocationOutcome.TOO_CLOSE
        assert result.location["latitude"] == 45.0

    def test_older_reading_is_ignored(self, service, make_user, clock):
        user = make_user()
        service.update_location(user.id, 45.0, 9.0)

        result = service.update_location(user.id, 46.0, 10.0, recorded_at=clock.now - timedelta(hours=1))

        assert result.outcome == LocationOutcome.STALE_TIMESTAMP
        assert result.location["latitude"] == 45.0

    def test_same_timestamp_is_not_newer(self, service, make_user, clock):
        user = make_user()
        service.update_location(user.id, 45.0, 9.0, recorded_at=clock.now)

        result = service.update_location(user.id, 46.0, 10.0, recorded_at=clock.now)

        assert result.outcome == LocationOutcome.STALE_TIMESTAMP

    def test_newer_reading_replaces(self, service, make_user, clock):
        user = make_user()
        service.update_location(user.id, 45.0, 9.0)
        clock.advance(minutes=5)

        result = service.update_location(user.id, 46.0, 10.0)

        assert result.outcome == LocationOutcome.UPDATED
        assert result.location["latitude"] == 46.0

    def test_naive_recorded_at_is_treated_as_utc(self, service, make_user, clock):
        user = make_user()
        naive = (clock.now - timedelta(minutes=1)).replace(tzinfo=None)

        result = service.update_location(user.id, 45.0, 9.0, recorded_at=naive)

        assert result.outcome == LocationOutcome.UPDATED

    def test_future_reading_rejected(self, service, make_user, clock):
        with pytest.raises(BadRequestException) as exc:
            service.update_location(make_user().id, 45.0, 9.0, recorded_at=clock.now + timedelta(minutes=6))
        assert exc.value.message == "recordedAt is in the future"

    def test_slightly_future_reading_allowed(self, service, make_user, clock):
        result = service.update_location(make_user().id, 45.0, 9.0, recorded_at=clock.now + timedelta(minutes=4))
        assert result.outcome == LocationOutcome.UPDATED

    def test_very_old_reading_rejected(self, service, make_user, clock):
        with pytest.raises(BadRequestException) as exc:
            service.update_location(make_user().id, 45.0, 9.0, recorded_at=clock.now - timedelta(days=8))
        assert exc.value.message == "recordedAt too old"

    @pytest.mark.parametrize("lat,lon", [(91.0, 0.0), (0.0, 181.0), (float("nan"), 1.0)])
    def test_invalid_coordinates(self, service, make_user, lat, lon):
        with pytest.raises(BadRequestException):
            service.update_location(make_user().id, lat, lon)

    def test_unknown_user(self, service):
        with pytest.raises(NotFoundException):
            service.update_location(uuid4(), 45.0, 9.0)

    def test_unknown_provider_label_still_updates(self, service, make_user):
        result = service.update_location(make_user().id, 45.0, 9.0, provider="satellite-phone")
        assert result.outcome == LocationOutcome.UPDATED

    def test_outcomes_are_counted(self, service, make_user):
        user = make_user()
        service.update_location(user.id, 45.0, 9.0)
        service.update_location(user.id, 0, 0)

        metrics = get_metrics_collector()
        assert metrics.get_counter_value("location_updates_total", {"outcome": "updated"}) == 1
        assert metrics.get_counter_value("location_updates_total", {"outcome": "zero_coordinates"}) == 1


@pytest.mark.unit
class TestStaleSweep:

    def _stale_user(self, make_user, clock, days=8):
        return make_user(
            loc_latitude=45.0,
            loc_longitude=9.0,
            loc_recorded_at=clock.now - timedelta(days=days),
        )

    def test_sweep_zeroes_old_locations(self, service, make_user, clock, db_session):
        stale = self._stale_user(make_user, clock)
        fresh = self._stale_user(make_user, clock, days=2)

        assert service.sweep_stale() == 1

        db_session.refresh(stale)
        db_session.refresh(fresh)
        assert stale.loc_is_stale is True
        assert (stale.loc_latitude, stale.loc_longitude) == (0.0, 0.0)
        assert stale.has_location is False
        assert fresh.has_location is True

    def test_sweep_is_idempotent(self, service, make_user, clock):
        self._stale_user(make_user, clock)

        assert service.sweep_stale() == 1
        assert service.sweep_stale() == 0

    def test_new_reading_after_sweep(self, service, make_user, clock):
        user = self._stale_user(make_user, clock)
        service.sweep_stale()

        result = service.update_location(user.id, 45.00001, 9.0)

        assert result.outcome == LocationOutcome.UPDATED
        assert result.location["is_stale"] is False

    def test_gate_limits_sweeps(self, service, make_user, clock):
        self._stale_user(make_user, clock)

        assert service.maybe_sweep_stale() == 1
        self._stale_user(make_user, clock)
        assert service.maybe_sweep_stale() is None

        clock.advance(hours=1)
        assert service.maybe_sweep_stale() == 1
