"""
Unit tests for the commission and cancellation policy store.
"""
from uuid import uuid4

import pytest

from marketplace.api.middleware.error_handler import BadRequestException
from marketplace.lib.settings import settings
from marketplace.services.policy_service import CancellationPolicy, PolicyService


@pytest.mark.unit
def test_commission_defaults_to_settings(db_session):
    assert PolicyService.get_commission_percentage(db_session) == settings.default_commission_percentage


@pytest.mark.unit
def test_update_commission(db_session):
    admin = uuid4()

    row = PolicyService.update_commission(db_session, 12.5, admin_id=admin)
    assert row.updated_by == admin
    assert PolicyService.get_commission_percentage(db_session) == 12.5

    PolicyService.update_commission(db_session, 15)
    assert PolicyService.get_commission_percentage(db_session) == 15


@pytest.mark.unit
@pytest.mark.parametrize("value", [-1, 100.01, "lots", None])
def test_commission_bounds(db_session, value):
    with pytest.raises(BadRequestException):
        PolicyService.update_commission(db_session, value)


@pytest.mark.unit
def test_commission_edges_allowed(db_session):
    PolicyService.update_commission(db_session, 0)
    assert PolicyService.get_commission_percentage(db_session) == 0
    PolicyService.update_commission(db_session, 100)
    assert PolicyService.get_commission_percentage(db_session) == 100


@pytest.mark.unit
def test_cancellation_disabled_by_default(db_session):
    policy = PolicyService.get_cancellation_policy(db_session)

    assert policy == CancellationPolicy(enabled=False, percentage=0.0)
    assert policy.effective_percentage == 0.0


@pytest.mark.unit
def test_enable_cancellation_fee(db_session):
    PolicyService.update_cancellation_policy(db_session, True, 30)

    policy = PolicyService.get_cancellation_policy(db_session)
    assert policy.enabled is True
    assert policy.effective_percentage == 30


@pytest.mark.unit
def test_disabling_forces_zero(db_session):
    PolicyService.update_cancellation_policy(db_session, True, 30)

    policy = PolicyService.update_cancellation_policy(db_session, False, 50)

    assert policy.percentage == 0.0
    assert PolicyService.get_cancellation_policy(db_session).percentage == 0.0


@pytest.mark.unit
def test_enabling_requires_percentage(db_session):
    with pytest.raises(BadRequestException):
        PolicyService.update_cancellation_policy(db_session, True)
    with pytest.raises(BadRequestException):
        PolicyService.update_cancellation_policy(db_session, True, 101)
