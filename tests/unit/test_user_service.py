"""
Unit tests for interest / offered tag management.
"""
from uuid import uuid4

import pytest

from marketplace.api.middleware.error_handler import BadRequestException, NotFoundException
from marketplace.models import category_members
from marketplace.services.user_service import UserService, normalize_tags


@pytest.fixture
def service(db_session, notifier):
    return UserService(db_session, notifier)


def _is_member(db_session, category, user):
    row = db_session.execute(
        category_members.select()
        .where(category_members.c.category_id == category.id)
        .where(category_members.c.user_id == user.id)
    ).first()
    return row is not None


@pytest.mark.unit
def test_normalize_tags():
    assert normalize_tags(" yoga, running ,,") == ["yoga", "running"]
    assert normalize_tags(["Yoga", " "]) == ["Yoga"]
    assert normalize_tags(None) == []


@pytest.mark.unit
class TestUpdateTags:

    def test_add_interests_uses_category_casing(self, service, make_user, category, db_session):
        user = make_user()

        result = service.update_tags(user.id, "interest", "yoga, chess", category_id=category.id)

        assert result["field"] == "interests"
        assert result["tags"] == ["Yoga"]
        assert result["accepted_tags"] == ["Yoga"]
        assert result["rejected_tags"] == ["chess"]
        assert _is_member(db_session, category, user)

    def test_add_is_idempotent(self, service, make_user, category):
        user = make_user(interests=["Yoga"])

        result = service.update_tags(user.id, "interest", ["YOGA", "Running"], category_id=category.id)

        assert result["tags"] == ["Yoga", "Running"]

    def test_remove_offers(self, service, make_provider, category, db_session):
        provider = make_provider(offered_tags=["Yoga", "Pilates"])
        service.update_tags(provider.id, "offer", ["Running"], category_id=category.id)

        result = service.update_tags(provider.id, "offer", ["pilates", "running"], action="remove",
                                     category_id=category.id)

        assert result["field"] == "offered_tags"
        assert result["tags"] == ["Yoga"]
        assert not _is_member(db_session, category, provider)

    def test_interest_notifies_matching_providers(self, service, make_user, make_provider, category, recorder):
        user = make_user()
        make_provider(offered_tags=["Yoga"])
        make_provider(offered_tags=["Running"])

        service.update_tags(user.id, "interest", ["Yoga"], category_id=category.id)

        # confirmation to the user plus one matching provider
        assert len(recorder.events("interest_update")) == 2

    def test_offer_update_sends_nothing(self, service, make_provider, category, recorder):
        service.update_tags(make_provider().id, "offer", ["Yoga"], category_id=category.id)
        assert recorder.sent == []

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"tag_type": "skill", "tags": ["Yoga"]},
            {"tag_type": "interest", "tags": []},
            {"tag_type": "interest", "tags": ["Yoga"], "action": "toggle"},
            {"tag_type": "interest", "tags": ["Chess"]},
        ],
    )
    def test_bad_requests(self, service, make_user, category, kwargs):
        with pytest.raises(BadRequestException):
            service.update_tags(make_user().id, category_id=category.id, **kwargs)

    def test_category_required(self, service, make_user):
        with pytest.raises(BadRequestException):
            service.update_tags(make_user().id, "interest", ["Yoga"])
        with pytest.raises(NotFoundException):
            service.update_tags(make_user().id, "interest", ["Yoga"], category_id=uuid4())

    def test_unknown_user(self, service, category):
        with pytest.raises(NotFoundException):
            service.update_tags(uuid4(), "interest", ["Yoga"], category_id=category.id)
