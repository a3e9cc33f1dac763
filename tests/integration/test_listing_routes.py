"""
Integration tests for listing create/read/update/delete and admin deletion approval.
"""
from datetime import timedelta
from uuid import uuid4

import pytest

from marketplace.models import User

pytestmark = pytest.mark.integration


@pytest.fixture
def owner(make_provider):
    return make_provider(name="Owner", email="owner@example.com")


@pytest.fixture
def body(owner, category):
    return {
        "owner_id": str(owner.id),
        "title": "Sunset yoga",
        "category_id": str(category.id),
        "tags": ["yoga"],
        "location": {"name": "Sempione", "latitude": 45.4725, "longitude": 9.1766},
        "service_type": "one_time",
        "date": "2025-06-20",
        "start_time": "19:00",
        "end_time": "20:30",
        "price": 15,
    }


def test_create_and_fetch(client, body, make_user, recorder):
    fan = make_user(name="Fan", email="fan@example.com", interests=["Yoga"])

    created = client.post("/listings", json=body)

    assert created.status_code == 201
    data = created.json()["data"]
    assert data["tags"] == ["Yoga"]
    assert data["location"] == {"name": "Sempione", "latitude": 45.4725, "longitude": 9.1766}
    assert data["date"] == "2025-06-20"
    assert [m["to"] for m in recorder.events("new_service")] == ["fan@example.com"]

    fetched = client.get(f"/listings/{data['id']}", params={"viewer_id": str(fan.id)})
    assert fetched.status_code == 200
    assert fetched.json()["data"]["title"] == "Sunset yoga"
    assert [m["to"] for m in recorder.events("service_viewed")] == ["owner@example.com"]


def test_create_rejects_bad_payloads(client, body):
    bad_coords = dict(body, location={"name": "Nowhere", "latitude": 95, "longitude": 0})
    bad_time = dict(body, start_time="25:00")
    no_tags = dict(body, tags=["Knitting"])

    assert client.post("/listings", json=bad_coords).status_code == 400
    assert client.post("/listings", json=bad_time).status_code == 400
    response = client.post("/listings", json=no_tags)
    assert response.status_code == 400
    assert response.json()["details"]["rejected_tags"] == ["Knitting"]


def test_recurring_listing(client, body):
    recurring = dict(body, service_type="recurring", date=None, recurring_slots=["monday", {"day": "Fri"}])

    response = client.post("/listings", json=recurring)

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["service_type"] == "recurring"
    assert data["date"] is None
    assert len(data["recurring_slots"]) == 2


def test_restricted_owner_gets_restricted_until(client, body, owner, db_session, clock):
    provider = db_session.get(User, owner.id)
    provider.total_bookings = 3
    provider.performance_points = 40
    db_session.commit()

    response = client.post("/listings", json=body)

    assert response.status_code == 400
    until = response.json()["details"]["restricted_until"]
    assert until.startswith((clock() + timedelta(hours=24)).date().isoformat())


def test_update_listing(client, body, owner):
    listing_id = client.post("/listings", json=body).json()["data"]["id"]

    response = client.put(f"/listings/{listing_id}", json={"owner_id": str(owner.id), "price": 20.5})

    assert response.status_code == 200
    assert response.json()["data"]["price"] == 20.5
    assert response.json()["data"]["title"] == "Sunset yoga"

    stranger = client.put(f"/listings/{listing_id}", json={"owner_id": str(uuid4()), "price": 1})
    assert stranger.status_code == 403


def test_delete_without_bookings(client, body, owner):
    listing_id = client.post("/listings", json=body).json()["data"]["id"]

    response = client.delete(f"/listings/{listing_id}", params={"owner_id": str(owner.id)})

    assert response.json()["data"]["outcome"] == "deleted"
    assert client.get(f"/listings/{listing_id}").status_code == 404


def test_delete_with_bookings_needs_approval(client, owner, make_user, make_listing):
    listing = make_listing(owner)
    customer = make_user()
    client.post("/bookings", json={
        "customer_id": str(customer.id),
        "provider_id": str(owner.id),
        "service_id": str(listing.id),
        "amount": 25,
    })

    requested = client.delete(f"/listings/{listing.id}", params={"owner_id": str(owner.id)})
    assert requested.json()["data"]["outcome"] == "delete_requested"
    assert requested.json()["message"] == "Deletion requested; awaiting admin approval"

    approved = client.post(f"/admin/listings/{listing.id}/approve-deletion")
    assert approved.status_code == 200
    assert approved.json()["data"]["delete_approved"] is True

    search = client.post("/search/services", json={}).json()["data"]
    assert search["total"] == 0


def test_approve_without_request_conflicts(client, owner, make_listing):
    listing = make_listing(owner)

    assert client.post(f"/admin/listings/{listing.id}/approve-deletion").status_code == 409
