"""
Integration tests for /metrics endpoint and metrics collection.
"""

import pytest
from httpx import AsyncClient, ASGITransport

from marketplace.api.app import app
from marketplace.lib.metrics import get_metrics_collector


@pytest.mark.integration
@pytest.mark.asyncio
async def test_metrics_endpoint_returns_prometheus_format():
    """Test /metrics endpoint returns Prometheus text format."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/plain; version=0.0.4; charset=utf-8"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_metrics_endpoint_empty_when_no_metrics():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.text == ""


@pytest.mark.integration
@pytest.mark.asyncio
async def test_metrics_endpoint_exports_after_activity():
    metrics = get_metrics_collector()
    metrics.increment_searches("services", "keyword", amount=5)
    metrics.increment_booking_transitions("booked", amount=3)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert 'discovery_searches_total{entity="services",mode="keyword"} 5' in response.text
    assert 'booking_transitions_total{status="booked"} 3' in response.text


@pytest.mark.integration
def test_search_requests_are_counted(client):
    client.post("/search/services", json={"keyword": "yoga"})
    client.post("/search/users", json={})

    output = client.get("/metrics").text

    assert 'discovery_searches_total{entity="services",mode="keyword"} 1' in output
    assert 'discovery_searches_total{entity="users",mode="unconstrained"} 1' in output
