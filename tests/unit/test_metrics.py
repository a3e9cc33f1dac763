"""
Unit tests for metrics collection and Prometheus export.
"""

import pytest
from marketplace.lib.metrics import MetricsCollector, get_metrics_collector, reset_metrics


@pytest.fixture
def metrics():
    """Fresh metrics collector for each test."""
    return MetricsCollector()


@pytest.mark.unit
def test_metrics_collector_initialization(metrics):
    """Test metrics collector initializes with empty counters."""
    assert metrics.export_prometheus() == ""


@pytest.mark.unit
def test_increment_searches(metrics):
    metrics.increment_searches(entity="services", mode="keyword")
    metrics.increment_searches(entity="services", mode="keyword", amount=2)

    value = metrics.get_counter_value(
        "discovery_searches_total",
        {"entity": "services", "mode": "keyword"},
    )
    assert value == 3


@pytest.mark.unit
def test_search_labels_are_independent(metrics):
    """Test counters are separate for different label combinations."""
    metrics.increment_searches("services", "radius")
    metrics.increment_searches("users", "radius")
    metrics.increment_searches("services", "unconstrained")

    assert metrics.get_counter_value("discovery_searches_total", {"entity": "services", "mode": "radius"}) == 1
    assert metrics.get_counter_value("discovery_searches_total", {"entity": "users", "mode": "radius"}) == 1
    assert metrics.get_counter_value("discovery_searches_total", {"entity": "services", "mode": "unconstrained"}) == 1


@pytest.mark.unit
def test_increment_location_updates(metrics):
    metrics.increment_location_updates("updated")
    metrics.increment_location_updates("too_close")
    metrics.increment_location_updates("too_close")

    assert metrics.get_counter_value("location_updates_total", {"outcome": "too_close"}) == 2


@pytest.mark.unit
def test_increment_booking_transitions(metrics):
    metrics.increment_booking_transitions("booked")
    metrics.increment_booking_transitions("cancelled")

    assert metrics.get_counter_value("booking_transitions_total", {"status": "booked"}) == 1
    assert metrics.get_counter_value("booking_transitions_total", {"status": "cancelled"}) == 1


@pytest.mark.unit
def test_gateway_errors_and_violations(metrics):
    metrics.increment_gateway_errors("capture_payment_intent")
    metrics.increment_violations("suspend", amount=4)

    assert metrics.get_counter_value("gateway_errors_total", {"operation": "capture_payment_intent"}) == 1
    assert metrics.get_counter_value("violations_total", {"action": "suspend"}) == 4


@pytest.mark.unit
def test_export_prometheus_format(metrics):
    """Test Prometheus text format output."""
    metrics.increment_booking_transitions("booked", amount=3)

    output = metrics.export_prometheus()

    assert "# HELP booking_transitions_total Total number of booking status transitions" in output
    assert "# TYPE booking_transitions_total counter" in output
    assert 'booking_transitions_total{status="booked"} 3' in output


@pytest.mark.unit
def test_export_prometheus_multiple_metrics(metrics):
    metrics.increment_searches("services", "keyword", amount=5)
    metrics.increment_location_updates("updated", amount=4)
    metrics.increment_gateway_errors("create_refund")
    metrics.increment_violations("warn", amount=2)

    output = metrics.export_prometheus()

    assert "discovery_searches_total" in output
    assert "location_updates_total" in output
    assert "gateway_errors_total" in output
    assert "violations_total" in output
    assert "booking_transitions_total" not in output
    # Metric blocks are emitted in name order
    assert output.index("discovery_searches_total") < output.index("violations_total")


@pytest.mark.unit
def test_export_prometheus_labels_sorted(metrics):
    """Test Prometheus export sorts labels alphabetically."""
    metrics.increment_searches("users", "radius")

    assert 'discovery_searches_total{entity="users",mode="radius"} 1' in metrics.export_prometheus()


@pytest.mark.unit
def test_reset_all_clears_counters(metrics):
    metrics.increment_violations("warn", amount=100)
    assert metrics.get_counter_value("violations_total", {"action": "warn"}) == 100

    metrics.reset_all()

    assert metrics.get_counter_value("violations_total", {"action": "warn"}) == 0
    assert metrics.export_prometheus() == ""


@pytest.mark.unit
def test_get_metrics_collector_singleton():
    """Test get_metrics_collector returns singleton instance."""
    collector1 = get_metrics_collector()
    collector2 = get_metrics_collector()

    assert collector1 is collector2

    collector1.increment_location_updates("updated")
    assert collector2.get_counter_value("location_updates_total", {"outcome": "updated"}) == 1


@pytest.mark.unit
def test_reset_metrics_clears_singleton():
    collector = get_metrics_collector()
    collector.increment_location_updates("updated", amount=100)

    reset_metrics()

    assert get_metrics_collector().get_counter_value("location_updates_total", {"outcome": "updated"}) == 0


@pytest.mark.unit
def test_case_normalization(metrics):
    """Label values are lowercased for consistency."""
    metrics.increment_searches("Services", "KEYWORD")
    metrics.increment_booking_transitions("BOOKED")

    assert metrics.get_counter_value("discovery_searches_total", {"entity": "services", "mode": "keyword"}) == 1
    assert metrics.get_counter_value("booking_transitions_total", {"status": "booked"}) == 1


@pytest.mark.unit
def test_nonexistent_counter_returns_zero(metrics):
    assert metrics.get_counter_value("violations_total", {"action": "nonexistent"}) == 0
