"""
Prometheus-compatible metrics for observability.

Tracks key marketplace indicators:
- Discovery searches (by entity and mode)
- Location updates (by outcome)
- Booking transitions (by target status)
- Payment gateway errors (by operation)
- Violations (by action)

Usage:
    from marketplace.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_searches(entity="services", mode="keyword")
    metrics.increment_booking_transitions(status="booked")

    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Optional, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style metrics collector.

    Counters:
    - discovery_searches_total: labels entity, mode
    - location_updates_total: labels outcome
    - booking_transitions_total: labels status
    - gateway_errors_total: labels operation
    - violations_total: labels action

    Thread-safe for concurrent increments.
    """

    HELP_TEXTS = {
        "discovery_searches_total": "Total number of discovery searches",
        "location_updates_total": "Total number of location update requests",
        "booking_transitions_total": "Total number of booking status transitions",
        "gateway_errors_total": "Total number of failed payment gateway calls",
        "violations_total": "Total number of provider violations flagged",
    }

    def __init__(self):
        self._lock = Lock()

        # Counters: key = (metric_name, labels_tuple), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        sorted_labels = tuple(sorted(labels.items()))
        return (metric_name, sorted_labels)

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        """Thread-safe increment of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def _get_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Get current value of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def increment_searches(self, entity: str, mode: str, amount: int = 1):
        self._increment(
            "discovery_searches_total",
            {"entity": entity.lower(), "mode": mode.lower()},
            amount,
        )

    def increment_location_updates(self, outcome: str, amount: int = 1):
        self._increment("location_updates_total", {"outcome": outcome.lower()}, amount)

    def increment_booking_transitions(self, status: str, amount: int = 1):
        self._increment("booking_transitions_total", {"status": status.lower()}, amount)

    def increment_gateway_errors(self, operation: str, amount: int = 1):
        self._increment("gateway_errors_total", {"operation": operation.lower()}, amount)

    def increment_violations(self, action: str, amount: int = 1):
        self._increment("violations_total", {"action": action.lower()}, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            Prometheus-compatible text output
        """
        output_lines = []

        # Group counters by metric name
        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            help_text = self.HELP_TEXTS.get(metric_name, "Counter metric")
            output_lines.append(f"# HELP {metric_name} {help_text}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                output_lines.append(f"{metric_name}{{{labels_str}}} {value}")

            output_lines.append("")  # Blank line between metrics

        return "\n".join(output_lines)

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Get current value of a specific counter."""
        return self._get_value(metric_name, labels)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: Optional[MetricsCollector] = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
