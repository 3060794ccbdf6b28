"""
Shared metrics configuration for the network gateway.
"""

from typing import Dict, Any, Optional
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry


class MetricsCollector:
    """Centralized metrics collector for gateway components.

    Each collector owns its registry unless one is passed in, so several
    gateways (or tests) can coexist without duplicate-series errors.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up gateway metrics."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["gateway_calls_total"] = Counter(
            "gateway_calls_total",
            "Total gateway calls",
            ["operation", "outcome"],
            registry=self.registry
        )

        self._metrics["gateway_failures_total"] = Counter(
            "gateway_failures_total",
            "Total classified failures",
            ["kind", "retryable"],
            registry=self.registry
        )

        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Total cache lookups",
            ["result"],
            registry=self.registry
        )

        self._metrics["cache_removals_total"] = Counter(
            "cache_removals_total",
            "Total cache entries removed other than by explicit remove/clear",
            ["reason"],
            registry=self.registry
        )

        self._metrics["cache_size"] = Gauge(
            "cache_size",
            "Current number of cache entries",
            registry=self.registry
        )

        self._metrics["batch_flush_size"] = Histogram(
            "batch_flush_size",
            "Number of operations dispatched per scheduler flush",
            buckets=(1, 2, 5, 10, 25, 50, 100, 250),
            registry=self.registry
        )

        self._metrics["transport_duration_seconds"] = Histogram(
            "transport_duration_seconds",
            "Transport call duration in seconds",
            ["method"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_failure(self, kind: str, retryable: bool):
        """Record a classified failure."""
        self.increment_counter("gateway_failures_total", kind=kind, retryable=str(retryable).lower())

    def sample_value(self, name: str, **labels) -> Optional[float]:
        """Read the current value of a sample from the registry."""
        return self.registry.get_sample_value(name, labels or None)

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.observe_histogram(operation_name, time.perf_counter() - start_time, **labels)

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            (metric.labels(**labels) if labels else metric).inc(amount)

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            (metric.labels(**labels) if labels else metric).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

