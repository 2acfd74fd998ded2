"""
Shared metrics configuration for the self-hosted cache gateway.

Each gateway session owns its own ``CollectorRegistry`` so concurrent
sessions in one process never collide on metric names.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry
from typing import Dict, Any, Optional
import time
from contextlib import contextmanager


class MetricsCollector:
    """Centralized metrics collector for one gateway session."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up gateway metrics."""

        # HTTP metrics
        self._metrics["requests_total"] = Counter(
            "cache_gateway_requests_total",
            "Total cache requests",
            ["route", "status_code"],
            registry=self.registry
        )

        self._metrics["backend_duration_seconds"] = Histogram(
            "cache_gateway_backend_duration_seconds",
            "Cache handler call duration in seconds",
            ["operation"],
            registry=self.registry
        )

        # Auth metrics
        self._metrics["auth_failures_total"] = Counter(
            "cache_gateway_auth_failures_total",
            "Total rejected requests",
            ["reason"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["backend_errors_total"] = Counter(
            "cache_gateway_backend_errors_total",
            "Total cache handler failures",
            ["operation", "code"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def get_sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read a sample from this collector's registry."""
        return self.registry.get_sample_value(name, labels or {})

    def record_http_request(self, route: str, status_code: int):
        """Record a served cache request."""
        self._metrics["requests_total"].labels(
            route=route,
            status_code=str(status_code)
        ).inc()

    def record_auth_failure(self, reason: str):
        """Record a request rejected by the auth gate."""
        self._metrics["auth_failures_total"].labels(reason=reason).inc()

    def record_backend_error(self, operation: str, code: str):
        """Record a failed handler call."""
        self._metrics["backend_errors_total"].labels(operation=operation, code=code).inc()

    @contextmanager
    def time_operation(self, operation: str):
        """Context manager to time a handler call."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            self._metrics["backend_duration_seconds"].labels(operation=operation).observe(duration)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a session."""
    return MetricsCollector(service_name, registry)
