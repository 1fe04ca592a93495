"""
Shared metrics configuration for the business licence map services.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class MetricsCollector:
    """Per-service metrics collector backed by its own registry."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up the metrics every service exposes."""

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Cache metrics
        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Cache lookups by operation and result",
            ["operation", "result"],
            registry=self.registry
        )

        self._metrics["cache_durable_backend"] = Gauge(
            "cache_durable_backend",
            "1 when the shared durable cache backend is active",
            registry=self.registry
        )

        # Upstream metrics
        self._metrics["upstream_requests_total"] = Counter(
            "upstream_requests_total",
            "Upstream data source requests by operation and outcome",
            ["source", "operation", "outcome"],
            registry=self.registry
        )

        self._metrics["rate_limit_rejections_total"] = Counter(
            "rate_limit_rejections_total",
            "Requests rejected by the public rate limiter",
            ["endpoint"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_cache_lookup(self, operation: str, hit: bool):
        self._metrics["cache_lookups_total"].labels(
            operation=operation,
            result="hit" if hit else "miss"
        ).inc()

    def record_upstream_request(self, source: str, operation: str, outcome: str):
        self._metrics["upstream_requests_total"].labels(
            source=source,
            operation=operation,
            outcome=outcome
        ).inc()

    def set_cache_backend(self, durable: bool):
        self._metrics["cache_durable_backend"].set(1 if durable else 0)

    def record_rate_limit_rejection(self, endpoint: str):
        self._metrics["rate_limit_rejections_total"].labels(endpoint=endpoint).inc()

    def render(self) -> bytes:
        """Render the registry in Prometheus text exposition format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
