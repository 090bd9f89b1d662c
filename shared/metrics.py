"""
Shared metrics configuration for the JWT proxy sidecar.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest
from typing import Dict, Any, Optional
import threading


class MetricsCollector:
    """Centralized metrics collector for the proxy.

    Every collector owns its registry so that several services (or test
    apps) can coexist in one process without duplicate series errors.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()
        self._setup_proxy_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type"],
            registry=self.registry
        )

    def _setup_proxy_metrics(self):
        """Set up authentication and forwarding metrics."""
        self._metrics["auth_attempts_total"] = Counter(
            "auth_attempts_total",
            "Total authentication attempts",
            ["method", "outcome"],
            registry=self.registry
        )

        self._metrics["jwks_cache_lookups_total"] = Counter(
            "jwks_cache_lookups_total",
            "Signing key cache lookups",
            ["result"],
            registry=self.registry
        )

        self._metrics["upstream_errors_total"] = Counter(
            "upstream_errors_total",
            "Failed forwards to the upstream service",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, status_code: int, duration: float):
        """Record an inbound HTTP request."""
        # Path is not a label; a catch-all proxy would explode cardinality
        self._metrics["http_requests_total"].labels(
            method=method,
            status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method).observe(duration)

    def record_error(self, error_type: str):
        """Record an error by type."""
        self._metrics["errors_total"].labels(error_type=error_type).inc()

    def record_auth_attempt(self, method: str, outcome: str):
        """Record an authentication attempt (method: secret|jwt|none)."""
        self._metrics["auth_attempts_total"].labels(method=method, outcome=outcome).inc()

    def record_cache_lookup(self, hit: bool):
        """Record a signing key cache lookup."""
        self._metrics["jwks_cache_lookups_total"].labels(result="hit" if hit else "miss").inc()

    def record_upstream_error(self):
        self._metrics["upstream_errors_total"].inc()

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        with self._lock:
            return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get metrics collector for a service."""
    return MetricsCollector(service_name, registry)
