"""
askstream - Prometheus Metrics

Metrics collection with the Prometheus client library.

Metrics exposed:
- askstream_requests_total: Counter of HTTP requests by endpoint, method, status
- askstream_request_duration_seconds: Histogram of HTTP request latency
- askstream_sessions_total: Counter of ask sessions by strategy and outcome
- askstream_session_duration_seconds: Histogram of session wall-clock time
- askstream_retry_attempts_total: Counter of cold-start retries
- askstream_fallbacks_total: Counter of silent-success fallbacks
- askstream_parser_warnings_total: Counter of recoverable parser issues
- askstream_tool_confirmations_total: Counter of tool confirmation resolutions
- askstream_active_sessions: Gauge of sessions currently streaming

Usage:
    from askstream.observability.metrics import get_metrics, setup_metrics, metrics_endpoint

    # Setup at startup
    setup_metrics()

    # Record metrics
    metrics = get_metrics()
    metrics.record_session(strategy="hosted", outcome="completed", duration_seconds=1.5)

    # Expose /metrics endpoint
    @app.get("/metrics")
    async def metrics():
        return metrics_endpoint()
"""

from typing import Optional

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)
from fastapi import Response

from .. import __version__


class MetricsCollector:
    """
    Central metrics collector using Prometheus client.

    Singleton pattern for global access.
    """

    _instance: Optional["MetricsCollector"] = None
    _initialized_registries: set = set()

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        """Initialize metrics collectors."""
        self.registry = registry

        # Check if this registry was already initialized
        registry_id = id(registry)
        if registry_id in MetricsCollector._initialized_registries:
            # Reuse existing metrics from singleton
            if MetricsCollector._instance is not None:
                self._copy_from(MetricsCollector._instance)
                return

        MetricsCollector._initialized_registries.add(registry_id)

        # Service info
        self.info = Info(
            "askstream",
            "askstream service information",
            registry=registry,
        )
        self.info.info({
            "version": __version__,
            "service": "askstream-gateway",
        })

        self.requests_total = Counter(
            "askstream_requests_total",
            "Total number of HTTP requests",
            labelnames=["endpoint", "method", "status"],
            registry=registry,
        )

        self.request_duration = Histogram(
            "askstream_request_duration_seconds",
            "HTTP request duration in seconds",
            labelnames=["endpoint", "method"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf")),
            registry=registry,
        )

        self.sessions_total = Counter(
            "askstream_sessions_total",
            "Total ask sessions by terminal state",
            labelnames=["strategy", "outcome"],
            registry=registry,
        )

        # Sessions stream for as long as generation plus pacing takes
        self.session_duration = Histogram(
            "askstream_session_duration_seconds",
            "Ask session duration in seconds",
            labelnames=["strategy"],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 300.0, float("inf")),
            registry=registry,
        )

        self.retry_attempts = Counter(
            "askstream_retry_attempts_total",
            "Cold-start retries scheduled",
            labelnames=["strategy"],
            registry=registry,
        )

        self.fallbacks_total = Counter(
            "askstream_fallbacks_total",
            "Non-streaming fallbacks after a silent stream",
            labelnames=["strategy"],
            registry=registry,
        )

        self.parser_warnings = Counter(
            "askstream_parser_warnings_total",
            "Recoverable tag parser issues",
            labelnames=["kind"],
            registry=registry,
        )

        self.tool_confirmations = Counter(
            "askstream_tool_confirmations_total",
            "Tool confirmation resolutions",
            labelnames=["tool", "resolution"],
            registry=registry,
        )

        self.active_sessions = Gauge(
            "askstream_active_sessions",
            "Number of sessions currently streaming",
            registry=registry,
        )

    @classmethod
    def get_instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton (for testing)."""
        cls._instance = None
        cls._initialized_registries.clear()

    def _copy_from(self, other: "MetricsCollector"):
        """Copy metrics references from another collector."""
        self.info = other.info
        self.requests_total = other.requests_total
        self.request_duration = other.request_duration
        self.sessions_total = other.sessions_total
        self.session_duration = other.session_duration
        self.retry_attempts = other.retry_attempts
        self.fallbacks_total = other.fallbacks_total
        self.parser_warnings = other.parser_warnings
        self.tool_confirmations = other.tool_confirmations
        self.active_sessions = other.active_sessions

    def record_request(
        self,
        endpoint: str,
        method: str,
        status_code: int,
        duration_seconds: float,
    ):
        """Record a completed HTTP request."""
        self.requests_total.labels(
            endpoint=endpoint,
            method=method,
            status=str(status_code),
        ).inc()

        self.request_duration.labels(
            endpoint=endpoint,
            method=method,
        ).observe(duration_seconds)

    def record_session(self, strategy: str, outcome: str, duration_seconds: float):
        """Record a finished ask session."""
        self.sessions_total.labels(strategy=strategy, outcome=outcome).inc()
        self.session_duration.labels(strategy=strategy).observe(duration_seconds)

    def record_retry(self, strategy: str):
        self.retry_attempts.labels(strategy=strategy).inc()

    def record_fallback(self, strategy: str):
        self.fallbacks_total.labels(strategy=strategy).inc()

    def record_parser_warning(self, kind: str):
        self.parser_warnings.labels(kind=kind).inc()

    def record_tool_confirmation(self, tool: str, resolution: str):
        self.tool_confirmations.labels(tool=tool, resolution=resolution).inc()

    def track_active_session(self) -> "ActiveSessionTracker":
        """Context manager to track active sessions."""
        return ActiveSessionTracker(self)


class ActiveSessionTracker:
    """Context manager for tracking active sessions."""

    def __init__(self, collector: MetricsCollector):
        self.collector = collector

    def __enter__(self):
        self.collector.active_sessions.inc()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.collector.active_sessions.dec()


# Module-level functions for convenience
_metrics_instance: Optional[MetricsCollector] = None


def setup_metrics(registry: CollectorRegistry = REGISTRY) -> MetricsCollector:
    """
    Setup metrics collection.

    Call once at application startup.
    Safe to call multiple times - returns existing instance.
    """
    global _metrics_instance

    # Return existing instance if already setup with same registry
    if _metrics_instance is not None and _metrics_instance.registry is registry:
        return _metrics_instance

    _metrics_instance = MetricsCollector(registry)
    MetricsCollector._instance = _metrics_instance
    return _metrics_instance


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Auto-initializes with the default registry if setup_metrics() hasn't been called.
    """
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = MetricsCollector.get_instance()
    return _metrics_instance


def metrics_endpoint() -> Response:
    """
    Generate Prometheus metrics endpoint response.

    Usage:
        @app.get("/metrics")
        async def metrics():
            return metrics_endpoint()
    """
    content = generate_latest(get_metrics().registry)
    return Response(
        content=content,
        media_type=CONTENT_TYPE_LATEST,
    )
