"""
askstream - Observability Module

Observability stack including:
- Prometheus metrics (Counter, Histogram, Gauge)
- OpenTelemetry distributed tracing
- Structured JSON logging with context injection
- W3C trace context propagation

Usage:
    from askstream.observability import (
        setup_observability,
        get_metrics,
        get_tracer,
        get_logger,
    )

    # Initialize at startup
    setup_observability(service_name="askstream")

    # Use throughout code
    logger = get_logger(__name__)
    tracer = get_tracer()
    metrics = get_metrics()
"""

from .metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    metrics_endpoint,
)
from .tracing import (
    TracingManager,
    get_tracer,
    get_tracing_manager,
    setup_tracing,
    trace_session,
    trace_upstream_call,
)
from .logging import (
    StructuredLogger,
    get_logger,
    setup_logging,
    LogContext,
    JSONFormatter,
)
from .middleware import (
    ObservabilityMiddleware,
    setup_observability,
    get_request_context,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "setup_metrics",
    "metrics_endpoint",
    # Tracing
    "TracingManager",
    "get_tracer",
    "get_tracing_manager",
    "setup_tracing",
    "trace_session",
    "trace_upstream_call",
    # Logging
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    "LogContext",
    "JSONFormatter",
    # Combined
    "ObservabilityMiddleware",
    "setup_observability",
    "get_request_context",
]
