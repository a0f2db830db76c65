"""
askstream - OpenTelemetry Tracing

Span layout for one ask request:

    POST /v2/ask                 (server span, ObservabilityMiddleware)
      ask.session                (internal, RequestSession.run)
        gemini.stream            (client, one per upstream attempt)
        self_hosted.complete     (client, silent-stream fallback)

The W3C traceparent of the active span is forwarded on upstream requests so
self-hosted backends can join the trace.

Usage:
    from askstream.observability.tracing import setup_tracing, trace_upstream_call

    setup_tracing(service_name="askstream", otlp_endpoint="http://localhost:4317")

    with trace_upstream_call("gemini", "gemini-2.0-flash", "stream") as span:
        span.set_attribute("http.status_code", 200)
"""

import os
from typing import Optional, Dict, Any
from contextlib import contextmanager
from dataclasses import dataclass

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider, Span
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from opentelemetry.propagate import set_global_textmap, inject, extract
from opentelemetry.trace import SpanKind
from opentelemetry.context import Context

# Optional OTLP exporter (requires opentelemetry-exporter-otlp)
try:
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    OTLP_AVAILABLE = True
except ImportError:
    OTLP_AVAILABLE = False


@dataclass
class TraceContext:
    """Ids of a span, as hex strings for headers and log lines."""
    trace_id: str
    span_id: str
    trace_flags: int = 1

    @classmethod
    def from_span(cls, span: Span) -> "TraceContext":
        ctx = span.get_span_context()
        return cls(
            trace_id=format(ctx.trace_id, "032x"),
            span_id=format(ctx.span_id, "016x"),
            trace_flags=ctx.trace_flags,
        )

    def to_traceparent(self) -> str:
        return f"00-{self.trace_id}-{self.span_id}-{self.trace_flags:02x}"


class TracingManager:
    """
    Owns the tracer provider. One per process.

    Spans go to an OTLP collector when an endpoint is configured and the
    exporter package is installed, and to the console with
    OTEL_CONSOLE_EXPORT=true.
    """

    _instance: Optional["TracingManager"] = None

    def __init__(
        self,
        service_name: str = "askstream",
        service_version: str = "1.0.0",
        otlp_endpoint: Optional[str] = None,
        console_export: bool = False,
    ):
        self.service_name = service_name
        self.service_version = service_version

        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
            "deployment.environment": os.getenv("MODE", "prod"),
        })
        self.provider = TracerProvider(resource=resource)

        if otlp_endpoint and OTLP_AVAILABLE:
            self.provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
        if console_export:
            self.provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

        trace.set_tracer_provider(self.provider)
        set_global_textmap(TraceContextTextMapPropagator())
        self.tracer = trace.get_tracer(service_name, service_version)

    @classmethod
    def get_instance(cls) -> "TracingManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton (for testing)."""
        cls._instance = None

    def extract_context(self, headers: Dict[str, str]) -> Context:
        """Parent context from an incoming traceparent header."""
        return extract({k.lower(): v for k, v in headers.items()})

    def inject_context(self, headers: Dict[str, str]) -> Dict[str, str]:
        """Add the active span's traceparent to outgoing headers."""
        inject(headers)
        return headers

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        return self.tracer.start_as_current_span(name, kind=kind, attributes=attributes)

    def start_server_span(
        self,
        name: str,
        headers: Dict[str, str],
        attributes: Optional[Dict[str, Any]] = None,
    ):
        """Span for an incoming request, parented by its traceparent if any."""
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.SERVER,
            attributes=attributes,
            context=self.extract_context(headers),
        )

    def shutdown(self):
        self.provider.shutdown()


_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "askstream",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
) -> TracingManager:
    """
    Install the process tracer provider.

    Args:
        service_name: Resource service.name
        service_version: Resource service.version
        otlp_endpoint: Collector endpoint; OTEL_EXPORTER_OTLP_ENDPOINT when None
        console_export: Also print spans (forced on by OTEL_CONSOLE_EXPORT=true)
    """
    global _tracing_instance

    if otlp_endpoint is None:
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    _tracing_instance = TracingManager(
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint,
        console_export=console_export,
    )
    TracingManager._instance = _tracing_instance
    return _tracing_instance


def get_tracing_manager() -> TracingManager:
    """Tracing manager; created with defaults if setup_tracing() was not called."""
    global _tracing_instance
    if _tracing_instance is None:
        _tracing_instance = TracingManager.get_instance()
    return _tracing_instance


def get_tracer() -> trace.Tracer:
    return get_tracing_manager().tracer


def upstream_headers(headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Copy of `headers` carrying the active traceparent."""
    return get_tracing_manager().inject_context(dict(headers or {}))


@contextmanager
def trace_upstream_call(provider: str, model: str, operation: str = "generate"):
    """
    Client span around one upstream model or search call.

    Usage:
        with trace_upstream_call("self_hosted", "qwen3:4b", "stream") as span:
            response = await client.send(request, stream=True)
    """
    with get_tracing_manager().start_span(
        f"{provider}.{operation}",
        kind=SpanKind.CLIENT,
        attributes={
            "ai.provider": provider,
            "ai.model": model,
            "ai.operation": operation,
        },
    ) as span:
        yield span


@contextmanager
def trace_session(strategy: str, model: str, session_id: str):
    """Internal span covering one ask session; the strategy is set once dispatched."""
    with get_tracing_manager().start_span(
        "ask.session",
        attributes={
            "askstream.strategy": strategy,
            "askstream.model": model,
            "askstream.session_id": session_id,
        },
    ) as span:
        yield span
