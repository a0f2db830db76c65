"""
askstream - Observability Middleware

Wraps every API request in a server span, a LogContext and a request metric.

Ask responses are server-sent event streams, so the middleware sees them
return as soon as headers go out. The recorded duration is time to first
byte; RequestSession records the full session duration and outcome.

Usage:
    from askstream.observability import setup_observability, ObservabilityMiddleware

    setup_observability(service_name="askstream")
    app.add_middleware(ObservabilityMiddleware)
"""

import os
import time
import uuid
from typing import Optional, Dict, Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp
from opentelemetry.trace import Status, StatusCode

from .. import __version__
from .metrics import get_metrics, setup_metrics
from .tracing import get_tracing_manager, TraceContext, setup_tracing
from .logging import get_logger, LogContext, setup_logging


CONFIRMATIONS_PREFIX = "/v2/ask/confirmations/"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Request ids, server spans, request metrics and completion logs."""

    # Probes and docs are not traced or counted
    EXCLUDE_PATHS = {"/health", "/ready", "/metrics", "/openapi.json", "/docs", "/redoc"}

    def __init__(
        self,
        app: ASGIApp,
        service_name: str = "askstream",
        exclude_paths: Optional[set] = None,
    ):
        super().__init__(app)
        self.service_name = service_name
        self.exclude_paths = exclude_paths or self.EXCLUDE_PATHS
        self.logger = get_logger("askstream.http")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        headers = dict(request.headers)
        request_id = headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:24]}"
        route = self._get_endpoint_group(request.url.path)
        started = time.perf_counter()

        span_cm = get_tracing_manager().start_server_span(
            f"{request.method} {route}",
            headers=headers,
            attributes={
                "http.method": request.method,
                "http.route": route,
                "http.user_agent": headers.get("user-agent", ""),
                "askstream.request_id": request_id,
            },
        )
        with span_cm as span:
            ids = TraceContext.from_span(span)
            self._bind(request, request_id, ids)
            try:
                try:
                    response = await call_next(request)
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    self._record(request, route, 500, started)
                    self.logger.exception(
                        "Request raised before a response was sent",
                        error_type=type(e).__name__,
                        path=request.url.path,
                    )
                    raise

                status_code = response.status_code
                elapsed = self._record(request, route, status_code, started)

                span.set_attribute("http.status_code", status_code)
                if status_code >= 500:
                    span.set_status(Status(StatusCode.ERROR, f"HTTP {status_code}"))
                elif status_code < 400:
                    span.set_status(Status(StatusCode.OK))

                self._log_request(request, response, elapsed * 1000)

                response.headers["X-Request-Id"] = request_id
                response.headers["X-Trace-Id"] = ids.trace_id
                response.headers["X-Span-Id"] = ids.span_id
                return response
            finally:
                LogContext.clear()

    @staticmethod
    def _record(request: Request, route: str, status_code: int, started: float) -> float:
        elapsed = time.perf_counter() - started
        get_metrics().record_request(
            endpoint=route,
            method=request.method,
            status_code=status_code,
            duration_seconds=elapsed,
        )
        return elapsed

    @staticmethod
    def _bind(request: Request, request_id: str, ids: TraceContext):
        log_ctx = LogContext(
            request_id=request_id,
            trace_id=ids.trace_id,
            span_id=ids.span_id,
            endpoint=request.url.path,
        )
        LogContext.set_current(log_ctx)

        request.state.request_id = request_id
        request.state.trace_id = ids.trace_id
        request.state.span_id = ids.span_id
        request.state.log_context = log_ctx

    def _get_endpoint_group(self, path: str) -> str:
        """Collapse confirmation ids so metric labels stay bounded."""
        if not path.startswith(CONFIRMATIONS_PREFIX):
            return path
        parts = path[len(CONFIRMATIONS_PREFIX):].strip("/").split("/")
        if len(parts) == 2 and parts[1] in ("confirm", "cancel"):
            return f"{CONFIRMATIONS_PREFIX}{{id}}/{parts[1]}"
        return CONFIRMATIONS_PREFIX + "{id}"

    def _log_request(self, request: Request, response: Response, duration_ms: float):
        status_code = response.status_code
        fields = {
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "streaming": response.headers.get("content-type", "").startswith("text/event-stream"),
            "session_id": response.headers.get("x-session-id", ""),
            "client_ip": request.client.host if request.client else None,
        }
        error_code = response.headers.get("x-error-code")
        if error_code:
            fields["error_code"] = error_code

        if status_code >= 500:
            self.logger.error("Request failed", **fields)
        elif status_code >= 400:
            self.logger.warning("Request rejected", **fields)
        elif fields["streaming"]:
            self.logger.info("Stream opened", **fields)
        else:
            self.logger.info("Request completed", **fields)


_observability_initialized = False


def setup_observability(
    service_name: str = "askstream",
    service_version: str = __version__,
    otlp_endpoint: Optional[str] = None,
    log_level: str = "INFO",
    metrics_enabled: bool = True,
    tracing_enabled: bool = True,
) -> Dict[str, Any]:
    """
    Configure logging, metrics and tracing. Safe to call more than once.

    LOG_LEVEL and LOG_FORMAT override the logging arguments.

    Returns:
        Dict with the "metrics" and "tracing" components that were set up
    """
    global _observability_initialized

    setup_logging(
        level=os.getenv("LOG_LEVEL", log_level),
        json_output=os.getenv("LOG_FORMAT", "json").lower() == "json",
    )

    components: Dict[str, Any] = {}
    if metrics_enabled:
        components["metrics"] = setup_metrics()
    if tracing_enabled:
        components["tracing"] = setup_tracing(
            service_name=service_name,
            service_version=service_version,
            otlp_endpoint=otlp_endpoint,
        )

    if not _observability_initialized:
        get_logger("askstream.observability").info(
            "Observability initialized",
            service_name=service_name,
            service_version=service_version,
            components=sorted(components),
            otlp_endpoint=otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or "none",
        )
        _observability_initialized = True

    return components


def get_request_context(request: Request) -> Dict[str, str]:
    """request_id, trace_id and span_id bound by ObservabilityMiddleware."""
    return {
        key: getattr(request.state, key, "")
        for key in ("request_id", "trace_id", "span_id")
    }
