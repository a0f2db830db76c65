"""
askstream - Main API Server

FastAPI-based server for the streaming ask pipeline.
Uses canonical error layer from askstream/core/errors.py

Supports three modes:
- MODE=local: Development mode with relaxed startup checks
- MODE=prod: Production mode with fail-closed startup guardrails
- MODE=test: Deterministic mode; stub strategies allowed

Features:
- SSE ask endpoint with hosted, self-hosted, agentic and canned strategies
- Human confirmation of deployer actions
- Cold-start retry for self-hosted backends
- Full observability (metrics, tracing, logging)
"""

import os
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .adapters.registry import build_registry
from .core.catalog import DEFAULT_CAPABILITIES
from .core.config import (
    Settings,
    get_cors_allowed_origins,
    is_prod_mode,
    load_settings,
    validate_runtime_config,
)
from .core.errors import GatewayError
from .routing.retry import RetryPolicy
from .services.companions import SessionCompanions
from .services.deployer import InMemoryDeployerToolbox, InMemoryDeploymentExecutor
from .services.llm import HostedTextClient
from .services.search import SearchQueryPlanner, TavilySearchProvider
from .services.stores import InMemoryCreditStore, InMemoryThreadStore
from .tools.bridge import ToolExecutionBridge

# API imports
from .api import (
    AppState,
    ask_router,
    confirmations_router,
    models_router,
    set_state_getter,
)

# Observability imports
from .observability import (
    setup_observability,
    ObservabilityMiddleware,
    get_logger,
    metrics_endpoint,
)


# ============================================================
# Global state
# ============================================================

app_state: Optional[AppState] = None


def build_app_state(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AppState:
    """
    Wire every collaborator from settings.

    Args:
        settings: Resolved configuration
        transport: Optional httpx transport shared by all upstream clients
    """
    jobs: Dict[str, Dict] = {}
    toolbox = InMemoryDeployerToolbox(jobs)
    executor = InMemoryDeploymentExecutor(jobs)

    if settings.use_stub_adapters:
        text_client = None
        search_provider = None
    else:
        text_client = HostedTextClient(
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            transport=transport,
        )
        search_provider = TavilySearchProvider(
            api_key=settings.tavily_api_key,
            base_url=settings.tavily_base_url,
            transport=transport,
        )

    return AppState(
        settings=settings,
        registry=build_registry(settings, toolbox=toolbox, transport=transport),
        bridge=ToolExecutionBridge(executor, ttl_seconds=settings.confirmation_ttl_seconds),
        credit_store=InMemoryCreditStore(settings.credits_auth_limit, settings.credits_ip_limit),
        thread_store=InMemoryThreadStore(),
        capabilities=DEFAULT_CAPABILITIES,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
        ),
        companions=SessionCompanions(text_client),
        search_provider=search_provider,
        search_planner=SearchQueryPlanner(text_client),
    )


async def close_app_state(state: AppState):
    """Release every HTTP client held by the state."""
    await state.registry.close()
    if state.search_provider is not None:
        await state.search_provider.close()
    if state.companions is not None and state.companions.client is not None:
        await state.companions.client.close()


# ============================================================
# Lifespan management
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    global app_state

    settings = load_settings()
    validate_runtime_config(settings)

    # Initialize observability first (for logging during startup)
    observability = setup_observability(
        service_name="askstream",
        service_version=__version__,
        otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )

    logger = get_logger("server")
    logger.info(f"askstream starting in {settings.mode.value.upper()} mode")

    if not settings.gemini_api_key:
        logger.warning("No hosted provider key configured. Set GOOGLE_GENERATIVE_AI_API_KEY or send x-gemini-key")
    if not settings.tavily_api_key:
        logger.warning("Web search disabled until TAVILY_API_KEY is set or x-tavily-key is sent")

    app_state = build_app_state(settings)

    logger.info(
        "askstream server ready",
        run_mode=settings.mode.value,
        strategies=[kind.value for kind in app_state.registry.kinds()],
        stub_adapters=settings.use_stub_adapters,
    )

    yield

    # Shutdown: Close upstream clients
    await close_app_state(app_state)
    app_state = None

    # Shutdown tracing
    if "tracing" in observability:
        observability["tracing"].shutdown()

    logger.info("askstream server stopped")


# ============================================================
# FastAPI App
# ============================================================

app = FastAPI(
    title="askstream",
    description="Conversational AI gateway streaming answers over server-sent events",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# Add custom middleware (order matters - first added = outermost)
# ObservabilityMiddleware handles metrics, tracing, and logging in one place
app.add_middleware(ObservabilityMiddleware, service_name="askstream")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_allowed_origins() or (["*"] if not is_prod_mode() else []),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include all routers
app.include_router(ask_router)
app.include_router(confirmations_router)
app.include_router(models_router)


# ============================================================
# State getter (for dependency injection)
# ============================================================

def get_state_instance() -> Optional[AppState]:
    """Get the application state for dependency injection."""
    return app_state


set_state_getter(get_state_instance)


# ============================================================
# Core Endpoints (not in routes)
# ============================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    state = app_state
    return {
        "status": "healthy" if state is not None else "starting",
        "version": __version__,
        "mode": state.settings.mode.value if state else None,
        "strategies": [kind.value for kind in state.registry.kinds()] if state else [],
        "pending_confirmations": len(state.bridge) if state else 0,
    }


@app.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint.

    Exposes all collected metrics in Prometheus text format.
    Scrape this endpoint with Prometheus server.
    """
    return metrics_endpoint()


@app.get("/ready")
async def readiness_check():
    """
    Readiness check endpoint.

    Returns 200 once the strategy registry is built.
    Used by Kubernetes/load balancers for health checks.
    """
    if app_state is None:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "reason": "Server is starting up"
            }
        )

    return {"status": "ready"}


# ============================================================
# Error handlers
# ============================================================

@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError):
    """Handle all askstream canonical errors."""
    request_id = exc.error.request_id or getattr(request.state, "request_id", "")
    exc.error.request_id = request_id
    headers = {
        "X-Request-Id": request_id,
        "X-Error-Type": exc.error.type.value,
        "X-Error-Code": exc.error.code,
    }

    if exc.error.retry_after:
        headers["Retry-After"] = str(exc.error.retry_after)

    if exc.error.provider:
        headers["X-Provider"] = exc.error.provider

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.error.to_dict(),
        headers=headers
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle standard HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "") or f"req_{uuid.uuid4().hex[:24]}"

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": "http_error",
                "message": str(exc.detail) if isinstance(exc.detail, str) else exc.detail.get("message", "Unknown error"),
                "type": "semantic_error" if exc.status_code < 500 else "infra_error",
                "request_id": request_id,
                "retryable": exc.status_code >= 500
            }
        },
        headers={"X-Request-Id": request_id}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "") or f"req_{uuid.uuid4().hex[:24]}"

    get_logger("server").exception(
        "Unhandled exception",
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred",
                "type": "infra_error",
                "request_id": request_id,
                "retryable": True
            }
        },
        headers={"X-Request-Id": request_id}
    )


# ============================================================
# Run server
# ============================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "askstream.server:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=not is_prod_mode()
    )
