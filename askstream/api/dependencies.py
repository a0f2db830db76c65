"""
askstream - API Dependencies

Shared dependencies for FastAPI routes.
The server lifespan builds one AppState and registers a getter for it here.
"""

import uuid
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from fastapi import Request

from ..adapters.registry import StrategyRegistry
from ..core.catalog import CapabilityTable, DEFAULT_CAPABILITIES
from ..core.config import HEADER_API_KEYS, Settings
from ..core.errors import ErrorDetails, ErrorType, InfraError
from ..core.models import GeoInfo
from ..routing.retry import RetryPolicy
from ..routing.session import SessionDependencies
from ..services.companions import SessionCompanions
from ..services.search import SearchProvider, SearchQueryPlanner
from ..services.stores import CreditIdentity, CreditStore, ThreadStore
from ..tools.bridge import ToolExecutionBridge


GEO_HEADERS = {
    "country": "x-vercel-ip-country",
    "region": "x-vercel-ip-country-region",
    "city": "x-vercel-ip-city",
}


@dataclass
class AppState:
    """Process-wide collaborators shared by every request."""
    settings: Settings
    registry: StrategyRegistry
    bridge: ToolExecutionBridge
    credit_store: CreditStore
    thread_store: ThreadStore
    capabilities: CapabilityTable = DEFAULT_CAPABILITIES
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    companions: Optional[SessionCompanions] = None
    search_provider: Optional[SearchProvider] = None
    search_planner: Optional[SearchQueryPlanner] = None

    def session_dependencies(self) -> SessionDependencies:
        return SessionDependencies(
            registry=self.registry,
            capabilities=self.capabilities,
            retry_policy=self.retry_policy,
            search_provider=self.search_provider,
            search_planner=self.search_planner,
            companions=self.companions,
            bridge=self.bridge,
        )


# Global state getter (set by server lifespan)
# This function is set by server.py to avoid circular imports
_state_getter = None


def set_state_getter(getter):
    """Set the function that returns the application state."""
    global _state_getter
    _state_getter = getter


def get_app_state() -> AppState:
    """
    Get the application state.

    Raises:
        InfraError: 503 while the server is still starting up
    """
    state = _state_getter() if _state_getter is not None else None
    if state is None:
        raise InfraError(
            ErrorDetails(
                code="service_unavailable",
                message="Server not initialized. Server may be starting up.",
                type=ErrorType.INFRA,
                request_id="",
                retryable=True,
                retry_after=5
            ),
            status_code=503
        )
    return state


def get_request_id(request: Request) -> str:
    """Request id assigned by ObservabilityMiddleware, or a fresh one."""
    return getattr(request.state, "request_id", "") or generate_request_id()


def header_api_keys(headers: Mapping[str, str]) -> Dict[str, str]:
    """Per-request provider keys sent as headers."""
    keys = {}
    for header, slot in HEADER_API_KEYS.items():
        value = headers.get(header)
        if value:
            keys[slot] = value
    return keys


def geo_from_headers(headers: Mapping[str, str]) -> Optional[GeoInfo]:
    """Coarse location from edge headers, or None when none are present."""
    values = {name: headers.get(header, "") for name, header in GEO_HEADERS.items()}
    if not any(values.values()):
        return None
    return GeoInfo(**values)


def credit_identity(request: Request) -> CreditIdentity:
    """Authenticated user id when present, otherwise the client IP."""
    user_id = request.headers.get("x-user-id") or None
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() if forwarded else None
    if not ip and request.client:
        ip = request.client.host
    return CreditIdentity(user_id=user_id, ip=ip)


def add_standard_headers(
    response_headers: Dict[str, str],
    request_id: str,
    **extra_headers
) -> Dict[str, str]:
    """
    Add standard response headers.

    Adds request ID and any extra headers.
    """
    headers = {
        "X-Request-Id": request_id,
        **response_headers,
        **{k: str(v) for k, v in extra_headers.items() if v is not None}
    }
    return headers


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return f"req_{uuid.uuid4().hex[:24]}"
