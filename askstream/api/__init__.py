"""
askstream - API Layer

HTTP surface of the ask pipeline.

Provides:
- POST /v2/ask streaming sessions
- Tool confirmation continuations
- Model listing
"""

from .models import (
    AskRequestBody,
    CapabilityInfo,
    CapabilityListResponse,
    ChatTurnInput,
    ConfirmationInfo,
    ContextConfig,
    CustomConfig,
)
from .dependencies import (
    AppState,
    get_app_state,
    set_state_getter,
    add_standard_headers,
)
from .streaming import session_response
from .routes import (
    ask_router,
    confirmations_router,
    models_router,
)


__all__ = [
    # Routers
    "ask_router",
    "confirmations_router",
    "models_router",
    # Request/response models
    "AskRequestBody",
    "CapabilityInfo",
    "CapabilityListResponse",
    "ChatTurnInput",
    "ConfirmationInfo",
    "ContextConfig",
    "CustomConfig",
    # Dependencies
    "AppState",
    "get_app_state",
    "set_state_getter",
    "add_standard_headers",
    "session_response",
]
