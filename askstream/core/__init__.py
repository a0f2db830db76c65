"""
askstream Core Module

Shared data models, error taxonomy, configuration, model catalog and
context trimming.
"""

from .models import (
    # Enums
    Channel,
    EventKind,
    ParserMode,
    Role,
    StrategyKind,
    SessionOutcome,

    # Events and pacing
    StreamEvent,
    ThrottleConfig,
    DEFAULT_THROTTLE,
    SELF_HOSTED_THROTTLE,
    AGENTIC_THROTTLE,

    # Requests
    AskRequest,
    ChatTurn,
    GeoInfo,
    GenerationParams,
    ContextSettings,
    split_model_id,

    # Capabilities and results
    ModelCapability,
    Completion,
    dumps_compact,
)

from .errors import (
    # Error types
    ErrorType,
    ErrorDetails,
    GatewayError,
    ParserIssue,

    # Infra errors
    InfraError,
    TransientUpstreamError,
    UpstreamError,
    NetworkError,
    UpstreamTimeoutError,
    RequestCancelledError,

    # Semantic errors
    SemanticError,
    AuthOrQuotaError,
    InvalidConfiguration,
    InvalidRequestError,
    ConfirmationNotFoundError,
    CreditsExhaustedError,

    # Mapping
    map_http_error,
    is_cold_start_response,
    raise_for_upstream_status,
    describe_error,
    error_frame_payload,
)

from .catalog import (
    CapabilityTable,
    DEFAULT_CAPABILITIES,
    SELF_HOSTED_NAMESPACES,
    MODE_NAMESPACE,
    DEPLOYER_MODE,
)

from .context import (
    ContextBudget,
    ContextCutter,
    TrimResult,
)

from .config import (
    RunMode,
    Settings,
    load_settings,
    validate_runtime_config,
    get_cors_allowed_origins,
    HEADER_API_KEYS,
)

__all__ = [
    # Enums
    "Channel",
    "EventKind",
    "ParserMode",
    "Role",
    "StrategyKind",
    "SessionOutcome",

    # Events and pacing
    "StreamEvent",
    "ThrottleConfig",
    "DEFAULT_THROTTLE",
    "SELF_HOSTED_THROTTLE",
    "AGENTIC_THROTTLE",

    # Requests
    "AskRequest",
    "ChatTurn",
    "GeoInfo",
    "GenerationParams",
    "ContextSettings",
    "split_model_id",
    "ModelCapability",
    "Completion",
    "dumps_compact",

    # Errors
    "ErrorType",
    "ErrorDetails",
    "GatewayError",
    "ParserIssue",
    "InfraError",
    "TransientUpstreamError",
    "UpstreamError",
    "NetworkError",
    "UpstreamTimeoutError",
    "RequestCancelledError",
    "SemanticError",
    "AuthOrQuotaError",
    "InvalidConfiguration",
    "InvalidRequestError",
    "ConfirmationNotFoundError",
    "CreditsExhaustedError",
    "map_http_error",
    "is_cold_start_response",
    "raise_for_upstream_status",
    "describe_error",
    "error_frame_payload",

    # Catalog
    "CapabilityTable",
    "DEFAULT_CAPABILITIES",
    "SELF_HOSTED_NAMESPACES",
    "MODE_NAMESPACE",
    "DEPLOYER_MODE",

    # Context
    "ContextBudget",
    "ContextCutter",
    "TrimResult",

    # Config
    "RunMode",
    "Settings",
    "load_settings",
    "validate_runtime_config",
    "get_cors_allowed_origins",
    "HEADER_API_KEYS",
]
