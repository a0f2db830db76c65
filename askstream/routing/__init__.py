"""
askstream - Routing Module

Request routing and the session lifecycle:
- Mode dispatch to one generation strategy
- Cold-start retry with linear backoff
- RequestSession orchestration of the whole ask pipeline
"""

from .dispatcher import Route, dispatch
from .retry import (
    RetryAttempt,
    RetryPolicy,
    calculate_backoff_ms,
    is_cold_start,
)
from .session import (
    RequestSession,
    SessionDependencies,
    SessionResult,
    proposal_fallback_text,
)

__all__ = [
    # Dispatch
    "Route",
    "dispatch",
    # Retry
    "RetryAttempt",
    "RetryPolicy",
    "calculate_backoff_ms",
    "is_cold_start",
    # Session
    "RequestSession",
    "SessionDependencies",
    "SessionResult",
    "proposal_fallback_text",
]
