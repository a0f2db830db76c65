"""
askstream - Core Data Models

Shared data structures for the ask pipeline: stream events, channels,
throttle settings, requests and the model capability record.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# Enums
# ============================================================

class Channel(str, Enum):
    """Output categories that classified stream content is routed to."""
    ANSWER = "answer"
    REASONING = "reasoning"
    TOOL = "tool"


class EventKind(str, Enum):
    """Kinds of events a generation strategy produces."""
    TEXT_DELTA = "text-delta"
    REASONING_DELTA = "reasoning-delta"
    TOOL_START = "tool-start"
    TOOL_RESULT = "tool-result"
    ERROR = "error"
    END = "end"


class ParserMode(str, Enum):
    """TagStreamParser states."""
    INITIAL = "INITIAL"
    IN_REASONING = "IN_REASONING"
    IN_ANSWER = "IN_ANSWER"
    IN_TOOL = "IN_TOOL"


class Role(str, Enum):
    """Roles of prior conversation turns."""
    USER = "user"
    MODEL = "model"


class StrategyKind(str, Enum):
    """Backend families a request can be dispatched to."""
    AGENTIC = "agentic"
    SELF_HOSTED = "self_hosted"
    HOSTED = "hosted"
    HOSTED_REASONING = "hosted_reasoning"
    CANNED = "canned"


class SessionOutcome(str, Enum):
    """Terminal state of a request session."""
    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"


# ============================================================
# Stream events
# ============================================================

@dataclass
class StreamEvent:
    """
    Uniform unit passed from a generation strategy into the session.

    payload is token text for delta events, a dict for tool events and the
    raised exception for error events.
    """
    kind: EventKind
    payload: Any = ""

    @classmethod
    def text(cls, text: str) -> "StreamEvent":
        return cls(EventKind.TEXT_DELTA, text)

    @classmethod
    def reasoning(cls, text: str) -> "StreamEvent":
        return cls(EventKind.REASONING_DELTA, text)

    @classmethod
    def tool_start(cls, tool_name: str, call_id: str = "") -> "StreamEvent":
        return cls(EventKind.TOOL_START, {"toolName": tool_name, "id": call_id})

    @classmethod
    def tool_result(
        cls,
        tool_name: str,
        output: Any,
        arguments: Optional[Dict[str, Any]] = None,
        call_id: str = "",
    ) -> "StreamEvent":
        return cls(
            EventKind.TOOL_RESULT,
            {"toolName": tool_name, "output": output, "args": arguments or {}, "id": call_id},
        )

    @classmethod
    def error(cls, exc: BaseException) -> "StreamEvent":
        return cls(EventKind.ERROR, exc)

    @classmethod
    def end(cls) -> "StreamEvent":
        return cls(EventKind.END, "")

    @property
    def is_terminal(self) -> bool:
        return self.kind in (EventKind.END, EventKind.ERROR)


@dataclass(frozen=True)
class ThrottleConfig:
    """Pacing of client delivery. Delays are milliseconds."""
    chunk_size: int = 10
    min_delay_ms: float = 1.0
    max_delay_ms: float = 50.0

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if self.min_delay_ms < 0 or self.max_delay_ms < self.min_delay_ms:
            raise ValueError("require 0 <= min_delay_ms <= max_delay_ms")


DEFAULT_THROTTLE = ThrottleConfig()
SELF_HOSTED_THROTTLE = ThrottleConfig(chunk_size=12, min_delay_ms=1, max_delay_ms=40)
AGENTIC_THROTTLE = ThrottleConfig(chunk_size=20, min_delay_ms=2, max_delay_ms=40)


# ============================================================
# Requests
# ============================================================

@dataclass
class ChatTurn:
    """A prior conversation turn."""
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class GeoInfo:
    """Coarse client location, used only in the system prompt."""
    country: str = ""
    region: str = ""
    city: str = ""


@dataclass
class GenerationParams:
    """Sampling parameters forwarded to upstream models."""
    temperature: float = 0.7
    max_tokens: int = 3000
    top_p: float = 1.0
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    stop: List[str] = field(default_factory=list)


@dataclass
class ContextSettings:
    """Per-request overrides for history trimming. Zero means unset."""
    prev_chat_limit: int = 0
    max_context_tokens: int = 0
    absolute_max_tokens: int = 0
    truncate_from: str = ""


@dataclass
class AskRequest:
    """
    Internal request descriptor consumed by the session.

    model is the composite "namespace/modelName" identifier.
    """
    query: str
    model: str
    chats: List[ChatTurn] = field(default_factory=list)
    mode: Optional[str] = None
    thinking: bool = False
    websearch: bool = False
    custom_prompt: Optional[str] = None
    params: GenerationParams = field(default_factory=GenerationParams)
    context: ContextSettings = field(default_factory=ContextSettings)
    follow_up: bool = True
    thread_id: Optional[str] = None
    chat_id: Optional[str] = None
    wallet_public_key: Optional[str] = None
    api_keys: Dict[str, str] = field(default_factory=dict)
    geo: Optional[GeoInfo] = None

    @property
    def namespace(self) -> str:
        return split_model_id(self.model)[0]

    @property
    def model_name(self) -> str:
        return split_model_id(self.model)[1]


def split_model_id(model: str) -> tuple:
    """Split "namespace/modelName"; missing parts come back empty."""
    if not model or "/" not in model:
        return "", model or ""
    namespace, _, name = model.partition("/")
    return namespace.strip(), name.strip()


# ============================================================
# Capability table records
# ============================================================

@dataclass(frozen=True)
class ModelCapability:
    """Static description of a model or mode the dispatcher can route to."""
    name: str
    family: str
    supports_reasoning: bool = False
    supports_search: bool = False
    is_self_hosted: bool = False
    no_penalty: bool = False
    context_window: int = 128000
    max_output_tokens: int = 4096
    credit_cost: int = 1
    timeout_seconds: float = 30.0
    kind: Optional[StrategyKind] = None
    backing_model: Optional[str] = None
    prompt_profile: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "family": self.family,
            "supports_reasoning": self.supports_reasoning,
            "supports_search": self.supports_search,
            "is_self_hosted": self.is_self_hosted,
            "context_window": self.context_window,
            "max_output_tokens": self.max_output_tokens,
            "credit_cost": self.credit_cost,
        }


# ============================================================
# Completions (non-streaming)
# ============================================================

@dataclass
class Completion:
    """Result of a non-streaming upstream call."""
    text: str = ""
    reasoning: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.reasoning.strip()


def dumps_compact(value: Any) -> str:
    """JSON encoding used for structured frame payloads."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
