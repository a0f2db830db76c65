"""
askstream - Tool Execution Bridge

Gates deployer actions with real-world side effects behind an explicit
human confirmation.

State machine:
    PROPOSED -> AWAITING_CONFIRMATION -> EXECUTING -> SUCCEEDED | FAILED
                                      -> CANCELLED

A session holds at most one unresolved confirmation. A new proposal for the
same session supersedes the previous one, which becomes unreachable.
"""

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..core.errors import ConfirmationNotFoundError
from ..core.models import ChatTurn, Role, dumps_compact
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics


logger = get_logger(__name__)

# Unresolved confirmations older than this are dropped
DEFAULT_CONFIRMATION_TTL = 900.0


# ============================================================
# Types
# ============================================================

class ToolState(str, Enum):
    PROPOSED = "PROPOSED"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    EXECUTING = "EXECUTING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Resolution(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class ExecutionResult:
    """Outcome reported by a deployment executor."""
    success: bool
    result_summary: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


class DeploymentExecutor(ABC):
    """Performs a confirmed deployer action (create, stop or extend a job)."""

    @abstractmethod
    async def execute(self, action: str, arguments: Dict[str, Any]) -> ExecutionResult:
        """
        Run the action.

        Raises:
            Exception: any failure; the bridge reports it as a failed outcome
        """
        pass


def summarize_arguments(tool_name: str, arguments: Dict[str, Any]) -> str:
    """Human-readable one-line summary of a proposed call."""
    if not arguments:
        return tool_name
    parts = []
    for key, value in arguments.items():
        if value in (None, "", [], {}):
            continue
        if isinstance(value, (dict, list)):
            value = dumps_compact(value)
        text = str(value)
        if len(text) > 80:
            text = text[:77] + "..."
        parts.append(f"{key}={text}")
    return f"{tool_name}({', '.join(parts)})"


@dataclass
class PendingToolConfirmation:
    """An agentic tool call awaiting human approval."""
    tool_name: str
    arguments: Dict[str, Any]
    summary: str
    session_key: str
    prompt: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"confirm_{uuid.uuid4().hex[:24]}")
    state: ToolState = ToolState.PROPOSED
    resolution: Resolution = Resolution.PENDING
    created_at: float = field(default_factory=time.time)

    def to_wire(self) -> Dict[str, Any]:
        """Payload of the toolExecute frame."""
        return {
            "id": self.id,
            "toolname": self.tool_name,
            "args": self.arguments,
            "prompt": self.prompt,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "toolname": self.tool_name,
            "args": self.arguments,
            "summary": self.summary,
            "state": self.state.value,
            "resolution": self.resolution.value,
        }


@dataclass
class FollowUpTurn:
    """Synthetic conversation turn carrying a confirmation outcome back to the model."""
    kind: Resolution
    tool_name: str
    session_key: str
    detail: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> str:
        if self.kind == Resolution.APPROVED:
            return (
                f"[{self.tool_name} approved] The user approved the {self.tool_name} request "
                f"and it completed. Result: {self.detail}. Explain the outcome to the user."
            )
        if self.kind == Resolution.FAILED:
            return (
                f"[{self.tool_name} failed] The user approved the {self.tool_name} request "
                f"but it failed. Error: {self.detail}. Explain what went wrong and how to fix it."
            )
        return (
            f"[{self.tool_name} cancelled] The user cancelled the {self.tool_name} request. "
            "Nothing was executed. Acknowledge briefly and ask what to do next."
        )

    def to_chat_turn(self) -> ChatTurn:
        return ChatTurn(role=Role.USER, content=self.content)


# ============================================================
# Bridge
# ============================================================

class ToolExecutionBridge:
    """
    Holds pending confirmations and runs their continuations.

    Shared by all sessions of the process; confirmations are keyed by id and
    indexed by session key. Confirmations left unresolved for `ttl_seconds`
    are dropped and behave like unknown ids.
    """

    def __init__(
        self,
        executor: DeploymentExecutor,
        ttl_seconds: float = DEFAULT_CONFIRMATION_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.executor = executor
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._pending: Dict[str, PendingToolConfirmation] = {}
        self._by_session: Dict[str, str] = {}

    def _evict_expired(self):
        cutoff = self.clock() - self.ttl_seconds
        # Insertion order is creation order
        while self._pending:
            confirmation_id, pending = next(iter(self._pending.items()))
            if pending.created_at > cutoff:
                break
            del self._pending[confirmation_id]
            if self._by_session.get(pending.session_key) == confirmation_id:
                del self._by_session[pending.session_key]
            pending.state = ToolState.CANCELLED
            pending.resolution = Resolution.CANCELLED
            get_metrics().record_tool_confirmation(pending.tool_name, "expired")
            logger.info(
                "Tool proposal expired",
                confirmation_id=confirmation_id,
                tool=pending.tool_name,
                session_key=pending.session_key,
            )

    def propose(
        self,
        session_key: str,
        tool_name: str,
        arguments: Dict[str, Any],
        prompt: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PendingToolConfirmation:
        """
        Register a proposed action. Never executes it.

        Any unresolved proposal for the same session is cancelled and removed.
        """
        self._evict_expired()
        previous_id = self._by_session.pop(session_key, None)
        if previous_id is not None:
            previous = self._pending.pop(previous_id, None)
            if previous is not None:
                previous.state = ToolState.CANCELLED
                previous.resolution = Resolution.CANCELLED
                get_metrics().record_tool_confirmation(previous.tool_name, "superseded")
                logger.info(
                    "Tool proposal superseded",
                    confirmation_id=previous.id,
                    tool=previous.tool_name,
                    session_key=session_key,
                )

        pending = PendingToolConfirmation(
            tool_name=tool_name,
            arguments=dict(arguments),
            summary=summarize_arguments(tool_name, arguments),
            session_key=session_key,
            prompt=prompt,
            metadata=dict(metadata or {}),
            created_at=self.clock(),
        )
        pending.state = ToolState.AWAITING_CONFIRMATION
        self._pending[pending.id] = pending
        self._by_session[session_key] = pending.id

        logger.info(
            "Tool proposed",
            confirmation_id=pending.id,
            tool=tool_name,
            session_key=session_key,
        )
        return pending

    def get(self, confirmation_id: str) -> PendingToolConfirmation:
        """
        Raises:
            ConfirmationNotFoundError: unknown, superseded, expired or resolved id
        """
        self._evict_expired()
        pending = self._pending.get(confirmation_id)
        if pending is None:
            raise ConfirmationNotFoundError(confirmation_id)
        return pending

    def pending_for(self, session_key: str) -> Optional[PendingToolConfirmation]:
        self._evict_expired()
        confirmation_id = self._by_session.get(session_key)
        return self._pending.get(confirmation_id) if confirmation_id else None

    def _take(self, confirmation_id: str) -> PendingToolConfirmation:
        pending = self.get(confirmation_id)
        del self._pending[confirmation_id]
        if self._by_session.get(pending.session_key) == confirmation_id:
            del self._by_session[pending.session_key]
        return pending

    async def confirm(self, confirmation_id: str) -> FollowUpTurn:
        """
        Execute the confirmed action and return the follow-up turn.

        Executor failures are reported as a `failed` follow-up.
        """
        pending = self._take(confirmation_id)
        pending.state = ToolState.EXECUTING

        try:
            result = await self.executor.execute(pending.tool_name, pending.arguments)
        except Exception as e:
            pending.state = ToolState.FAILED
            pending.resolution = Resolution.FAILED
            logger.exception(
                "Confirmed tool failed",
                confirmation_id=pending.id,
                tool=pending.tool_name,
            )
            get_metrics().record_tool_confirmation(pending.tool_name, Resolution.FAILED.value)
            return FollowUpTurn(
                Resolution.FAILED, pending.tool_name, pending.session_key, str(e), pending.metadata
            )

        if result.success:
            pending.state = ToolState.SUCCEEDED
            pending.resolution = Resolution.APPROVED
        else:
            pending.state = ToolState.FAILED
            pending.resolution = Resolution.FAILED

        logger.info(
            "Confirmed tool executed",
            confirmation_id=pending.id,
            tool=pending.tool_name,
            resolution=pending.resolution.value,
        )
        get_metrics().record_tool_confirmation(pending.tool_name, pending.resolution.value)
        return FollowUpTurn(
            pending.resolution,
            pending.tool_name,
            pending.session_key,
            result.result_summary,
            pending.metadata,
        )

    async def cancel(self, confirmation_id: str) -> FollowUpTurn:
        """Resolve as cancelled. The executor is never called."""
        pending = self._take(confirmation_id)
        pending.state = ToolState.CANCELLED
        pending.resolution = Resolution.CANCELLED

        logger.info("Tool cancelled", confirmation_id=pending.id, tool=pending.tool_name)
        get_metrics().record_tool_confirmation(pending.tool_name, Resolution.CANCELLED.value)
        return FollowUpTurn(
            Resolution.CANCELLED, pending.tool_name, pending.session_key, metadata=pending.metadata
        )

    def __len__(self) -> int:
        return len(self._pending)
