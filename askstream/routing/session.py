"""
askstream - Request Session

Orchestrates one ask request end to end:

1. Dispatch to a generation strategy (invalid configuration is terminal)
2. Optional web search; failures become a warning frame
3. Open the strategy under RetryPolicy when it supports retry
4. Feed events through TagStreamParser -> ThrottledEmitter
5. One non-streaming fallback on silent success
6. Finalize in a finally block: flush, drain, companions, exactly one
   terminal message, Duration, closing frame

Wire ordering: content -> companions -> error frame or `event: aborted`
-> Duration -> closing `event: ""`.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from ..adapters.base import GenerationInput, GenerationStrategy, Messages
from ..adapters.registry import StrategyRegistry
from ..core.catalog import CapabilityTable, DEFAULT_CAPABILITIES, DEPLOYER_MODE
from ..core.errors import RequestCancelledError, UpstreamError, error_frame_payload
from ..core.models import (
    AskRequest,
    Channel,
    EventKind,
    SessionOutcome,
    StrategyKind,
    StreamEvent,
    ThrottleConfig,
    dumps_compact,
)
from ..observability.logging import LogContext, get_logger
from ..observability.metrics import get_metrics
from ..observability.tracing import trace_session
from ..services.companions import SessionCompanions
from ..services.search import SearchPlan, SearchProvider, SearchQueryPlanner
from ..streaming.cancellation import CancellationSignal
from ..streaming.emitter import SleepFn, ThrottledEmitter
from ..streaming.parser import Segment, TagStreamParser
from ..streaming.sse import (
    EVENT_DURATION,
    EVENT_ERROR,
    EVENT_FINAL_RESULT,
    EVENT_FOLLOW_UP,
    EVENT_LLM_PROMPT,
    EVENT_SEARCH_RESULT,
    EVENT_STATUS,
    EVENT_THREAD_TITLE,
    EVENT_TOOL_EXECUTE,
    EVENT_TOOLS_USED,
    EVENT_WARNING,
    SSEChannel,
    STATUS_ABORTED,
    STATUS_SEARCHING,
    STATUS_STREAMING,
    STATUS_THINKING,
)
from ..tools.bridge import PendingToolConfirmation, ToolExecutionBridge
from ..tools.schema import ACTIONABLE_TOOLS
from .dispatcher import Route, dispatch
from .retry import RetryAttempt, RetryPolicy


logger = get_logger(__name__)

SEARCH_KINDS = frozenset({StrategyKind.HOSTED, StrategyKind.HOSTED_REASONING, StrategyKind.SELF_HOSTED})


def proposal_fallback_text(tool_name: str) -> str:
    return f"Prepared {tool_name} request. Review the generated configuration and approve to continue."


@dataclass
class SessionDependencies:
    """Collaborators shared by every session of the process."""
    registry: StrategyRegistry
    capabilities: CapabilityTable = DEFAULT_CAPABILITIES
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    search_provider: Optional[SearchProvider] = None
    search_planner: Optional[SearchQueryPlanner] = None
    companions: Optional[SessionCompanions] = None
    bridge: Optional[ToolExecutionBridge] = None
    emitter_sleep: Optional[SleepFn] = None


@dataclass
class SessionResult:
    """What the session produced; used by the route for credits and history."""
    session_id: str
    outcome: SessionOutcome
    text: str = ""
    reasoning: str = ""
    duration_ms: float = 0.0
    route: Optional[Route] = None
    error: Optional[BaseException] = None
    tools_used: List[str] = field(default_factory=list)
    confirmation: Optional[PendingToolConfirmation] = None


class RequestSession:
    """
    One request's lifecycle. Owns its parser, emitter and cancellation
    signal; nothing here is shared with other sessions.

    Usage:
        channel = SSEChannel()
        session = RequestSession(request, deps, channel, signal)
        task = asyncio.create_task(session.run())
        async for frame in channel.frames():
            ...
    """

    def __init__(
        self,
        request: AskRequest,
        deps: SessionDependencies,
        channel: SSEChannel,
        signal: Optional[CancellationSignal] = None,
        session_id: Optional[str] = None,
        request_id: str = "",
        throttle: Optional[ThrottleConfig] = None,
    ):
        self.request = request
        self.deps = deps
        self.channel = channel
        self.signal = signal or CancellationSignal()
        self.session_id = session_id or f"sess_{uuid.uuid4().hex[:16]}"
        self.request_id = request_id
        self.throttle_override = throttle

        self.route: Optional[Route] = None
        self.strategy: Optional[GenerationStrategy] = None
        self.parser: Optional[TagStreamParser] = None
        self.emitter: Optional[ThrottledEmitter] = None

        self.outcome = SessionOutcome.COMPLETED
        self.error: Optional[BaseException] = None
        self.started_at: Optional[float] = None

        self._text: List[str] = []
        self._reasoning: List[str] = []
        self._tools_used: List[str] = []
        self._confirmation: Optional[PendingToolConfirmation] = None
        self._last_channel: Optional[Channel] = None
        self._flushed = False
        self._companion_tasks: List[asyncio.Task] = []

    # ============================================================
    # Public API
    # ============================================================

    @property
    def session_key(self) -> str:
        """Scope of last-proposal-wins for tool confirmations."""
        return self.request.thread_id or self.request.chat_id or self.session_id

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def reasoning(self) -> str:
        return "".join(self._reasoning)

    async def run(self) -> SessionResult:
        """
        Run the session to completion. Never raises for upstream failures;
        they become the terminal error frame.
        """
        metrics = get_metrics()
        self.started_at = time.perf_counter()

        ctx = LogContext.get_current()
        if ctx:
            ctx.update(session_id=self.session_id, model=self.request.model)

        with metrics.track_active_session(), trace_session("", self.request.model, self.session_id) as span:
            try:
                await self._execute(span)
                if self.signal.cancelled:
                    self.outcome = SessionOutcome.ABORTED
            except asyncio.CancelledError:
                self.signal.cancel("session task cancelled")
                self.outcome = SessionOutcome.ABORTED
                await self._finalize()
                raise
            except RequestCancelledError:
                self.outcome = SessionOutcome.ABORTED
            except Exception as e:
                if self.signal.cancelled:
                    self.outcome = SessionOutcome.ABORTED
                else:
                    self.outcome = SessionOutcome.ERROR
                    self.error = e
                    logger.warning(
                        "Session failed",
                        error_type=type(e).__name__,
                        error=str(e),
                    )
            finally:
                if not self.channel.closed:
                    await self._finalize()
            span.set_attribute("askstream.outcome", self.outcome.value)

        return SessionResult(
            session_id=self.session_id,
            outcome=self.outcome,
            text=self.text,
            reasoning=self.reasoning,
            duration_ms=self._elapsed_ms(),
            route=self.route,
            error=self.error,
            tools_used=list(self._tools_used),
            confirmation=self._confirmation,
        )

    # ============================================================
    # Lifecycle
    # ============================================================

    async def _execute(self, span):
        request = self.request

        self.route = dispatch(request.mode, request.model, request.thinking, self.deps.capabilities)
        self.strategy = self.deps.registry.get(self.route.kind)
        kind = self.route.kind.value

        span.set_attribute("askstream.strategy", kind)
        ctx = LogContext.get_current()
        if ctx:
            ctx.update(strategy=kind)
        logger.info("Strategy selected", strategy=kind, upstream_model=self.route.upstream_model)

        self.emitter = ThrottledEmitter(
            self.channel.send,
            self.throttle_override or self.strategy.throttle,
            self.signal,
            self.deps.emitter_sleep,
        )

        gen = GenerationInput(
            request=request,
            route=self.route,
            signal=self.signal,
            request_id=self.request_id,
        )
        self.parser = TagStreamParser(markers=self.strategy.markers_for(gen))

        self._start_companions()

        if request.websearch and self.route.kind in SEARCH_KINDS:
            await self._search(gen)
        if self.signal.cancelled:
            return

        messages = self.strategy.build_messages(gen)
        await self.emitter.send_now(EVENT_LLM_PROMPT, dumps_compact(messages))

        events = await self._open(gen, messages)
        await self._consume(events)
        if self.signal.cancelled:
            return

        await self._flush_parser()

        if self._is_silent() and self.strategy.supports_fallback:
            await self._fallback(gen, messages)

        if self.route.kind == StrategyKind.AGENTIC:
            await self._finish_agentic()
        elif self._is_silent():
            raise UpstreamError(
                provider=self.strategy.provider,
                status_code=502,
                message="Upstream returned an empty response",
                request_id=self.request_id,
            )

    async def _search(self, gen: GenerationInput):
        provider = self.deps.search_provider
        if provider is None:
            await self.emitter.send_now(
                EVENT_WARNING,
                dumps_compact({"message": "Search is not configured, continuing without search results"}),
            )
            return

        await self.emitter.send_now(EVENT_STATUS, STATUS_SEARCHING)
        try:
            if self.deps.search_planner is not None:
                plan = await self.deps.search_planner.plan(
                    self.request.query,
                    self.request.chats,
                    api_key=self.request.api_keys.get("gemini"),
                )
            else:
                plan = SearchPlan(query=self.request.query)
            response = await provider.search(plan, api_key=self.request.api_keys.get("tavily"))
        except Exception as e:
            logger.warning("Search failed, continuing without search results", error=str(e))
            await self.emitter.send_now(
                EVENT_WARNING,
                dumps_compact({
                    "message": "Search failed, continuing without search results",
                    "error": str(e),
                }),
            )
            return

        gen.context["webSearch"] = response.to_context()
        await self.emitter.send_now(
            EVENT_SEARCH_RESULT,
            dumps_compact([hit.to_dict() for hit in response.results]),
        )

    async def _open(self, gen: GenerationInput, messages: Messages) -> AsyncIterator[StreamEvent]:
        strategy = self.strategy
        if not strategy.supports_retry:
            return await strategy.open(gen, messages)

        async def on_retry(attempt: RetryAttempt):
            get_metrics().record_retry(strategy.kind.value)
            await self.emitter.send_now(EVENT_STATUS, attempt.status_message)

        return await self.deps.retry_policy.execute(
            lambda: strategy.open(gen, messages),
            on_retry=on_retry,
            signal=self.signal,
        )

    async def _consume(self, events: AsyncIterator[StreamEvent]):
        try:
            async for event in events:
                if self.signal.cancelled:
                    break
                if event.kind == EventKind.TEXT_DELTA:
                    for segment in self.parser.feed(event.payload):
                        await self._emit_segment(segment)
                    await self._report_parser_warnings()
                elif event.kind == EventKind.REASONING_DELTA:
                    await self._emit_segment(Segment(Channel.REASONING, event.payload))
                elif event.kind == EventKind.TOOL_START:
                    await self._on_tool_start(event.payload)
                elif event.kind == EventKind.TOOL_RESULT:
                    self._on_tool_result(event.payload)
                elif event.kind == EventKind.ERROR:
                    raise event.payload
                elif event.kind == EventKind.END:
                    break
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _fallback(self, gen: GenerationInput, messages: Messages):
        """Silent success: one non-streaming call, never repeated."""
        strategy = self.strategy
        get_metrics().record_fallback(strategy.kind.value)
        logger.info("Silent success, falling back to non-streaming call", strategy=strategy.kind.value)

        completion = await strategy.complete(gen, messages)
        if completion.reasoning:
            await self._emit_segment(Segment(Channel.REASONING, completion.reasoning))
        if completion.text:
            self._flushed = False
            for segment in self.parser.feed(completion.text):
                await self._emit_segment(segment)
            await self._flush_parser()

    async def _finish_agentic(self):
        final_text = self.text.strip()
        if not final_text and self._confirmation is not None:
            final_text = proposal_fallback_text(self._confirmation.tool_name)
            await self._emit_segment(Segment(Channel.ANSWER, final_text))

        await self.emitter.send_now(EVENT_TOOLS_USED, dumps_compact(self._tools_used))
        await self.emitter.send_now(EVENT_FINAL_RESULT, final_text)
        if self._confirmation is not None:
            await self.emitter.send_now(EVENT_TOOL_EXECUTE, dumps_compact(self._confirmation.to_wire()))

    async def _finalize(self):
        """Runs on every exit path. Sends exactly one terminal message."""
        try:
            if self.outcome == SessionOutcome.ERROR and self.parser is not None and not self._flushed:
                await self._flush_parser()
            if self.emitter is not None:
                await self.emitter.drain()

            await self._settle_companions()

            if self.outcome == SessionOutcome.ERROR:
                await self.channel.send(EVENT_ERROR, dumps_compact(error_frame_payload(self.error)))
            elif self.outcome == SessionOutcome.ABORTED:
                await self.channel.send(EVENT_STATUS, STATUS_ABORTED)

            duration_ms = self._elapsed_ms()
            await self.channel.send(EVENT_DURATION, f"{duration_ms:.2f}")

            kind = self.route.kind.value if self.route else "none"
            get_metrics().record_session(kind, self.outcome.value, duration_ms / 1000)
            logger.info(
                "Session finished",
                outcome=self.outcome.value,
                duration_ms=round(duration_ms, 2),
                slices=self.emitter.slices_sent if self.emitter else 0,
            )
        finally:
            await self.channel.close()

    # ============================================================
    # Emission helpers
    # ============================================================

    async def _emit_segment(self, segment: Segment):
        if not segment.text or self.signal.cancelled:
            return

        channel = Channel.ANSWER if segment.channel == Channel.TOOL else segment.channel
        if channel != self._last_channel:
            status = STATUS_THINKING if channel == Channel.REASONING else STATUS_STREAMING
            await self.emitter.send_now(EVENT_STATUS, status)
            self._last_channel = channel

        event = segment.event
        sent = await self.emitter.emit(event, segment.text)
        emitted = segment.text[: sent * self.emitter.config.chunk_size]
        if segment.channel == Channel.REASONING:
            self._reasoning.append(emitted)
        else:
            self._text.append(emitted)

    async def _flush_parser(self):
        if self._flushed or self.parser is None:
            return
        self._flushed = True
        for segment in self.parser.flush():
            await self._emit_segment(segment)
        await self._report_parser_warnings()

    async def _report_parser_warnings(self):
        for warning in self.parser.take_warnings():
            get_metrics().record_parser_warning(warning.kind.value)
            logger.warning("Parser warning", kind=warning.kind.value, detail=warning.message)
            await self.emitter.send_now(
                EVENT_WARNING,
                dumps_compact({"message": warning.message, "kind": warning.kind.value}),
            )

    # ============================================================
    # Agentic tool events
    # ============================================================

    async def _on_tool_start(self, payload: Dict[str, Any]):
        name = payload.get("toolName", "")
        if name and name not in self._tools_used:
            self._tools_used.append(name)
        await self.emitter.send_now(EVENT_STATUS, f"executing: {name}")

    def _on_tool_result(self, payload: Dict[str, Any]):
        name = payload.get("toolName", "")
        output = payload.get("output")
        if name not in ACTIONABLE_TOOLS or not isinstance(output, dict) or not output.get("tool_execute"):
            return

        bridge = self.deps.bridge
        if bridge is None:
            logger.warning("Actionable tool proposed without a confirmation bridge", tool=name)
            return

        self._confirmation = bridge.propose(
            self.session_key,
            name,
            output.get("args") or payload.get("args") or {},
            prompt=output.get("prompt"),
            metadata={
                "model": self.request.model,
                "wallet_public_key": self.request.wallet_public_key,
                "thread_id": self.request.thread_id,
                "chat_id": self.request.chat_id,
                "chats": [turn.to_dict() for turn in self.request.chats]
                + [{"role": "user", "content": self.request.query}],
            },
        )

    # ============================================================
    # Companions
    # ============================================================

    def _start_companions(self):
        companions = self.deps.companions
        if companions is None:
            return
        request = self.request
        if not request.chats:
            self._companion_tasks.append(asyncio.create_task(self._send_title(companions)))
        if request.follow_up and request.mode != DEPLOYER_MODE:
            self._companion_tasks.append(asyncio.create_task(self._send_follow_ups(companions)))

    async def _send_title(self, companions: SessionCompanions):
        title = await companions.thread_title(self.request)
        if not self.signal.cancelled:
            await self.emitter.send_now(EVENT_THREAD_TITLE, title)

    async def _send_follow_ups(self, companions: SessionCompanions):
        questions = await companions.follow_ups(self.request)
        if not self.signal.cancelled:
            await self.emitter.send_now(EVENT_FOLLOW_UP, dumps_compact(questions))

    async def _settle_companions(self):
        """Await companions on success, cancel them otherwise."""
        if not self._companion_tasks:
            return
        if self.outcome != SessionOutcome.COMPLETED:
            for task in self._companion_tasks:
                task.cancel()
        results = await asyncio.gather(*self._companion_tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Companion task failed", error=str(result))
        self._companion_tasks = []

    # ============================================================
    # Misc
    # ============================================================

    def _is_silent(self) -> bool:
        return (
            not self.text.strip()
            and not self.reasoning.strip()
            and self._confirmation is None
            and not self._tools_used
        )

    def _elapsed_ms(self) -> float:
        if self.started_at is None:
            return 0.0
        return (time.perf_counter() - self.started_at) * 1000
