"""
askstream - Agentic Strategy

Deployer mode: a planner model on an OpenAI-compatible endpoint calls
deployer tools for up to MAX_STEPS steps.

Read-only tools run inside the loop and their outputs go back to the
planner. Actionable tools (createJob, extendJobRuntime, stopJob) are only
prepared; a prepared action ends the loop so the session can hand it to the
ToolExecutionBridge.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

from ..core.config import DEFAULT_PLANNER_MODEL
from ..core.models import AGENTIC_THROTTLE, Role, StrategyKind, StreamEvent, dumps_compact
from ..observability.logging import get_logger
from ..observability.tracing import trace_upstream_call
from ..services.deployer import DeployerToolbox
from ..streaming.tool_calls import ToolCallStreamTracker
from ..tools.names import ToolStartFilter
from ..tools.schema import ACTIONABLE_TOOLS, openai_tools
from .base import AdapterConfig, GenerationInput, Messages, iter_sse_data
from .openai_compat import OpenAICompatibleStrategy


logger = get_logger(__name__)

MAX_STEPS = 6
HISTORY_TURNS = 10

DEPLOYER_SYSTEM = """You are **NosanaDeploy**, a deployment agent for Nosana's decentralized GPU network.

{wallet}

Core Ops:
- Tools: createJob, extendJobRuntime, stopJob, getWalletBalance, getJob, getAllJobs, estimateJobCost, getMarket, listGpuMarkets, getModels, suggest_model_market.
- Always include userPublicKey="{wallet_key}" where needed.

Handling requests:
1. If the user says "deploy X" -> createJob(model="X", requirements="deploy X with defaults").
2. For custom services -> createJob with detailed requirements.
3. createJob, extendJobRuntime and stopJob are only prepared; the user approves them separately.

Behavior:
- Be concise, technical, and adaptive.
- Never dump raw tool output; interpret and summarize.
- Ask only if necessary (e.g., missing runtime).
- Use past tool results as context for the next action.
- In responses from tools use a human tone rather than pasting tool output as it is."""


def deployer_system_prompt(wallet: Optional[str], custom_prompt: Optional[str] = None) -> str:
    if wallet:
        wallet_line = f"**Wallet:** {wallet}\nUse this as userPublicKey in all Nosana ops."
    else:
        wallet_line = "**No wallet connected.** Require wallet for deploy ops."
    text = DEPLOYER_SYSTEM.format(wallet=wallet_line, wallet_key=wallet or "WALLET_REQUIRED")
    if custom_prompt:
        text = f"{text}\n{custom_prompt}"
    return text


class AgenticStrategy(OpenAICompatibleStrategy):
    """
    Tool-calling planner loop.

    Emits TOOL_START when a resolved tool is about to run and TOOL_RESULT
    with its output. A TOOL_RESULT whose output carries `tool_execute` for an
    actionable tool is a proposal, never an executed action.
    """

    kind = StrategyKind.AGENTIC
    provider = "planner"
    supports_retry = True
    throttle = AGENTIC_THROTTLE

    def __init__(
        self,
        config: AdapterConfig,
        toolbox: DeployerToolbox,
        planner_model: Optional[str] = None,
        max_steps: int = MAX_STEPS,
    ):
        super().__init__(config)
        self.toolbox = toolbox
        self.planner_model = planner_model
        self.max_steps = max_steps

    def model_for(self, gen: GenerationInput) -> str:
        return self.planner_model or gen.route.model_name or DEFAULT_PLANNER_MODEL

    def build_messages(self, gen: GenerationInput) -> Messages:
        request = gen.request
        messages: Messages = [{
            "role": "system",
            "content": deployer_system_prompt(request.wallet_public_key, request.custom_prompt),
        }]
        for turn in request.chats[-HISTORY_TURNS:]:
            if not turn.content:
                continue
            role = "assistant" if turn.role == Role.MODEL else "user"
            messages.append({"role": role, "content": turn.content})
        messages.append({"role": "user", "content": request.query or ""})
        return messages

    def _step_payload(self, gen: GenerationInput, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "model": self.model_for(gen),
            "messages": messages,
            "stream": True,
            "tools": openai_tools(),
            "tool_choice": "auto",
        }

    async def _open_step(self, gen: GenerationInput, messages: List[Dict[str, Any]]):
        with trace_upstream_call(self.provider, self.model_for(gen), "tool_step"):
            return await self._open_stream(
                "/chat/completions",
                self._step_payload(gen, messages),
                gen,
                headers=self._headers(gen, slot="planner"),
            )

    async def open(self, gen: GenerationInput, messages: Messages) -> AsyncIterator[StreamEvent]:
        conversation: List[Dict[str, Any]] = [dict(m) for m in messages]
        response = await self._open_step(gen, conversation)
        logger.info("Planner stream opened", model=self.model_for(gen), max_steps=self.max_steps)
        return self._run(gen, conversation, response)

    async def _run(
        self,
        gen: GenerationInput,
        conversation: List[Dict[str, Any]],
        response,
    ) -> AsyncIterator[StreamEvent]:
        start_filter = ToolStartFilter()
        wallet = gen.request.wallet_public_key

        for step in range(self.max_steps):
            tracker = ToolCallStreamTracker()
            step_text = ""

            async for chunk in iter_sse_data(response, self.provider, gen.signal, gen.request_id):
                choices = chunk.get("choices") or []
                if not choices:
                    continue
                delta = choices[0].get("delta") or {}

                reasoning = delta.get("reasoning") or delta.get("reasoning_content")
                if reasoning:
                    yield StreamEvent.reasoning(reasoning)
                content = delta.get("content")
                if content:
                    step_text += content
                    yield StreamEvent.text(content)
                for tool_delta in delta.get("tool_calls") or []:
                    tracker.update_from_delta(tool_delta)

            if gen.signal.cancelled or not tracker.has_calls():
                break

            calls = tracker.finalize()
            conversation.append({
                "role": "assistant",
                "content": step_text or None,
                "tool_calls": [call.to_dict() for call in calls],
            })

            proposed = False
            for call in calls:
                resolved = start_filter.accept(call.function_name)
                if not resolved.valid:
                    if resolved.sanitized:
                        logger.warning("Skipping duplicate sanitized tool start", raw_tool=resolved.raw, tool=resolved.name)
                    else:
                        logger.warning("Ignoring unknown tool name from model", raw_tool=resolved.raw)
                    output: Dict[str, Any] = {"error": f"Unknown or duplicate tool: {call.function_name}"}
                    conversation.append(_tool_message(call.id, output))
                    continue
                if resolved.sanitized:
                    logger.warning("Sanitized malformed tool name", raw_tool=resolved.raw, tool=resolved.name)

                yield StreamEvent.tool_start(resolved.name, call.id)

                try:
                    arguments = call.parsed_arguments()
                except ValueError as e:
                    logger.warning("Invalid tool-call arguments", tool=resolved.name, error=str(e))
                    output = {"error": f"Failed to parse tool call arguments as JSON: {e}"}
                    conversation.append(_tool_message(call.id, output))
                    continue

                if wallet and "userPublicKey" not in arguments:
                    arguments["userPublicKey"] = wallet

                output = await self.toolbox.call(resolved.name, arguments)
                yield StreamEvent.tool_result(resolved.name, output, arguments, call.id)
                conversation.append(_tool_message(call.id, output))

                if resolved.name in ACTIONABLE_TOOLS and output.get("tool_execute"):
                    proposed = True

            if proposed:
                logger.info("Planner loop suspended on proposal", step=step + 1)
                break
            if step + 1 >= self.max_steps:
                logger.info("Planner step limit reached", max_steps=self.max_steps)
                break

            response = await self._open_step(gen, conversation)

        yield StreamEvent.end()


def _tool_message(call_id: Optional[str], output: Dict[str, Any]) -> Dict[str, Any]:
    return {"role": "tool", "tool_call_id": call_id or "", "content": dumps_compact(output)}


def create_agentic_strategy(
    base_url: str,
    toolbox: DeployerToolbox,
    api_key: Optional[str] = None,
    planner_model: Optional[str] = None,
    timeout: float = 60.0,
    transport=None,
) -> AgenticStrategy:
    """Factory used by the strategy registry."""
    return AgenticStrategy(
        AdapterConfig(api_key=api_key, base_url=base_url, timeout=timeout, transport=transport),
        toolbox=toolbox,
        planner_model=planner_model,
    )
