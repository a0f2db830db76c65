"""
askstream - Gemini Strategies

Hosted generation through the Gemini generateContent API.

- GeminiStrategy streams `:streamGenerateContent?alt=sse`. Parts flagged
  `"thought": true` are reasoning, everything else is answer text that may
  still carry <think> tags for the session parser.
- GeminiReasoningStrategy makes one non-streaming call with a thinking
  budget and yields the whole reasoning then the whole answer.
"""

from dataclasses import replace
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from ..core.errors import AuthOrQuotaError
from ..core.models import Completion, StrategyKind, StreamEvent
from ..core.prompts import build_messages, build_profile_messages, system_instruction
from ..observability.logging import get_logger
from ..observability.tracing import trace_upstream_call
from ..streaming.parser import AUTO_MARKERS, Marker
from .base import AdapterConfig, GenerationInput, HttpStrategy, Messages, iter_sse_data


logger = get_logger(__name__)

THINKING_BUDGET = 8192
REASONING_HISTORY_TURNS = 3


# ============================================================
# Wire conversion
# ============================================================

def to_gemini_contents(messages: Messages) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """
    Split a message list into (systemInstruction text, contents).

    System messages are joined; "assistant" maps to the Gemini "model" role.
    """
    system_parts: List[str] = []
    contents: List[Dict[str, Any]] = []
    for message in messages:
        role = message["role"]
        if role == "system":
            system_parts.append(message["content"])
            continue
        contents.append({
            "role": "model" if role in ("model", "assistant") else "user",
            "parts": [{"text": message["content"]}],
        })
    system = "\n\n".join(system_parts) if system_parts else None
    return system, contents


def extract_parts(data: Dict[str, Any]) -> Tuple[str, str]:
    """Return (answer_text, reasoning_text) from a generateContent body."""
    candidates = data.get("candidates") or []
    if not candidates:
        return "", ""
    parts = (candidates[0].get("content") or {}).get("parts") or []

    text: List[str] = []
    reasoning: List[str] = []
    for part in parts:
        value = part.get("text")
        if not value:
            continue
        if part.get("thought"):
            reasoning.append(value)
        else:
            text.append(value)
    return "".join(text), "".join(reasoning)


class GeminiStrategy(HttpStrategy):
    """Streaming hosted generation."""

    kind = StrategyKind.HOSTED
    provider = "gemini"

    def markers_for(self, gen: GenerationInput) -> Sequence[Marker]:
        if gen.route.prompt_profile == "auto":
            return AUTO_MARKERS
        return self.markers

    def build_messages(self, gen: GenerationInput) -> Messages:
        request = gen.request
        profile = gen.route.prompt_profile
        if profile:
            return build_profile_messages(request, profile, gen.context)

        capability = gen.route.capability
        with_think = bool(request.thinking and capability and capability.supports_reasoning)
        system = system_instruction(request, with_think_protocol=with_think)
        return build_messages(request, system, gen.context)

    def _payload(self, gen: GenerationInput, messages: Messages) -> Dict[str, Any]:
        system, contents = to_gemini_contents(messages)
        params = gen.request.params
        generation_config: Dict[str, Any] = {
            "temperature": params.temperature,
            "maxOutputTokens": params.max_tokens,
            "topP": params.top_p,
        }
        if params.stop:
            generation_config["stopSequences"] = params.stop

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    def _key(self, gen: GenerationInput) -> str:
        api_key = gen.api_key("gemini", self.config.api_key)
        if not api_key:
            raise AuthOrQuotaError(
                provider=self.provider,
                message="No Gemini API key configured",
                request_id=gen.request_id,
            )
        return api_key

    async def open(self, gen: GenerationInput, messages: Messages) -> AsyncIterator[StreamEvent]:
        model = gen.route.upstream_model
        url = f"/models/{model}:streamGenerateContent"
        with trace_upstream_call(self.provider, model, "stream"):
            response = await self._open_stream(
                f"{url}?key={self._key(gen)}&alt=sse",
                self._payload(gen, messages),
                gen,
            )
        logger.debug("Upstream stream opened", provider=self.provider, model=model)
        return self._events(response, gen)

    async def _events(self, response, gen: GenerationInput) -> AsyncIterator[StreamEvent]:
        async for chunk in iter_sse_data(response, self.provider, gen.signal, gen.request_id):
            text, reasoning = extract_parts(chunk)
            if reasoning:
                yield StreamEvent.reasoning(reasoning)
            if text:
                yield StreamEvent.text(text)
        yield StreamEvent.end()

    async def complete(self, gen: GenerationInput, messages: Messages) -> Completion:
        model = gen.route.upstream_model
        with trace_upstream_call(self.provider, model, "complete"):
            data = await self._post_json(
                f"/models/{model}:generateContent?key={self._key(gen)}",
                self._payload(gen, messages),
                gen,
            )
        text, reasoning = extract_parts(data)
        return Completion(text=text, reasoning=reasoning)


class GeminiReasoningStrategy(GeminiStrategy):
    """
    Hosted reasoning variant.

    Uses a short history window and native thinking output instead of the
    <think> protocol, so the prompt carries no think preamble.
    """

    kind = StrategyKind.HOSTED_REASONING

    def build_messages(self, gen: GenerationInput) -> Messages:
        request = replace(gen.request, chats=gen.request.chats[-REASONING_HISTORY_TURNS:])
        return build_messages(request, system_instruction(request), gen.context)

    def _payload(self, gen: GenerationInput, messages: Messages) -> Dict[str, Any]:
        payload = super()._payload(gen, messages)
        payload["generationConfig"]["thinkingConfig"] = {
            "thinkingBudget": THINKING_BUDGET,
            "includeThoughts": True,
        }
        return payload

    async def open(self, gen: GenerationInput, messages: Messages) -> AsyncIterator[StreamEvent]:
        completion = await self.complete(gen, messages)
        return self._replay(completion)

    async def _replay(self, completion: Completion) -> AsyncIterator[StreamEvent]:
        if completion.reasoning:
            yield StreamEvent.reasoning(completion.reasoning)
        if completion.text:
            yield StreamEvent.text(completion.text)
        yield StreamEvent.end()


def create_gemini_strategy(
    base_url: str,
    api_key: Optional[str] = None,
    reasoning: bool = False,
    timeout: float = 60.0,
    transport=None,
) -> GeminiStrategy:
    """Factory used by the strategy registry."""
    config = AdapterConfig(api_key=api_key, base_url=base_url, timeout=timeout, transport=transport)
    if reasoning:
        return GeminiReasoningStrategy(config)
    return GeminiStrategy(config)
