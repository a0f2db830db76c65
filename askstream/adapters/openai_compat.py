"""
askstream - OpenAI-Compatible Strategy

Self-hosted generation over an OpenAI-compatible /chat/completions
endpoint. Reasoning deltas arrive in `delta.reasoning` and answer deltas in
`delta.content`; both are forwarded as separate events.
"""

from typing import Any, AsyncIterator, Dict, Optional

from ..core.models import (
    Completion,
    SELF_HOSTED_THROTTLE,
    StrategyKind,
    StreamEvent,
)
from ..core.prompts import build_messages, system_instruction
from ..observability.logging import get_logger
from ..observability.tracing import trace_upstream_call
from .base import AdapterConfig, GenerationInput, HttpStrategy, Messages, iter_sse_data


logger = get_logger(__name__)


class OpenAICompatibleStrategy(HttpStrategy):
    """Shared payload and header handling for OpenAI-style endpoints."""

    provider = "openai-compatible"

    def _headers(self, gen: GenerationInput, slot: str = "self_hosted") -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = gen.api_key(slot, self.config.api_key)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _payload(self, gen: GenerationInput, messages: Messages, stream: bool) -> Dict[str, Any]:
        params = gen.request.params
        payload: Dict[str, Any] = {
            "model": gen.route.upstream_model,
            "messages": messages,
            "stream": stream,
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            "top_p": params.top_p,
        }
        capability = gen.route.capability
        if not (capability and capability.no_penalty):
            if params.presence_penalty:
                payload["presence_penalty"] = params.presence_penalty
            if params.frequency_penalty:
                payload["frequency_penalty"] = params.frequency_penalty
        if params.stop:
            payload["stop"] = params.stop
        return payload


class SelfHostedStrategy(OpenAICompatibleStrategy):
    """
    Streaming generation against a self-hosted inference endpoint.

    Self-hosted models cold-start, so open() is retried by the session when
    the upstream reports it is still loading.
    """

    kind = StrategyKind.SELF_HOSTED
    provider = "self-hosted"
    supports_retry = True
    throttle = SELF_HOSTED_THROTTLE

    def build_messages(self, gen: GenerationInput) -> Messages:
        request = gen.request
        capability = gen.route.capability
        with_think = bool(request.thinking and capability and capability.supports_reasoning)
        system = system_instruction(request, with_think_protocol=with_think)
        return build_messages(request, system, gen.context, model_role="assistant")

    def _timeout(self, gen: GenerationInput) -> Optional[float]:
        capability = gen.route.capability
        return capability.timeout_seconds if capability else None

    async def open(self, gen: GenerationInput, messages: Messages) -> AsyncIterator[StreamEvent]:
        payload = self._payload(gen, messages, stream=True)
        with trace_upstream_call(self.provider, gen.route.upstream_model, "stream"):
            response = await self._open_stream(
                "/chat/completions",
                payload,
                gen,
                headers=self._headers(gen),
                timeout=self._timeout(gen),
            )
        logger.debug(
            "Upstream stream opened",
            provider=self.provider,
            model=gen.route.upstream_model,
            request_id=gen.request_id,
        )
        return self._events(response, gen)

    async def _events(self, response, gen: GenerationInput) -> AsyncIterator[StreamEvent]:
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
                yield StreamEvent.text(content)

        yield StreamEvent.end()

    async def complete(self, gen: GenerationInput, messages: Messages) -> Completion:
        payload = self._payload(gen, messages, stream=False)
        with trace_upstream_call(self.provider, gen.route.upstream_model, "complete"):
            data = await self._post_json(
                "/chat/completions",
                payload,
                gen,
                headers=self._headers(gen),
                timeout=self._timeout(gen),
            )

        choices = data.get("choices") or []
        if not choices:
            return Completion()
        message = choices[0].get("message") or {}
        return Completion(
            text=message.get("content") or "",
            reasoning=message.get("reasoning") or message.get("reasoning_content") or "",
        )


def create_self_hosted_strategy(
    base_url: str,
    api_key: Optional[str] = None,
    timeout: float = 30.0,
    transport=None,
) -> SelfHostedStrategy:
    """Factory used by the strategy registry."""
    return SelfHostedStrategy(AdapterConfig(
        api_key=api_key,
        base_url=base_url,
        timeout=timeout,
        transport=transport,
    ))
