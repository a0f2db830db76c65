"""
askstream - Canned Strategy

Fixed-response modes under the "mode" namespace (deep, deep-research,
pro-search). No upstream call is made.
"""

from typing import AsyncIterator, Dict

from ..core.models import Completion, StrategyKind, StreamEvent
from .base import GenerationInput, GenerationStrategy, Messages


CANNED_RESPONSES: Dict[str, str] = {
    "deep": "the deep research result",
    "deep-research": "the deep research result",
    "pro-search": "pro search",
}


class CannedStrategy(GenerationStrategy):
    """Replays a fixed answer for the requested mode."""

    kind = StrategyKind.CANNED
    provider = "canned"

    def __init__(self, responses: Dict[str, str] = CANNED_RESPONSES):
        self.responses = responses

    def build_messages(self, gen: GenerationInput) -> Messages:
        return [{"role": "user", "content": gen.request.query}]

    def _text(self, gen: GenerationInput) -> str:
        return self.responses.get(gen.route.model_name, "")

    async def open(self, gen: GenerationInput, messages: Messages) -> AsyncIterator[StreamEvent]:
        return self._events(self._text(gen))

    async def _events(self, text: str) -> AsyncIterator[StreamEvent]:
        if text:
            yield StreamEvent.text(text)
        yield StreamEvent.end()

    async def complete(self, gen: GenerationInput, messages: Messages) -> Completion:
        return Completion(text=self._text(gen))
