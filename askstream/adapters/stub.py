"""
askstream - Stub Strategy

Deterministic in-process strategy used for local mode and smoke tests.
No network calls, no provider keys required.
"""

from typing import AsyncIterator, List, Optional, Sequence

from ..core.models import Completion, DEFAULT_THROTTLE, StrategyKind, StreamEvent, ThrottleConfig
from .base import GenerationInput, GenerationStrategy, Messages


STUB_RESPONSE = "stub: deterministic response"


class StubStrategy(GenerationStrategy):
    """
    Yields a fixed chunk sequence.

    Chunks may contain markers (e.g. "<think>") to exercise the parser.
    """

    provider = "stub"

    def __init__(
        self,
        kind: StrategyKind = StrategyKind.HOSTED,
        chunks: Optional[Sequence[str]] = None,
        throttle: ThrottleConfig = DEFAULT_THROTTLE,
    ):
        self.kind = kind
        self.chunks: List[str] = list(chunks) if chunks is not None else ["stub: ", "deterministic ", "response"]
        self.throttle = throttle

    def build_messages(self, gen: GenerationInput) -> Messages:
        return [
            {"role": "system", "content": "stub"},
            {"role": "user", "content": f"userQuery: {gen.request.query}"},
        ]

    async def open(self, gen: GenerationInput, messages: Messages) -> AsyncIterator[StreamEvent]:
        return self._events(gen)

    async def _events(self, gen: GenerationInput) -> AsyncIterator[StreamEvent]:
        for chunk in self.chunks:
            if gen.signal.cancelled:
                return
            yield StreamEvent.text(chunk)
        yield StreamEvent.end()

    async def complete(self, gen: GenerationInput, messages: Messages) -> Completion:
        return Completion(text=STUB_RESPONSE)
