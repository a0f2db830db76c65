"""
askstream Adapters Module

Generation strategies, one per backend family, all yielding the uniform
StreamEvent sequence consumed by the session.
"""

from .base import (
    AdapterConfig,
    GenerationInput,
    GenerationStrategy,
    HttpStrategy,
    Messages,
    iter_sse_data,
)
from .gemini import GeminiReasoningStrategy, GeminiStrategy
from .openai_compat import OpenAICompatibleStrategy, SelfHostedStrategy
from .agentic import AgenticStrategy
from .canned import CannedStrategy
from .stub import StubStrategy
from .registry import StrategyRegistry, build_registry

__all__ = [
    "AdapterConfig",
    "GenerationInput",
    "GenerationStrategy",
    "HttpStrategy",
    "Messages",
    "iter_sse_data",
    "GeminiStrategy",
    "GeminiReasoningStrategy",
    "OpenAICompatibleStrategy",
    "SelfHostedStrategy",
    "AgenticStrategy",
    "CannedStrategy",
    "StubStrategy",
    "StrategyRegistry",
    "build_registry",
]
