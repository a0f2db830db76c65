"""
askstream - Strategy Registry

Builds one strategy per kind from Settings and hands them to sessions.
Strategies hold pooled HTTP clients and are shared across sessions.
"""

from typing import Dict, Optional

import httpx

from ..core.config import Settings
from ..core.models import StrategyKind
from ..services.deployer import DeployerToolbox, InMemoryDeployerToolbox
from .agentic import create_agentic_strategy
from .base import GenerationStrategy
from .canned import CannedStrategy
from .gemini import create_gemini_strategy
from .openai_compat import create_self_hosted_strategy
from .stub import StubStrategy


class StrategyRegistry:
    """Lookup of the strategy instance serving each StrategyKind."""

    def __init__(self, strategies: Dict[StrategyKind, GenerationStrategy]):
        self._strategies = dict(strategies)

    def get(self, kind: StrategyKind) -> GenerationStrategy:
        """
        Raises:
            KeyError: when no strategy is registered for the kind
        """
        return self._strategies[kind]

    def register(self, kind: StrategyKind, strategy: GenerationStrategy):
        self._strategies[kind] = strategy

    def kinds(self):
        return list(self._strategies)

    async def close(self):
        """Close every strategy's HTTP client."""
        for strategy in self._strategies.values():
            await strategy.close()


def build_registry(
    settings: Settings,
    toolbox: Optional[DeployerToolbox] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> StrategyRegistry:
    """
    Create the strategy set for the configured environment.

    USE_STUB_ADAPTERS swaps every network-backed strategy for StubStrategy.
    """
    if settings.use_stub_adapters:
        strategies: Dict[StrategyKind, GenerationStrategy] = {
            kind: StubStrategy(kind=kind) for kind in StrategyKind
        }
        strategies[StrategyKind.CANNED] = CannedStrategy()
        return StrategyRegistry(strategies)

    toolbox = toolbox or InMemoryDeployerToolbox()
    return StrategyRegistry({
        StrategyKind.HOSTED: create_gemini_strategy(
            settings.gemini_base_url,
            api_key=settings.gemini_api_key,
            transport=transport,
        ),
        StrategyKind.HOSTED_REASONING: create_gemini_strategy(
            settings.gemini_base_url,
            api_key=settings.gemini_api_key,
            reasoning=True,
            transport=transport,
        ),
        StrategyKind.SELF_HOSTED: create_self_hosted_strategy(
            settings.self_hosted_url,
            api_key=settings.self_hosted_api_key,
            transport=transport,
        ),
        StrategyKind.AGENTIC: create_agentic_strategy(
            settings.planner_url or settings.self_hosted_url,
            toolbox=toolbox,
            api_key=settings.planner_api_key,
            planner_model=settings.planner_model,
            transport=transport,
        ),
        StrategyKind.CANNED: CannedStrategy(),
    })
