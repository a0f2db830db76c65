"""
askstream - Mode Dispatcher

Stateless routing from a request descriptor to exactly one generation
strategy kind. First match wins:

1. explicit automation mode ("deployer") -> agentic
2. self-hosted namespace + known local model -> self-hosted
3. known hosted model -> hosted (reasoning variant when thinking is
   requested and the model supports it)
4. "mode" namespace + known canned mode -> that mode's strategy
5. anything else -> InvalidConfiguration
"""

from dataclasses import dataclass
from typing import Optional

from ..core.catalog import (
    CapabilityTable,
    DEFAULT_CAPABILITIES,
    DEPLOYER_MODE,
    MODE_NAMESPACE,
    SELF_HOSTED_NAMESPACES,
)
from ..core.errors import InvalidConfiguration
from ..core.models import ModelCapability, StrategyKind, split_model_id


@dataclass(frozen=True)
class Route:
    """Dispatch decision."""
    kind: StrategyKind
    namespace: str
    model_name: str
    capability: Optional[ModelCapability] = None

    @property
    def upstream_model(self) -> str:
        """Model name sent upstream; modes resolve to their backing model."""
        if self.capability and self.capability.backing_model:
            return self.capability.backing_model
        return self.model_name

    @property
    def prompt_profile(self) -> Optional[str]:
        return self.capability.prompt_profile if self.capability else None


def dispatch(
    mode: Optional[str],
    model: str,
    thinking: bool = False,
    capabilities: CapabilityTable = DEFAULT_CAPABILITIES,
) -> Route:
    """
    Pick the generation strategy for a request.

    Args:
        mode: Explicit automation mode flag, if any
        model: Composite "namespace/modelName" identifier
        thinking: Whether reasoning output was requested
        capabilities: Read-only capability table

    Returns:
        Route naming the strategy kind and the resolved capability

    Raises:
        InvalidConfiguration: when no rule matches
    """
    namespace, model_name = split_model_id(model)

    if mode == DEPLOYER_MODE:
        return Route(StrategyKind.AGENTIC, namespace, model_name)

    if namespace in SELF_HOSTED_NAMESPACES:
        capability = capabilities.self_hosted_model(model_name)
        if capability is not None:
            return Route(StrategyKind.SELF_HOSTED, namespace, model_name, capability)

    capability = capabilities.hosted_model(model_name)
    if capability is not None:
        if thinking and capability.supports_reasoning:
            return Route(StrategyKind.HOSTED_REASONING, namespace, model_name, capability)
        return Route(StrategyKind.HOSTED, namespace, model_name, capability)

    if namespace == MODE_NAMESPACE:
        capability = capabilities.mode(model_name)
        if capability is not None and capability.kind is not None:
            return Route(capability.kind, namespace, model_name, capability)

    raise InvalidConfiguration(model, mode)
