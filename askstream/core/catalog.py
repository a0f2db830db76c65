"""
askstream - Model Catalog

Read-only capability table shared by every session. The dispatcher consumes
it instead of string-matching model names at each call site.
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from .models import ModelCapability, StrategyKind


SELF_HOSTED_NAMESPACES = frozenset({"self", "self-hosted"})
MODE_NAMESPACE = "mode"
DEPLOYER_MODE = "deployer"


_HOSTED: List[ModelCapability] = [
    ModelCapability(
        name="gemini-2.5-flash",
        family="gemini",
        supports_reasoning=True,
        supports_search=True,
        no_penalty=True,
        context_window=128000,
        max_output_tokens=4096,
        credit_cost=2,
    ),
    ModelCapability(
        name="gemini-2.5-pro",
        family="gemini",
        supports_search=True,
        context_window=128000,
        max_output_tokens=4096,
        credit_cost=4,
    ),
    ModelCapability(
        name="gemini-2.0-flash",
        family="gemini",
        supports_search=True,
        context_window=1048576,
        max_output_tokens=8192,
        credit_cost=1,
    ),
    ModelCapability(
        name="gemini-2.0-flash-lite",
        family="gemini",
        context_window=1048576,
        max_output_tokens=8192,
        credit_cost=1,
    ),
    ModelCapability(
        name="gemini-2.5-flash-lite",
        family="gemini",
        context_window=1048576,
        max_output_tokens=8192,
        credit_cost=1,
    ),
]

_SELF_HOSTED: List[ModelCapability] = [
    ModelCapability(
        name="qwen3:0.6b",
        family="self",
        is_self_hosted=True,
        context_window=1048576,
        max_output_tokens=8192,
        credit_cost=0,
        timeout_seconds=15.0,
    ),
    ModelCapability(name="qwen3:4b", family="self", is_self_hosted=True, max_output_tokens=8192),
    ModelCapability(name="llama-3.8b", family="self", is_self_hosted=True, max_output_tokens=8192),
    ModelCapability(name="deepseek-r1:7b", family="self", is_self_hosted=True, max_output_tokens=8192),
    ModelCapability(name="mistral-7b", family="self", is_self_hosted=True, max_output_tokens=8192),
]

_MODES: List[ModelCapability] = [
    ModelCapability(name="deep", family="mode", kind=StrategyKind.CANNED, credit_cost=15),
    ModelCapability(name="deep-research", family="mode", kind=StrategyKind.CANNED, credit_cost=15),
    ModelCapability(name="pro-search", family="mode", kind=StrategyKind.CANNED, credit_cost=8),
    ModelCapability(
        name="zero",
        family="mode",
        kind=StrategyKind.HOSTED,
        backing_model="gemini-2.5-flash-lite",
        prompt_profile="zero",
        credit_cost=1,
    ),
    ModelCapability(
        name="auto",
        family="mode",
        kind=StrategyKind.HOSTED,
        backing_model="gemini-2.0-flash",
        prompt_profile="auto",
        credit_cost=1,
    ),
]


def _index(entries: List[ModelCapability]) -> Mapping[str, ModelCapability]:
    return MappingProxyType({entry.name: entry for entry in entries})


class CapabilityTable:
    """
    Immutable lookup of hosted models, self-hosted models and canned modes.

    Instances are safe to share across concurrent sessions.
    """

    def __init__(
        self,
        hosted: List[ModelCapability],
        self_hosted: List[ModelCapability],
        modes: List[ModelCapability],
    ):
        self.hosted = _index(hosted)
        self.self_hosted = _index(self_hosted)
        self.modes = _index(modes)

    def hosted_model(self, name: str) -> Optional[ModelCapability]:
        return self.hosted.get(name)

    def self_hosted_model(self, name: str) -> Optional[ModelCapability]:
        return self.self_hosted.get(name)

    def mode(self, name: str) -> Optional[ModelCapability]:
        return self.modes.get(name)

    def credit_cost(self, namespace: str, name: str) -> int:
        """Credits charged for one request against the given model or mode."""
        if namespace == MODE_NAMESPACE:
            entry = self.mode(name)
        elif namespace in SELF_HOSTED_NAMESPACES:
            entry = self.self_hosted_model(name)
        else:
            entry = self.hosted_model(name)
        return entry.credit_cost if entry else 1

    def to_dict(self) -> Dict[str, List[Dict]]:
        return {
            "hosted": [c.to_dict() for c in self.hosted.values()],
            "self_hosted": [c.to_dict() for c in self.self_hosted.values()],
            "modes": [c.to_dict() for c in self.modes.values()],
        }


DEFAULT_CAPABILITIES = CapabilityTable(_HOSTED, _SELF_HOSTED, _MODES)
