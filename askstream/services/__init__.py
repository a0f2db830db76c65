"""
askstream - Services Module

External collaborators of the ask pipeline: web search, session companions,
credit and thread stores, and the deployer toolbox and executor.
"""

from .llm import COMPANION_MODEL, HostedTextClient
from .search import (
    SearchHit,
    SearchPlan,
    SearchProvider,
    SearchQueryPlanner,
    SearchResponse,
    TavilySearchProvider,
)
from .companions import SessionCompanions, follow_up_source, parse_follow_ups
from .stores import (
    CreditIdentity,
    CreditStore,
    InMemoryCreditStore,
    InMemoryThreadStore,
    ThreadStore,
)
from .deployer import (
    DeployerToolbox,
    InMemoryDeployerToolbox,
    InMemoryDeploymentExecutor,
    MARKETS,
    MarketInfo,
)

__all__ = [
    "COMPANION_MODEL",
    "HostedTextClient",
    "SearchHit",
    "SearchPlan",
    "SearchProvider",
    "SearchQueryPlanner",
    "SearchResponse",
    "TavilySearchProvider",
    "SessionCompanions",
    "follow_up_source",
    "parse_follow_ups",
    "CreditIdentity",
    "CreditStore",
    "InMemoryCreditStore",
    "InMemoryThreadStore",
    "ThreadStore",
    "DeployerToolbox",
    "InMemoryDeployerToolbox",
    "InMemoryDeploymentExecutor",
    "MARKETS",
    "MarketInfo",
]
