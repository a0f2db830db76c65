"""
askstream - Web Search

Search provider boundary used by the session when a request opts into web
search. Failures raise; the session downgrades them to a warning frame.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..core.config import DEFAULT_TAVILY_BASE_URL
from ..core.errors import AuthOrQuotaError, map_http_error
from ..core.models import ChatTurn
from ..observability.logging import get_logger
from ..observability.tracing import trace_upstream_call
from .llm import HostedTextClient


logger = get_logger(__name__)

TOPICS = ("general", "news", "finance")
DEPTHS = ("basic", "advanced")


# ============================================================
# Types
# ============================================================

@dataclass
class SearchPlan:
    """Provider request derived from the user query."""
    query: str
    topic: str = "general"
    search_depth: str = "basic"
    max_results: int = 3
    country: Optional[str] = "us"

    def __post_init__(self):
        if self.topic not in TOPICS:
            self.topic = "general"
        if self.search_depth not in DEPTHS:
            self.search_depth = "basic"
        self.max_results = max(1, min(3, int(self.max_results or 3)))


@dataclass
class SearchHit:
    url: str
    title: str = ""
    content: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "url": self.url, "content": self.content}


@dataclass
class SearchResponse:
    results: List[SearchHit] = field(default_factory=list)
    answer: Optional[str] = None

    def to_context(self) -> Dict[str, Any]:
        """Shape placed into the model's tool-output context."""
        return {
            "answer": self.answer,
            "results": [hit.to_dict() for hit in self.results],
        }


class SearchProvider(ABC):
    """External web-search collaborator."""

    @abstractmethod
    async def search(self, plan: SearchPlan, api_key: Optional[str] = None) -> SearchResponse:
        pass

    async def close(self):
        return None


# ============================================================
# Tavily
# ============================================================

class TavilySearchProvider(SearchProvider):
    """Tavily REST search."""

    provider = "tavily"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_TAVILY_BASE_URL,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def search(self, plan: SearchPlan, api_key: Optional[str] = None) -> SearchResponse:
        key = api_key or self.api_key
        if not key:
            raise AuthOrQuotaError(provider=self.provider, message="Tavily feature disabled: API key not set")

        payload: Dict[str, Any] = {
            "api_key": key,
            "query": plan.query,
            "topic": plan.topic,
            "search_depth": plan.search_depth,
            "max_results": plan.max_results,
            "include_answer": True,
        }
        if plan.country:
            payload["country"] = plan.country.lower()

        with trace_upstream_call(self.provider, "search", "search"):
            try:
                response = await self.client.post("/search", json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                raise map_http_error(e, self.provider)

        hits = [
            SearchHit(url=r.get("url", ""), title=r.get("title", ""), content=r.get("content", ""))
            for r in data.get("results") or []
            if r.get("url")
        ]
        return SearchResponse(results=hits, answer=data.get("answer"))

    async def close(self):
        await self.client.aclose()


# ============================================================
# Query planning
# ============================================================

PLANNER_PROMPT = """You turn a chat into one web search request.
Return ONLY a JSON object with keys:
  "query" (string, self-contained search query),
  "topic" ("general" | "news" | "finance"),
  "search_depth" ("basic" | "advanced"),
  "max_results" (1-3),
  "country" (lowercase country name or null).

Recent conversation:
{history}

User query: "{query}\""""

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class SearchQueryPlanner:
    """Asks the hosted model for a search plan; falls back to the raw query."""

    def __init__(self, client: Optional[HostedTextClient] = None):
        self.client = client

    async def plan(
        self,
        query: str,
        history: Sequence[ChatTurn] = (),
        api_key: Optional[str] = None,
    ) -> SearchPlan:
        if self.client is None:
            return SearchPlan(query=query)

        rendered = "\n".join(f"{t.role.value}: {t.content}" for t in list(history)[-5:]) or "(none)"
        try:
            text = await self.client.generate(
                PLANNER_PROMPT.format(history=rendered, query=query),
                api_key=api_key,
                json_output=True,
            )
            match = _JSON_OBJECT.search(text or "")
            data = json.loads(match.group(0)) if match else {}
            return SearchPlan(
                query=str(data.get("query") or query),
                topic=str(data.get("topic") or "general"),
                search_depth=str(data.get("search_depth") or "basic"),
                max_results=data.get("max_results") or 3,
                country=data.get("country") or "us",
            )
        except Exception as e:
            logger.warning("Search planning failed, using raw query", error=str(e))
            return SearchPlan(query=query)
