"""
askstream - Generation Strategy Base

Abstract base class for generation strategies. Each backend family
(hosted Gemini, self-hosted OpenAI-compatible, reasoning, agentic, canned)
implements this interface and yields the uniform StreamEvent sequence.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from ..core.models import (
    AskRequest,
    Completion,
    DEFAULT_THROTTLE,
    StrategyKind,
    StreamEvent,
    ThrottleConfig,
)
from ..core.errors import COLD_START_HEADERS, map_http_error, raise_for_upstream_status
from ..observability.tracing import upstream_headers
from ..streaming.cancellation import CancellationSignal
from ..streaming.parser import DEFAULT_MARKERS, Marker

if TYPE_CHECKING:
    from ..routing.dispatcher import Route


@dataclass
class AdapterConfig:
    """Connection settings for an upstream endpoint."""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 30.0
    transport: Optional[httpx.AsyncBaseTransport] = None


@dataclass
class GenerationInput:
    """Everything a strategy needs for one upstream call."""
    request: AskRequest
    route: "Route"
    signal: CancellationSignal = field(default_factory=CancellationSignal)
    context: Dict[str, Any] = field(default_factory=dict)
    request_id: str = ""

    def api_key(self, slot: str, default: Optional[str] = None) -> Optional[str]:
        """Per-request header key wins over the environment key."""
        return self.request.api_keys.get(slot) or default


Messages = List[Dict[str, str]]


class GenerationStrategy(ABC):
    """
    Abstract base class for generation strategies.

    open() performs the upstream call and returns the event iterator. Errors
    raised by open() itself happen before any content and may be retried by
    the session; errors while iterating are terminal for the attempt.

    The iterator ends with an END event on success.
    """

    kind: StrategyKind
    provider: str = "unknown"
    supports_retry: bool = False
    throttle: ThrottleConfig = DEFAULT_THROTTLE
    markers: Sequence[Marker] = DEFAULT_MARKERS

    def markers_for(self, gen: GenerationInput) -> Sequence[Marker]:
        """Marker table for the session parser. Override for prompt profiles."""
        return self.markers

    @abstractmethod
    def build_messages(self, gen: GenerationInput) -> Messages:
        """
        Build the upstream message list.

        Returned messages are also sent to the client as a diagnostic frame.
        """
        pass

    @abstractmethod
    async def open(self, gen: GenerationInput, messages: Messages) -> AsyncIterator[StreamEvent]:
        """
        Start generation.

        Args:
            gen: Request, route and cancellation signal
            messages: Output of build_messages

        Returns:
            Async iterator of StreamEvents
        """
        pass

    @property
    def supports_fallback(self) -> bool:
        """Whether complete() is implemented for the silent-success fallback."""
        return type(self).complete is not GenerationStrategy.complete

    async def complete(self, gen: GenerationInput, messages: Messages) -> Completion:
        """Single non-streaming call. Strategies without one raise."""
        raise NotImplementedError(f"{type(self).__name__} has no non-streaming call")

    async def close(self):
        """Release HTTP clients."""
        return None


class HttpStrategy(GenerationStrategy):
    """Strategy backed by one shared httpx.AsyncClient."""

    def __init__(self, config: AdapterConfig):
        self.config = config
        self.client = httpx.AsyncClient(
            base_url=config.base_url or "",
            timeout=config.timeout,
            transport=config.transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def _open_stream(
        self,
        url: str,
        payload: Dict[str, Any],
        gen: GenerationInput,
        headers: Optional[Dict[str, str]] = None,
        cold_start_headers: tuple = COLD_START_HEADERS,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """
        POST with a streamed response and fail before any content on >= 400.

        Raises:
            GatewayError subclass mapped from the HTTP status or transport error
        """
        request = self.client.build_request(
            "POST", url, json=payload, headers=upstream_headers(headers), timeout=_timeout(timeout)
        )
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise map_http_error(e, self.provider, gen.request_id, cold_start_headers)
        await raise_for_upstream_status(response, self.provider, gen.request_id, cold_start_headers)
        return response

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        gen: GenerationInput,
        headers: Optional[Dict[str, str]] = None,
        cold_start_headers: tuple = COLD_START_HEADERS,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Non-streaming POST returning the decoded JSON body."""
        try:
            response = await self.client.post(
                url, json=payload, headers=upstream_headers(headers), timeout=_timeout(timeout)
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise map_http_error(e, self.provider, gen.request_id, cold_start_headers)


def _timeout(value: Optional[float]):
    return httpx.USE_CLIENT_DEFAULT if value is None else value


async def iter_sse_data(
    response: httpx.Response,
    provider: str,
    signal: Optional[CancellationSignal] = None,
    request_id: str = "",
) -> AsyncIterator[Dict[str, Any]]:
    """
    Decode `data: {...}` lines of an upstream SSE body.

    Stops at [DONE] or on cancellation and always closes the response.
    Malformed lines are skipped.
    """
    try:
        async for line in response.aiter_lines():
            if signal is not None and signal.cancelled:
                return
            if not line.startswith("data:"):
                continue
            data_str = line[5:].strip()
            if not data_str:
                continue
            if data_str == "[DONE]":
                return
            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                yield data
    except httpx.HTTPError as e:
        raise map_http_error(e, provider, request_id)
    finally:
        await response.aclose()
