"""
askstream - Hosted Text Client

Small non-streaming Gemini client used by the session companions (thread
title, follow-up questions) and the search query planner.
"""

from typing import Any, Dict, Optional

import httpx

from ..core.config import DEFAULT_GEMINI_BASE_URL
from ..core.errors import AuthOrQuotaError, map_http_error
from ..observability.tracing import trace_upstream_call


COMPANION_MODEL = "gemini-2.0-flash-lite"


class HostedTextClient:
    """One-shot prompt -> text calls against generateContent."""

    provider = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def generate(
        self,
        prompt: str,
        model: str = COMPANION_MODEL,
        api_key: Optional[str] = None,
        json_output: bool = False,
    ) -> str:
        """
        Generate text for a single user prompt.

        Args:
            prompt: User prompt
            model: Hosted model name
            api_key: Per-request key overriding the configured one
            json_output: Ask for an application/json response

        Raises:
            GatewayError subclass on any upstream failure
        """
        key = api_key or self.api_key
        if not key:
            raise AuthOrQuotaError(provider=self.provider, message="No Gemini API key configured")

        payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if json_output:
            payload["generationConfig"] = {"responseMimeType": "application/json"}

        with trace_upstream_call(self.provider, model, "companion"):
            try:
                response = await self.client.post(f"/models/{model}:generateContent?key={key}", json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                raise map_http_error(e, self.provider)

        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts if not p.get("thought"))

    async def close(self):
        await self.client.aclose()
