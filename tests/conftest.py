"""
askstream - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Smoke test handling (skip with SKIP_SMOKE=1)
- Shared doubles: instant sleeps, SSE frame helpers, request builders
"""

import json
import os
import pytest
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from askstream.core.models import AskRequest, ChatTurn, Role
from askstream.streaming.sse import SSEChannel, parse_sse


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))
SKIP_SMOKE = _is_truthy(os.getenv("SKIP_SMOKE"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )
    config.addinivalue_line(
        "markers",
        "smoke: mark test as smoke test (skip with SKIP_SMOKE=1)"
    )


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to handle integration and smoke tests.

    - Integration tests: Skip unless RUN_INTEGRATION=1
    - Smoke tests: Skip if SKIP_SMOKE=1
    """
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    skip_smoke = pytest.mark.skip(
        reason="Smoke test skipped - SKIP_SMOKE=1"
    )

    for item in items:
        if "integration" in item.keywords:
            if not RUN_INTEGRATION:
                item.add_marker(skip_integration)

        if "smoke" in item.keywords:
            if SKIP_SMOKE:
                item.add_marker(skip_smoke)


# ============================================================
# Sleeps
# ============================================================

class RecordingSleep:
    """Awaitable stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> bool:
        self.delays.append(seconds)
        return True


@pytest.fixture
def instant_sleep():
    return RecordingSleep()


# ============================================================
# SSE helpers
# ============================================================

async def drain_channel(channel: SSEChannel) -> List[Tuple[str, str]]:
    """Collect every frame already written to a closed channel."""
    raw = "".join([frame async for frame in channel.frames()])
    return parse_sse(raw)


def frames_of(frames: List[Tuple[str, str]], event: str) -> List[str]:
    return [data for name, data in frames if name == event]


def event_names(frames: List[Tuple[str, str]]) -> List[str]:
    return [name for name, _ in frames]


# ============================================================
# Requests
# ============================================================

def make_request(
    query: str = "2+2?",
    model: str = "gemini/gemini-2.0-flash",
    **kwargs: Any,
) -> AskRequest:
    """AskRequest with companions off unless a test turns them on."""
    kwargs.setdefault("follow_up", False)
    kwargs.setdefault("chats", [ChatTurn(Role.USER, "hi"), ChatTurn(Role.MODEL, "hello")])
    return AskRequest(query=query, model=model, **kwargs)


def sse_body(chunks: List[Dict[str, Any]], done: bool = True) -> bytes:
    """Encode upstream `data: {...}` lines."""
    lines = [f"data: {json.dumps(chunk)}\n\n" for chunk in chunks]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def sse_response(chunks: List[Dict[str, Any]], status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=sse_body(chunks),
        headers={"content-type": "text/event-stream"},
    )


# ============================================================
# Logging Configuration
# ============================================================

@pytest.fixture(autouse=True)
def configure_test_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    yield


# ============================================================
# Skip Helpers
# ============================================================

requires_integration = pytest.mark.skipif(
    not RUN_INTEGRATION,
    reason="Requires RUN_INTEGRATION=1"
)

skip_if_no_gemini = pytest.mark.skipif(
    not os.getenv("GOOGLE_GENERATIVE_AI_API_KEY"),
    reason="Requires GOOGLE_GENERATIVE_AI_API_KEY"
)
