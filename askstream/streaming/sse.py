"""
askstream - SSE Wire Format

Frame formatting and a per-request frame queue bridging the session task and
the HTTP response body.
"""

import asyncio
import json
from typing import AsyncIterator, List, Optional, Tuple


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Wire event names
EVENT_STATUS = "event"
EVENT_ANSWER = "llmResult"
EVENT_REASONING = "thinking"
EVENT_SEARCH_RESULT = "searchResult"
EVENT_TOOL_EXECUTE = "toolExecute"
EVENT_TOOLS_USED = "toolsUsed"
EVENT_FINAL_RESULT = "finalResult"
EVENT_DURATION = "Duration"
EVENT_ERROR = "error"
EVENT_WARNING = "warning"
EVENT_THREAD_TITLE = "threadTitle"
EVENT_FOLLOW_UP = "followUp"
EVENT_LLM_PROMPT = "llmPrompt"

STATUS_STREAMING = "streaming"
STATUS_THINKING = "thinking"
STATUS_SEARCHING = "Performing search..."
STATUS_ABORTED = "aborted"


def format_sse(event: str, data: str) -> str:
    """
    Encode one frame.

    The payload is always JSON-encoded as a string, so structured payloads
    are serialized by the caller first.
    """
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


CLOSING_FRAME = format_sse(EVENT_STATUS, "")


def parse_sse(raw: str) -> List[Tuple[str, str]]:
    """Decode a body of frames back into (event, data) pairs."""
    frames: List[Tuple[str, str]] = []
    for block in raw.split("\n\n"):
        if not block.strip():
            continue
        event = ""
        data = ""
        for line in block.split("\n"):
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        frames.append((event, data))
    return frames


class SSEChannel:
    """
    Queue of encoded frames for one response.

    The session writes with send(); the StreamingResponse consumes frames().
    Nothing is accepted after close().
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.frames_sent = 0

    async def send(self, event: str, data: str) -> None:
        if self.closed:
            return
        self.frames_sent += 1
        await self._queue.put(format_sse(event, data))

    async def close(self) -> None:
        """Write the closing frame and end the body."""
        if self.closed:
            return
        await self._queue.put(CLOSING_FRAME)
        self.closed = True
        await self._queue.put(self._CLOSED)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item

    async def next_frame(self, timeout: Optional[float] = None) -> Optional[str]:
        """Pop one encoded frame, or None when the channel is finished."""
        item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        return None if item is self._CLOSED else item
