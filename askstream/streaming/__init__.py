"""
askstream - Streaming Module

Tag-aware parsing and paced delivery of model output:
- TagStreamParser classifies chunks into answer/reasoning/tool channels
- ThrottledEmitter paces slices to the client
- SSE frame formatting and the per-request frame queue
"""

from .cancellation import CancellationSignal
from .parser import (
    TagStreamParser,
    Marker,
    Segment,
    ParserWarning,
    THINK_MARKER,
    DEFAULT_MARKERS,
    AUTO_MARKERS,
    DEFAULT_WATERMARK,
    format_tool_payload,
)
from .emitter import (
    ThrottledEmitter,
    pacing_delay_ms,
    pacing_schedule,
    slice_text,
)
from .sse import (
    SSEChannel,
    SSE_HEADERS,
    format_sse,
    parse_sse,
)
from .tool_calls import ToolCallAccumulator, ToolCallStreamTracker

__all__ = [
    "CancellationSignal",
    # Parser
    "TagStreamParser",
    "Marker",
    "Segment",
    "ParserWarning",
    "THINK_MARKER",
    "DEFAULT_MARKERS",
    "AUTO_MARKERS",
    "DEFAULT_WATERMARK",
    "format_tool_payload",
    # Emitter
    "ThrottledEmitter",
    "pacing_delay_ms",
    "pacing_schedule",
    "slice_text",
    # SSE
    "SSEChannel",
    "SSE_HEADERS",
    "format_sse",
    "parse_sse",
    # Tool calls
    "ToolCallAccumulator",
    "ToolCallStreamTracker",
]
