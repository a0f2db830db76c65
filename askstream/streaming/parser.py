"""
askstream - Tag Stream Parser

Incremental scanner that classifies a chunked token stream into answer,
reasoning and tool channels using paired markers such as <think>...</think>.

Markers may arrive split across any number of chunks. Text that could still
turn into a marker is held back; everything else is emitted as soon as it is
known to be safe.
"""

import re
import json
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

from ..core.errors import ParserIssue
from ..core.models import Channel, ParserMode


# Largest amount of tool payload held before it is streamed as plain text
DEFAULT_WATERMARK = 2000

# Wire event name per channel
CHANNEL_EVENTS = {
    Channel.ANSWER: "llmResult",
    Channel.REASONING: "thinking",
    Channel.TOOL: "llmResult",
}


@dataclass(frozen=True)
class Marker:
    """A paired open/close delimiter that switches the active channel."""
    open: str
    close: str
    channel: Channel
    mode: ParserMode
    ignore_case: bool = False

    def find_open(self, text: str) -> int:
        return self._find(self.open, text)

    def find_close(self, text: str) -> int:
        return self._find(self.close, text)

    def open_starts_with(self, fragment: str) -> bool:
        if self.ignore_case:
            return _literal(self.open[:len(fragment)]).fullmatch(fragment) is not None
        return self.open.startswith(fragment)

    def _find(self, delimiter: str, text: str) -> int:
        # Match against the original text so indexes line up with the buffer;
        # str.lower() can change length (e.g. "İ")
        if self.ignore_case:
            match = _literal(delimiter).search(text)
            return match.start() if match else -1
        return text.find(delimiter)


@lru_cache(maxsize=None)
def _literal(delimiter: str) -> re.Pattern:
    return re.compile(re.escape(delimiter), re.IGNORECASE)


THINK_MARKER = Marker("<think>", "</think>", Channel.REASONING, ParserMode.IN_REASONING)

DEFAULT_MARKERS: Tuple[Marker, ...] = (THINK_MARKER,)

AUTO_MARKERS: Tuple[Marker, ...] = (
    Marker("<RESULT>", "</RESULT>", Channel.ANSWER, ParserMode.IN_ANSWER, ignore_case=True),
    Marker("<TOOL_CODE>", "</TOOL_CODE>", Channel.TOOL, ParserMode.IN_TOOL, ignore_case=True),
    Marker("<TOOL>", "</TOOL>", Channel.TOOL, ParserMode.IN_TOOL, ignore_case=True),
)


@dataclass
class Segment:
    """A run of classified text."""
    channel: Channel
    text: str

    @property
    def event(self) -> str:
        return CHANNEL_EVENTS[self.channel]


@dataclass
class ParserWarning:
    """Recoverable parser condition surfaced to the caller as a warning."""
    kind: ParserIssue
    channel: Channel
    message: str


def format_tool_payload(content: str) -> Tuple[str, bool]:
    """
    Render a closed tool region.

    Valid JSON is pretty printed in a json fence. Anything else is passed
    through verbatim in a text fence.

    Returns:
        (rendered_text, is_valid_json)
    """
    payload = content.strip()
    try:
        parsed = json.loads(payload)
    except ValueError:
        return f"```text\n{payload}\n```", False
    return f"```json\n{json.dumps(parsed, indent=2, ensure_ascii=False)}\n```", True


@dataclass
class TagStreamParser:
    """
    Per-session marker state machine.

    Usage:
        parser = TagStreamParser()
        for chunk in chunks:
            for segment in parser.feed(chunk):
                ...
        for segment in parser.flush():
            ...
    """
    markers: Sequence[Marker] = DEFAULT_MARKERS
    watermark: int = DEFAULT_WATERMARK

    buffer: str = ""
    warnings: List[ParserWarning] = field(default_factory=list)

    _active: Optional[Marker] = field(default=None, repr=False)
    _fence_open: bool = field(default=False, repr=False)

    def __post_init__(self):
        if not self.markers:
            raise ValueError("TagStreamParser needs at least one marker")
        self._longest_open = max(len(m.open) for m in self.markers)

    @property
    def mode(self) -> ParserMode:
        return self._active.mode if self._active else ParserMode.INITIAL

    @property
    def channel(self) -> Channel:
        return self._active.channel if self._active else Channel.ANSWER

    def feed(self, chunk: str) -> List[Segment]:
        """Append a chunk and return every segment that is now safe to emit."""
        if chunk:
            self.buffer += chunk
        segments: List[Segment] = []
        while self.buffer:
            if self._active is None:
                if not self._scan_initial(segments):
                    break
            elif not self._scan_region(segments):
                break
        return _merge(segments)

    def flush(self) -> List[Segment]:
        """
        Emit whatever is left at end of stream.

        An unterminated region keeps its channel and records an
        UNTERMINATED_REGION warning instead of dropping the content.
        """
        segments: List[Segment] = []
        remainder, self.buffer = self.buffer, ""
        marker = self._active

        if marker is None:
            if remainder:
                segments.append(Segment(Channel.ANSWER, remainder))
            return segments

        if marker.channel == Channel.TOOL:
            message = f"Unclosed {marker.open} at stream end. TOOL content may be incomplete."
            if self._fence_open:
                segments.append(Segment(Channel.TOOL, remainder + "\n```"))
            elif remainder:
                segments.append(Segment(Channel.TOOL, f"```text\n{remainder}\n```"))
        else:
            message = f"Unclosed {marker.open} at stream end. Content may be incomplete."
            if remainder:
                segments.append(Segment(marker.channel, remainder))

        self.warnings.append(ParserWarning(ParserIssue.UNTERMINATED_REGION, marker.channel, message))
        self._active = None
        self._fence_open = False
        return _merge(segments)

    def take_warnings(self) -> List[ParserWarning]:
        """Return and clear warnings collected so far."""
        warnings, self.warnings = self.warnings, []
        return warnings

    # ============================================================
    # Internal scanning
    # ============================================================

    def _scan_initial(self, segments: List[Segment]) -> bool:
        best_index = -1
        best: Optional[Marker] = None
        for marker in self.markers:
            index = marker.find_open(self.buffer)
            if index < 0:
                continue
            # Earliest marker wins; on a tie the longer delimiter is the real one
            if best is None or index < best_index or (
                index == best_index and len(marker.open) > len(best.open)
            ):
                best_index, best = index, marker

        if best is not None:
            if best_index > 0:
                segments.append(Segment(Channel.ANSWER, self.buffer[:best_index]))
            self.buffer = self.buffer[best_index + len(best.open):]
            self._active = best
            self._fence_open = False
            return True

        hold = self._partial_open_length()
        emit_upto = len(self.buffer) - hold
        if emit_upto > 0:
            segments.append(Segment(Channel.ANSWER, self.buffer[:emit_upto]))
            self.buffer = self.buffer[emit_upto:]
        return False

    def _partial_open_length(self) -> int:
        """Length of the longest buffer suffix that could still become an open marker."""
        limit = min(len(self.buffer), self._longest_open - 1)
        for size in range(limit, 0, -1):
            suffix = self.buffer[-size:]
            if any(m.open_starts_with(suffix) for m in self.markers):
                return size
        return 0

    def _scan_region(self, segments: List[Segment]) -> bool:
        marker = self._active
        index = marker.find_close(self.buffer)

        if index >= 0:
            content = self.buffer[:index]
            self.buffer = self.buffer[index + len(marker.close):]
            self._close_region(marker, content, segments)
            return True

        margin = len(marker.close) - 1
        safe = len(self.buffer) - margin

        if marker.channel == Channel.TOOL and not self._fence_open:
            # Tool payloads are parsed whole unless they outgrow the watermark
            if len(self.buffer) <= self.watermark:
                return False
            self._fence_open = True
            segments.append(Segment(Channel.TOOL, "```text\n" + self.buffer[:safe]))
            self.buffer = self.buffer[safe:]
            return False

        if safe > 0:
            segments.append(Segment(marker.channel, self.buffer[:safe]))
            self.buffer = self.buffer[safe:]
        return False

    def _close_region(self, marker: Marker, content: str, segments: List[Segment]) -> None:
        if marker.channel == Channel.TOOL:
            if self._fence_open:
                segments.append(Segment(Channel.TOOL, content + "\n```"))
            else:
                rendered, valid = format_tool_payload(content)
                if not valid:
                    self.warnings.append(ParserWarning(
                        ParserIssue.MALFORMED_TOOL_PAYLOAD,
                        Channel.TOOL,
                        "Tool payload is not valid JSON; passed through as text.",
                    ))
                segments.append(Segment(Channel.TOOL, rendered))
        elif content:
            segments.append(Segment(marker.channel, content))

        self._active = None
        self._fence_open = False


def _merge(segments: List[Segment]) -> List[Segment]:
    """Join adjacent segments of the same channel."""
    merged: List[Segment] = []
    for segment in segments:
        if not segment.text:
            continue
        if merged and merged[-1].channel == segment.channel and segment.channel != Channel.TOOL:
            merged[-1] = Segment(segment.channel, merged[-1].text + segment.text)
        else:
            merged.append(segment)
    return merged
