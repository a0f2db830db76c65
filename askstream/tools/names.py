"""
askstream - Tool Name Resolution

Some planner backends leak channel control tokens into tool names
(`createJob<|channel|>commentary`). Names are resolved against the known
catalog before anything is executed or surfaced.
"""

import re
from dataclasses import dataclass
from typing import AbstractSet, Any, Set

from .schema import KNOWN_TOOLS


_CHANNEL_TOKEN = re.compile(r"<\|[^|>]+?\|>.*$", re.DOTALL)


@dataclass(frozen=True)
class ResolvedToolName:
    valid: bool
    name: str = ""
    raw: str = ""
    sanitized: bool = False


def resolve_tool_name(raw_name: Any, known: AbstractSet[str] = KNOWN_TOOLS) -> ResolvedToolName:
    """
    Map a raw tool name onto a known tool.

    Tries the name as-is, then with channel tokens stripped, then the part
    before the first "<".
    """
    if not isinstance(raw_name, str):
        return ResolvedToolName(valid=False)

    raw = raw_name.strip()
    if not raw:
        return ResolvedToolName(valid=False)

    if raw in known:
        return ResolvedToolName(valid=True, name=raw, raw=raw)

    stripped = _CHANNEL_TOKEN.sub("", raw).strip()
    if stripped in known:
        return ResolvedToolName(valid=True, name=stripped, raw=raw, sanitized=stripped != raw)

    before_angle = stripped.split("<")[0].strip()
    if before_angle in known:
        return ResolvedToolName(valid=True, name=before_angle, raw=raw, sanitized=before_angle != raw)

    return ResolvedToolName(valid=False, raw=raw)


class ToolStartFilter:
    """
    Drops repeated sanitized starts of the same canonical tool within one
    session.
    """

    def __init__(self, known: AbstractSet[str] = KNOWN_TOOLS):
        self.known = known
        self._seen_sanitized: Set[str] = set()

    def accept(self, raw_name: Any) -> ResolvedToolName:
        """Resolve a tool start; returns an invalid result when it should be skipped."""
        resolved = resolve_tool_name(raw_name, self.known)
        if not resolved.valid:
            return resolved
        if resolved.sanitized:
            if resolved.name in self._seen_sanitized:
                return ResolvedToolName(valid=False, name=resolved.name, raw=resolved.raw, sanitized=True)
            self._seen_sanitized.add(resolved.name)
        return resolved
