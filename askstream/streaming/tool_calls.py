"""
askstream - Tool Call Streaming

Accumulates OpenAI-compatible tool-call deltas for the agentic strategy.

Tool calls arrive in pieces:
1. Initial delta with tool call ID and function name
2. Multiple deltas with partial arguments JSON
3. finish_reason "tool_calls" closes the step
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class ToolCallAccumulator:
    """
    Accumulates streaming tool call data for one index.

    Some planner backends stream the name more than once or append channel
    tokens to it, so the raw name is kept and resolved later.
    """
    index: int
    id: Optional[str] = None
    type: str = "function"
    function_name: Optional[str] = None
    arguments_buffer: str = ""
    is_complete: bool = False

    def update(
        self,
        id: Optional[str] = None,
        function_name: Optional[str] = None,
        arguments_delta: str = ""
    ):
        """Update with new delta data."""
        if id:
            self.id = id
        if function_name:
            self.function_name = (self.function_name or "") + function_name
        if arguments_delta:
            self.arguments_buffer += arguments_delta

    def mark_complete(self):
        """Mark this tool call as complete."""
        self.is_complete = True
        if not self.id:
            self.id = f"call_{uuid.uuid4().hex[:24]}"

    def parsed_arguments(self) -> Dict[str, Any]:
        """
        Arguments as a dict.

        Raises:
            ValueError: when the accumulated buffer is not a JSON object
        """
        if not self.arguments_buffer.strip():
            return {}
        parsed = json.loads(self.arguments_buffer)
        if not isinstance(parsed, dict):
            raise ValueError("Tool call arguments must be a JSON object")
        return parsed

    def to_dict(self) -> Dict[str, Any]:
        """Convert to OpenAI tool call format (assistant message entry)."""
        return {
            "id": self.id or f"call_{uuid.uuid4().hex[:24]}",
            "type": self.type,
            "function": {
                "name": self.function_name or "",
                "arguments": self.arguments_buffer or "{}"
            }
        }


class ToolCallStreamTracker:
    """
    Tracks multiple tool calls during one streamed step.

    A single step can contain parallel tool calls, each tracked by index.
    """

    def __init__(self):
        self._calls: Dict[int, ToolCallAccumulator] = {}
        self._finalized: bool = False

    def update_from_delta(self, delta: Dict[str, Any]) -> ToolCallAccumulator:
        """Apply one entry of choices[0].delta.tool_calls."""
        function = delta.get("function") or {}
        return self.update_call(
            index=delta.get("index", 0),
            id=delta.get("id"),
            function_name=function.get("name"),
            arguments_delta=function.get("arguments") or "",
        )

    def update_call(
        self,
        index: int,
        id: Optional[str] = None,
        function_name: Optional[str] = None,
        arguments_delta: str = ""
    ) -> ToolCallAccumulator:
        """
        Update a tool call at the given index.

        Creates the accumulator if it doesn't exist.
        """
        if index not in self._calls:
            self._calls[index] = ToolCallAccumulator(index=index)

        self._calls[index].update(
            id=id,
            function_name=function_name,
            arguments_delta=arguments_delta
        )
        return self._calls[index]

    def finalize(self) -> List[ToolCallAccumulator]:
        """Mark all tool calls as complete and return them in order."""
        self._finalized = True
        for call in self._calls.values():
            call.mark_complete()
        return self.get_all_calls()

    def is_finalized(self) -> bool:
        return self._finalized

    def get_all_calls(self) -> List[ToolCallAccumulator]:
        """Get all tracked tool calls in order."""
        return [
            self._calls[i]
            for i in sorted(self._calls.keys())
        ]

    def has_calls(self) -> bool:
        return len(self._calls) > 0
