"""
askstream - Conversation Context Trimming

Selects the most recent chat turns that fit a token budget before they are
sent upstream.
"""

import math
from dataclasses import dataclass, field, replace
from typing import List

from .models import ChatTurn, ContextSettings


HISTORY_MARKER = "…no history above\n"
NO_HISTORY_TEXT = "No recent conversation available."


@dataclass(frozen=True)
class ContextBudget:
    """Trimming limits. Token counts are estimates (4 characters per token)."""
    min_chats: int = 4
    max_tokens: int = 500
    absolute_max_tokens: int = 2000
    truncate_from: str = "start"

    @classmethod
    def from_settings(cls, settings: ContextSettings) -> "ContextBudget":
        """Budget used by generation strategies, honoring per-request overrides."""
        return cls(
            min_chats=settings.prev_chat_limit or 8,
            max_tokens=settings.max_context_tokens or 3000,
            absolute_max_tokens=settings.absolute_max_tokens or 5000,
            truncate_from=settings.truncate_from or "end",
        )


@dataclass
class TrimResult:
    """Selected turns plus whether anything older was dropped or cropped."""
    turns: List[ChatTurn] = field(default_factory=list)
    truncated: bool = False

    def render(self) -> str:
        """Plain transcript used by prompt templates."""
        text = "\n".join(f"{t.role.value}: {t.content}" for t in self.turns)
        if not text:
            return NO_HISTORY_TEXT
        if self.truncated:
            return HISTORY_MARKER + text
        return text


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


class ContextCutter:
    """Budget-driven history trimmer."""

    @staticmethod
    def get_recent_conversations(history: List[ChatTurn], budget: ContextBudget) -> TrimResult:
        """
        Keep the newest turns that fit the budget.

        Walks newest to oldest, adding turns while under max_tokens or while
        fewer than min_chats are selected. If the selection is above
        absolute_max_tokens every oversized turn is cropped to an equal share.

        Args:
            history: Turns in chronological order
            budget: Trimming limits

        Returns:
            TrimResult with turns in chronological order
        """
        selected: List[ChatTurn] = []
        total = 0

        for turn in reversed(history):
            tokens = estimate_tokens(turn.content)
            if total + tokens <= budget.max_tokens or len(selected) < budget.min_chats:
                selected.insert(0, turn)
                total += tokens
            else:
                break

        while len(selected) < budget.min_chats and len(selected) < len(history):
            selected.insert(0, history[len(history) - len(selected) - 1])

        truncated = len(selected) < len(history)

        total = sum(estimate_tokens(t.content) for t in selected)
        if selected and total > budget.absolute_max_tokens:
            crop_per_chat = budget.absolute_max_tokens // len(selected)
            chars = crop_per_chat * 4
            cropped: List[ChatTurn] = []
            for turn in selected:
                if estimate_tokens(turn.content) > crop_per_chat:
                    truncated = True
                    if budget.truncate_from == "end":
                        content = turn.content[:chars] + " ...[truncated]"
                    else:
                        content = "...[truncated] " + (turn.content[-chars:] if chars else "")
                    turn = replace(turn, content=content)
                cropped.append(turn)
            selected = cropped

        return TrimResult(turns=selected, truncated=truncated)
