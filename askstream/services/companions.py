"""
askstream - Session Companions

Side outputs generated alongside the answer:
- a thread title for new conversations
- 3-4 follow-up questions

Both degrade to a fallback value instead of failing the session.
"""

import json
import re
from typing import Dict, List, Optional

from ..core.models import AskRequest, Role
from ..observability.logging import get_logger
from .llm import HostedTextClient


logger = get_logger(__name__)

TITLE_FALLBACK_LENGTH = 30
FOLLOW_UP_USER_TURNS = 4
FOLLOW_UP_MAX_CHARS = 2000

TITLE_PROMPT = """You are an AI model. Based on this query: "{query}", generate a short, clear, and descriptive thread title suitable to show the user.
Respond ONLY with the title as a string."""

FOLLOW_UP_PROMPT = """Based on the user's past query, generate 3-4 smart follow-up questions that expand or clarify the topic.
Return only a JSON array of objects, each with a single key "question".

Guidelines:
- Keep each question short, precise, and relevant (6-12 words).
- Write as if you are the user, asking an expert for deeper insights.
- Do NOT ask meta-questions, confirmations, or repeat the original query.
- If no follow-up is meaningful, return an empty array.

User query: "{query}\""""

_QUOTES = "\"'“”‘’"
_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


def strip_quotes(text: str) -> str:
    return text.strip().lstrip(_QUOTES).rstrip(_QUOTES).strip()


def follow_up_source(request: AskRequest) -> str:
    """Last user turns plus the current query, capped from the end."""
    user_turns = [t.content for t in request.chats if t.role == Role.USER][-FOLLOW_UP_USER_TURNS:]
    joined = "\n".join(user_turns + [request.query])
    return joined[-FOLLOW_UP_MAX_CHARS:]


def parse_follow_ups(text: str) -> List[Dict[str, str]]:
    """
    Extract [{"question": ...}] from model output.

    Raises:
        ValueError: when no JSON array can be decoded
    """
    match = _JSON_ARRAY.search(text or "")
    if not match:
        raise ValueError("No JSON array in follow-up output")
    items = json.loads(match.group(0))
    questions: List[Dict[str, str]] = []
    for item in items:
        if isinstance(item, dict) and isinstance(item.get("question"), str):
            questions.append({"question": item["question"].strip()})
        elif isinstance(item, str):
            questions.append({"question": item.strip()})
    return questions[:4]


class SessionCompanions:
    """Generates thread titles and follow-up questions with a hosted model."""

    def __init__(self, client: Optional[HostedTextClient] = None):
        self.client = client

    async def thread_title(self, request: AskRequest) -> str:
        fallback = request.query[:TITLE_FALLBACK_LENGTH]
        if self.client is None:
            return fallback
        try:
            title = strip_quotes(await self.client.generate(
                TITLE_PROMPT.format(query=request.query),
                api_key=request.api_keys.get("gemini"),
            ))
        except Exception as e:
            logger.warning("Thread title generation failed", error=str(e))
            return fallback
        return title or fallback

    async def follow_ups(self, request: AskRequest) -> List[Dict[str, str]]:
        if self.client is None:
            return []
        try:
            text = await self.client.generate(
                FOLLOW_UP_PROMPT.format(query=follow_up_source(request)),
                api_key=request.api_keys.get("gemini"),
                json_output=True,
            )
            return parse_follow_ups(text)
        except Exception as e:
            logger.warning("Follow-up generation failed", error=str(e))
            return []
