"""
askstream - Prompt Building

System instructions, the <think> protocol preamble, the zero/auto prompt
profiles and the message list sent to upstream models.
"""

import json
from datetime import date
from typing import Any, Dict, List, Optional

from .context import ContextBudget, ContextCutter, TrimResult
from .models import AskRequest, Role


Message = Dict[str, str]

THINK_PREAMBLE = """Begin output with "<think>" as the very first character (no BOM, no whitespace, no newlines).
Emit exactly one top-level <think>...</think> block containing ONLY your step-by-step reasoning process.
After </think>, produce your final answer in plain text without any formatting tags.
Do NOT include additional <think> blocks, code fences, or markdown anywhere.

In the thinking section:
- Break down the problem methodically
- Analyze relevant context and tool outputs
- Consider implications and alternatives
- Develop your reasoning to an appropriate depth based on query complexity"""

ASSISTANT_GUIDANCE = """You are an expert AI assistant. Use previous chat context and any tool results to provide clear, accurate answers. Include optional practical steps or recommendations.

Instructions :
- Keep answers concise and relevant; expand only if the query is complex.
- never use tool_code or any kind of tools
- be more of human tone then robotic, point out user intent and ask for clarifications if needed"""

ZERO_SYSTEM = """You are a detailed AI assistant. Follow instructions precisely. Answer clearly and concisely.
Always provide context if relevant. Be professional."""

AUTO_SYSTEM = """You are a highly capable AI assistant. Follow these rules strictly:
Strictly follow the <RESULT> and <TOOL> rules. Breaking format will break the system.

--- RESPONSE PROTOCOL ---
- The opening tag (<RESULT> or <TOOL>) must be followed by a newline, then the content.
- The closing tag (</RESULT> or </TOOL>) must be on its own line, directly after the content.

<TOOL> rules:
- Use <TOOL> ONLY when the question requires truly unknown, real-time, or dynamic information.
- Must contain only a valid JSON array. Each element: { "name": string, "input": string }.

<RESULT> rules:
- Use <RESULT> whenever the answer can be provided from general knowledge.
- Contains only the final direct answer as plain text.

Decision rule: default to <RESULT>. Never output both. Never output raw JSON outside <TOOL>.

--- AVAILABLE TOOLS ---
- search: { "query": string }

--- EXAMPLES ---
Q: What is the capital of India?
A:
<RESULT>
New Delhi
</RESULT>

Q: Latest news in Nepal
A:
<TOOL>
[{"name":"search","input":"latest news Nepal"}]
</TOOL>"""

PROFILE_USER_TEMPLATE = """--- RECENT CONVERSATION CONTEXT ---
{recent}

--- CURRENT QUERY ---
{query}

--- USER CUSTOM INSTRUCTIONS ---
{custom}"""

PROFILE_SYSTEMS = {
    "zero": ZERO_SYSTEM,
    "auto": AUTO_SYSTEM,
}


def user_metadata(request: AskRequest, today: Optional[date] = None) -> str:
    today = today or date.today()
    geo = request.geo
    return (
        "<user_metadata>\n"
        f"    Current Date := {today.day} {today.strftime('%B %Y')}\n"
        f"    Geo Location := {(geo.country if geo else '') or 'Unknown'} | "
        f"{(geo.region if geo else '') or 'Unknown'} | {(geo.city if geo else '') or 'Unknown'}\n"
        f"    Model Being used := Provider: {request.namespace or 'N/A'} \t Model: {request.model_name or 'N/A'}\n"
        "</user_metadata>"
    )


def system_instruction(
    request: AskRequest,
    with_think_protocol: bool = False,
    today: Optional[date] = None,
) -> str:
    """
    System prompt for hosted and self-hosted generation.

    The <think> protocol preamble is prepended only when the caller has
    checked that thinking was requested and the model supports it.
    """
    parts = [user_metadata(request, today), ASSISTANT_GUIDANCE]
    if request.custom_prompt:
        parts.append(f'Consider the user\'s custom prompt: "{request.custom_prompt}".')
    text = "\n\n".join(parts)
    if with_think_protocol:
        text = f"{THINK_PREAMBLE}\n\n{text}"
    return text


def tool_context_text(context: Dict[str, Any]) -> str:
    """Render gathered tool outputs (search results) for the model."""
    if not context:
        return ""
    return "Tool outputs:\n" + json.dumps(context, ensure_ascii=False, default=str)


def history_messages(trimmed: TrimResult, model_role: str = "model") -> List[Message]:
    messages: List[Message] = []
    for turn in trimmed.turns:
        role = "user" if turn.role == Role.USER else model_role
        messages.append({"role": role, "content": turn.content})
    return messages


def build_messages(
    request: AskRequest,
    system: str,
    context: Optional[Dict[str, Any]] = None,
    budget: Optional[ContextBudget] = None,
    model_role: str = "model",
) -> List[Message]:
    """
    Assemble the upstream message list.

    Order: system, trimmed history, optional tool context, then the query.
    """
    budget = budget or ContextBudget.from_settings(request.context)
    trimmed = ContextCutter.get_recent_conversations(request.chats, budget)

    messages: List[Message] = [{"role": "system", "content": system}]
    messages.extend(history_messages(trimmed, model_role))

    tool_context = tool_context_text(context or {})
    if tool_context:
        messages.append({
            "role": "user",
            "content": f"Context you can use for response generation : {tool_context}",
        })

    messages.append({"role": "user", "content": f"userQuery: {request.query}"})
    return messages


def build_profile_messages(
    request: AskRequest,
    profile: str,
    context: Optional[Dict[str, Any]] = None,
) -> List[Message]:
    """Messages for the zero/auto prompt profiles."""
    if profile == "auto":
        budget = ContextBudget(
            min_chats=request.context.prev_chat_limit or 4,
            max_tokens=request.context.max_context_tokens or 500,
            absolute_max_tokens=request.context.absolute_max_tokens or 2000,
            truncate_from=request.context.truncate_from or "start",
        )
    else:
        budget = ContextBudget(
            min_chats=5,
            max_tokens=1500,
            absolute_max_tokens=3000,
            truncate_from=request.context.truncate_from or "start",
        )
    trimmed = ContextCutter.get_recent_conversations(request.chats, budget)

    user = PROFILE_USER_TEMPLATE.format(
        recent=trimmed.render(),
        query=request.query,
        custom=request.custom_prompt or "None",
    )
    tool_context = tool_context_text(context or {})
    if tool_context:
        user = f"{user}\n\n--- TOOL OUTPUTS ---\n{tool_context}"

    return [
        {"role": "system", "content": PROFILE_SYSTEMS[profile]},
        {"role": "user", "content": user},
    ]
