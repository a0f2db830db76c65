"""
askstream - Tool Confirmation API

Human confirmation of deployer actions proposed by the agentic strategy.

- GET  /v2/ask/confirmations/{id}          inspect
- POST /v2/ask/confirmations/{id}/confirm  execute, then continue the conversation
- POST /v2/ask/confirmations/{id}/cancel   resolve without executing

Both continuations stream a new agentic session whose query is the
synthetic follow-up turn describing the outcome.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ...core.catalog import DEPLOYER_MODE
from ...core.config import DEFAULT_PLANNER_MODEL
from ...core.errors import ConfirmationNotFoundError
from ...core.models import AskRequest, ChatTurn, Role
from ...observability.logging import get_logger
from ...tools.bridge import FollowUpTurn
from ..dependencies import AppState, add_standard_headers, get_app_state, get_request_id, header_api_keys
from ..models import ConfirmationInfo
from ..streaming import session_response


logger = get_logger(__name__)

router = APIRouter(prefix="/v2/ask/confirmations", tags=["confirmations"])


def _chat_turns(raw: List[Dict[str, Any]]) -> List[ChatTurn]:
    turns = []
    for item in raw or []:
        content = item.get("content") or ""
        if not content:
            continue
        role = Role.MODEL if item.get("role") == Role.MODEL.value else Role.USER
        turns.append(ChatTurn(role=role, content=content))
    return turns


def continuation_request(follow_up: FollowUpTurn, api_keys: Dict[str, str]) -> AskRequest:
    """Agentic request that carries a confirmation outcome back to the planner."""
    metadata = follow_up.metadata
    return AskRequest(
        query=follow_up.content,
        model=metadata.get("model") or f"self/{DEFAULT_PLANNER_MODEL}",
        chats=_chat_turns(metadata.get("chats", [])),
        mode=DEPLOYER_MODE,
        follow_up=False,
        thread_id=metadata.get("thread_id"),
        chat_id=metadata.get("chat_id"),
        wallet_public_key=metadata.get("wallet_public_key"),
        api_keys=api_keys,
    )


@router.get("/{confirmation_id}", response_model=ConfirmationInfo)
async def get_confirmation(
    confirmation_id: str,
    request: Request,
    state: AppState = Depends(get_app_state),
):
    """Inspect a pending confirmation."""
    request_id = get_request_id(request)
    try:
        pending = state.bridge.get(confirmation_id)
    except ConfirmationNotFoundError as e:
        e.error.request_id = request_id
        raise
    return JSONResponse(
        content=pending.to_dict(),
        headers=add_standard_headers({}, request_id),
    )


@router.post("/{confirmation_id}/confirm")
async def confirm(
    confirmation_id: str,
    request: Request,
    state: AppState = Depends(get_app_state),
):
    """
    Execute the confirmed action and stream the planner's explanation.

    Executor failures do not fail the request; they become a `failed`
    follow-up the planner explains to the user.
    """
    request_id = get_request_id(request)
    try:
        follow_up = await state.bridge.confirm(confirmation_id)
    except ConfirmationNotFoundError as e:
        e.error.request_id = request_id
        raise

    logger.info("Confirmation resolved", confirmation_id=confirmation_id, resolution=follow_up.kind.value)
    return session_response(
        continuation_request(follow_up, header_api_keys(request.headers)),
        state,
        request_id,
    )


@router.post("/{confirmation_id}/cancel")
async def cancel(
    confirmation_id: str,
    request: Request,
    state: AppState = Depends(get_app_state),
):
    """Resolve as cancelled; nothing is executed."""
    request_id = get_request_id(request)
    try:
        follow_up = await state.bridge.cancel(confirmation_id)
    except ConfirmationNotFoundError as e:
        e.error.request_id = request_id
        raise

    logger.info("Confirmation resolved", confirmation_id=confirmation_id, resolution=follow_up.kind.value)
    return session_response(
        continuation_request(follow_up, header_api_keys(request.headers)),
        state,
        request_id,
    )
