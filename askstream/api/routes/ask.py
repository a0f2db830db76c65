"""
askstream - Ask API

POST /v2/ask: validate, check credits, stream one RequestSession as SSE.
"""

from fastapi import APIRouter, Depends, Request

from ...core.errors import CreditsExhaustedError
from ...core.models import ChatTurn, Role, SessionOutcome
from ...observability.logging import get_logger
from ...routing.session import SessionResult
from ..dependencies import (
    AppState,
    credit_identity,
    geo_from_headers,
    get_app_state,
    get_request_id,
    header_api_keys,
)
from ..models import AskRequestBody
from ..streaming import session_response


logger = get_logger(__name__)

router = APIRouter(prefix="/v2", tags=["ask"])


@router.post("/ask")
async def ask(
    request: Request,
    body: AskRequestBody,
    state: AppState = Depends(get_app_state),
):
    """
    Answer a query as a Server-Sent Events stream.

    **Model Format:**
    - `gemini/gemini-2.5-flash` - Hosted model
    - `self/qwen3:0.6b` - Self-hosted model
    - `mode/deep` - Canned or profile mode

    Set `mode: "deployer"` for the tool-calling deployment agent.

    **Stream:**
    `event`, `llmResult`, `thinking`, ... frames, then exactly one `error`
    frame or `event: aborted` when the session did not complete, then
    `Duration` and a closing `event` frame with empty data.
    """
    request_id = get_request_id(request)
    identity = credit_identity(request)
    try:
        await state.credit_store.ensure_available(identity)
    except CreditsExhaustedError as e:
        e.error.request_id = request_id
        raise

    ask_request = body.to_internal(
        geo=geo_from_headers(request.headers),
        api_keys=header_api_keys(request.headers),
    )
    cost = state.capabilities.credit_cost(ask_request.namespace, ask_request.model_name)

    async def on_complete(result: SessionResult):
        if result.outcome != SessionOutcome.COMPLETED:
            return
        balance = await state.credit_store.deduct(identity, cost)
        logger.info("Credits deducted", cost=cost, balance=balance, session_id=result.session_id)
        if ask_request.thread_id:
            await state.thread_store.append(ask_request.thread_id, [
                ChatTurn(Role.USER, ask_request.query),
                ChatTurn(Role.MODEL, result.text),
            ])

    return session_response(ask_request, state, request_id, on_complete)
