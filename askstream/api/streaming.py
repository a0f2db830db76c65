"""
askstream - Session Streaming Responses

Runs a RequestSession in its own task and streams its frames as the body of
a text/event-stream response.

The body iterator is cancelled by Starlette when the client disconnects; the
session's cancellation signal is fired and the session finishes its own
finalization in the background.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Set

from fastapi.responses import StreamingResponse

from ..core.models import AskRequest
from ..observability.logging import get_logger
from ..routing.session import RequestSession, SessionResult
from ..streaming.cancellation import CancellationSignal
from ..streaming.sse import SSE_HEADERS, SSEChannel
from .dependencies import AppState


logger = get_logger(__name__)

OnComplete = Callable[[SessionResult], Awaitable[None]]

# Sessions still finalizing after their client went away
_detached_sessions: Set[asyncio.Task] = set()


async def _run_session(session: RequestSession, on_complete: Optional[OnComplete]) -> SessionResult:
    result = await session.run()
    if on_complete is not None:
        try:
            await on_complete(result)
        except Exception:
            logger.exception("Session completion hook failed", session_id=result.session_id)
    return result


def session_response(
    ask_request: AskRequest,
    state: AppState,
    request_id: str,
    on_complete: Optional[OnComplete] = None,
) -> StreamingResponse:
    """
    Build the SSE response for one session.

    Args:
        ask_request: Internal request descriptor
        state: Application collaborators
        request_id: Correlation id for logs and error frames
        on_complete: Awaited with the session result after the stream closes
    """
    channel = SSEChannel()
    signal = CancellationSignal()
    session = RequestSession(
        ask_request,
        state.session_dependencies(),
        channel,
        signal,
        request_id=request_id,
    )

    async def body():
        task = asyncio.create_task(_run_session(session, on_complete))
        finished = False
        try:
            async for frame in channel.frames():
                yield frame
            finished = True
        finally:
            if finished:
                await task
            else:
                signal.cancel("client disconnected")
                logger.info("Client disconnected, session cancelled", session_id=session.session_id)
                _detached_sessions.add(task)
                task.add_done_callback(_detached_sessions.discard)

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Request-Id": request_id, "X-Session-Id": session.session_id},
    )
