"""
askstream - Models API

Lists the routable models and modes with their credit costs.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..dependencies import AppState, add_standard_headers, get_app_state, get_request_id


router = APIRouter(prefix="/v2", tags=["models"])


@router.get("/models")
async def list_models(
    request: Request,
    state: AppState = Depends(get_app_state),
):
    """
    List all routable models.

    Hosted models are addressed as `gemini/{name}`, self-hosted models as
    `self/{name}` and modes as `mode/{name}`.
    """
    return JSONResponse(
        content={"object": "list", **state.capabilities.to_dict()},
        headers=add_standard_headers({}, get_request_id(request)),
    )
