"""Route handlers for the gateway server.

``POST /api/rpc`` dispatches one ``{method, params}`` call; ``GET /api/events``
streams broadcast events (``tool.approval.requested`` / ``.resolved``) as SSE.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from trustgate import __version__
from trustgate.server.auth import verify_gateway_token
from trustgate.server.events import EventBroadcaster
from trustgate.server.methods import RpcDispatcher
from trustgate.server.models import HealthResponse, RpcRequest, RpcResponse

_log = logging.getLogger(__name__)

router = APIRouter()

CLIENT_NAME_HEADER = "X-Client-Name"

# These are set by ``configure_routes`` before the app starts serving.
_dispatcher: RpcDispatcher
_broadcaster: EventBroadcaster


def configure_routes(dispatcher: RpcDispatcher, broadcaster: EventBroadcaster) -> None:
    """Bind the dispatcher and broadcaster used by all route handlers."""
    global _dispatcher, _broadcaster
    _dispatcher = dispatcher
    _broadcaster = broadcaster


# --- Health ---


@router.get("/api/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(version=__version__)


# --- RPC ---


@router.post(
    "/api/rpc",
    response_model=RpcResponse,
    dependencies=[Depends(verify_gateway_token)],
)
async def rpc(body: RpcRequest, request: Request) -> RpcResponse:
    client_name = request.headers.get(CLIENT_NAME_HEADER) or None
    response = await _dispatcher.dispatch(body.method, body.params, client_name=client_name)
    if not response.ok and response.error is not None:
        _log.info("RPC %s rejected (%s)", body.method, response.error.code)
    return response


# --- Events ---


@router.get("/api/events", dependencies=[Depends(verify_gateway_token)])
async def events() -> EventSourceResponse:
    """Server-sent events carrying approval lifecycle broadcasts."""
    subscription = await _broadcaster.subscribe()
    return EventSourceResponse(_broadcaster.stream(subscription))
