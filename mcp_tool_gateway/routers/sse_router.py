"""
SSE Router for MCP Tool Gateway
Legacy Server-Sent Events transport: GET /sse streams the handshake and
heartbeats, POST /messages accepts JSON-RPC exactly like POST /mcp.
"""
import logging

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from mcp_tool_gateway.routers.mcp_router import get_mcp_gateway, handle_jsonrpc_request

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sse"])


@router.get("/sse")
async def sse_endpoint(request: Request):
    """
    SSE endpoint for MCP clients using the legacy transport.
    """
    logger.info("New SSE connection request")
    stream_manager = get_mcp_gateway(request).stream_manager

    metadata = {"client": request.client.host if request.client else "unknown"}

    return EventSourceResponse(
        stream_manager.event_stream(request.is_disconnected, metadata),
        headers={"Cache-Control": "no-cache"}
    )


@router.post("/messages")
async def messages_endpoint(request: Request):
    """
    Messages endpoint for clients on the SSE transport.
    Dispatched identically to POST /mcp; the response is returned directly.
    """
    return await handle_jsonrpc_request(request)
