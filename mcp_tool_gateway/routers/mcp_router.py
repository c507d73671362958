"""
MCP Protocol Router
Handles the JSON-RPC and plain HTTP tool endpoints
- GET /mcp: tool listing
- POST /mcp: JSON-RPC 2.0 dispatch (initialize, initialized, tools/list, tools/call)
- GET|POST /mcp/list-tools: tool listing without the JSON-RPC envelope
- POST /mcp/call-tool: tool call without the JSON-RPC envelope
"""
import json
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from mcp_tool_gateway.constants import (
    PARSE_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    INVALID_PARAMS,
    INTERNAL_ERROR,
)
from mcp_tool_gateway.mcp_models import MCPToolGateway
from mcp_tool_gateway.middleware import create_error_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mcp-protocol"])


def get_mcp_gateway(request: Request) -> MCPToolGateway:
    """Get the gateway instance owned by this application."""
    return request.app.state.mcp_gateway


async def read_json_body(request: Request) -> Tuple[Optional[Any], Optional[JSONResponse]]:
    """Parse the request body. Returns (data, None) or (None, 400 parse-error response)."""
    raw = await request.body()
    try:
        return json.loads(raw), None
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Malformed JSON body on {request.url.path}: {e}")
        return None, JSONResponse(
            status_code=400,
            content=create_error_response(None, PARSE_ERROR, "Parse error: request body is not valid JSON")
        )


def jsonrpc_result(request_id, result: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(content={"jsonrpc": "2.0", "id": request_id, "result": result})


async def dispatch_jsonrpc(mcp_gateway: MCPToolGateway, request_data: Any) -> JSONResponse:
    """Route one JSON-RPC envelope to its handler."""
    if not isinstance(request_data, dict) or not isinstance(request_data.get("method"), str):
        return JSONResponse(
            status_code=400,
            content=create_error_response(
                request_data.get("id") if isinstance(request_data, dict) else None,
                INVALID_REQUEST,
                "Invalid JSON-RPC request format."
            )
        )

    method = request_data["method"]
    params = request_data.get("params") or {}
    request_id = request_data.get("id")
    if not isinstance(params, dict):
        params = {}

    if method == "initialize":
        client_name = (params.get("clientInfo") or {}).get("name", "Unknown Client")
        logger.info(f"MCP Tool Gateway initialized by {client_name}")
        return jsonrpc_result(request_id, mcp_gateway.initialize_result())

    elif method in ("initialized", "notifications/initialized"):
        logger.info("Client initialization completed.")
        return jsonrpc_result(request_id, {})

    elif method == "tools/list":
        return jsonrpc_result(request_id, {"tools": mcp_gateway.list_tools()})

    elif method == "tools/call":
        tool_name = params.get("name")
        if not tool_name or not isinstance(tool_name, str):
            return JSONResponse(
                status_code=400,
                content=create_error_response(request_id, INVALID_PARAMS, "Tool name is required")
            )
        _, bounded = await mcp_gateway.call_tool(tool_name, params.get("arguments"))
        return jsonrpc_result(request_id, mcp_gateway.tool_content(bounded))

    logger.warning(f"Received unsupported method: {method}")
    return JSONResponse(
        status_code=404,
        content=create_error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
    )


async def handle_jsonrpc_request(request: Request) -> JSONResponse:
    """Shared by POST /mcp and POST /messages."""
    request_data, error_response = await read_json_body(request)
    if error_response is not None:
        return error_response

    try:
        return await dispatch_jsonrpc(get_mcp_gateway(request), request_data)
    except Exception as e:
        logger.error(f"Critical error in JSON-RPC dispatch: {e}", exc_info=True)
        request_id = request_data.get("id") if isinstance(request_data, dict) else None
        return JSONResponse(
            status_code=500,
            content=create_error_response(request_id, INTERNAL_ERROR, "Internal Server Error")
        )


def list_tools_response(request: Request) -> JSONResponse:
    try:
        return JSONResponse(content={"tools": get_mcp_gateway(request).list_tools()})
    except Exception as e:
        logger.error(f"Error listing tools: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=create_error_response(None, INTERNAL_ERROR, "Internal Server Error")
        )


@router.get("/mcp")
async def mcp_get_endpoint(request: Request):
    """List tools. The request body, if any, is ignored."""
    return list_tools_response(request)


@router.post("/mcp")
async def mcp_post_endpoint(request: Request):
    """JSON-RPC 2.0 endpoint."""
    return await handle_jsonrpc_request(request)


@router.api_route("/mcp/list-tools", methods=["GET", "POST"])
async def list_tools_endpoint(request: Request):
    return list_tools_response(request)


@router.post("/mcp/call-tool")
async def call_tool_endpoint(request: Request):
    """Call a tool with ``{name, arguments}`` and return the MCP content body directly."""
    request_data, error_response = await read_json_body(request)
    if error_response is not None:
        return error_response

    if not isinstance(request_data, dict) or not isinstance(request_data.get("name"), str) or not request_data["name"]:
        return JSONResponse(
            status_code=400,
            content={"content": [{"type": "text", "text": "Tool name is required"}], "isError": True}
        )

    try:
        mcp_gateway = get_mcp_gateway(request)
        _, bounded = await mcp_gateway.call_tool(request_data["name"], request_data.get("arguments"))
        return JSONResponse(content=mcp_gateway.tool_content(bounded))
    except Exception as e:
        logger.error(f"Critical error in call-tool endpoint: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=create_error_response(None, INTERNAL_ERROR, "Internal Server Error")
        )
