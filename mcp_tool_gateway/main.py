#!/usr/bin/env python3
"""
MCP Tool Gateway - application factory
Builds the FastAPI application around one MCPToolGateway instance:
security gate middleware, JSON-RPC shaped routing errors and the
MCP / SSE routers.
"""
from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .builtin_tools import BUILTIN_HANDLERS, RELOAD_TOOL_NAME, make_reload_handler
from .catalog import ToolCatalog
from .config import ConfigManager
from .constants import PROTOCOL_VERSION, SERVER_INFO, METHOD_NOT_FOUND, INVALID_REQUEST
from .executor import CallableToolExecutor, CompositeToolExecutor, RemoteToolExecutor, ToolExecutor
from .mcp_models import MCPToolGateway
from .middleware import SecurityGate, SecurityGateMiddleware, create_error_response
from .routers import mcp_router, sse_router

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )


def build_executor(config_manager: ConfigManager, catalog: ToolCatalog) -> ToolExecutor:
    """Local built-in handlers (including reload) with an optional remote backend."""
    local = CallableToolExecutor(BUILTIN_HANDLERS)
    local.register(RELOAD_TOOL_NAME, make_reload_handler(catalog, config_manager.load_tool_definitions))

    remote = None
    if config_manager.config.remote_executor_url:
        remote = RemoteToolExecutor(config_manager.config.remote_executor_url)
        logger.info(f"Forwarding tools without a local handler to {remote.server_url}")
    return CompositeToolExecutor(local, remote)


def build_gateway(config_manager: Optional[ConfigManager] = None,
                  executor: Optional[ToolExecutor] = None) -> MCPToolGateway:
    config_manager = config_manager or ConfigManager()
    catalog = ToolCatalog(config_manager.load_tool_definitions())
    executor = executor or build_executor(config_manager, catalog)
    return MCPToolGateway(catalog, executor, config_manager.config)


def create_app(mcp_gateway: Optional[MCPToolGateway] = None,
               security_gate: Optional[SecurityGate] = None) -> FastAPI:
    mcp_gateway = mcp_gateway or build_gateway()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handles application startup and shutdown events."""
        logger.info(f"MCP Tool Gateway starting up with {len(mcp_gateway.catalog.list())} tools...")
        yield
        logger.info("MCP Tool Gateway shutting down...")
        await mcp_gateway.stream_manager.stop()
        await mcp_gateway.executor.close()

    app = FastAPI(
        title="MCP Tool Gateway",
        description=f"Tool invocation gateway implementing MCP {PROTOCOL_VERSION} over HTTP and SSE",
        version=SERVER_INFO["version"],
        lifespan=lifespan,
        redirect_slashes=False,
        docs_url=None,
        redoc_url=None,
        openapi_url=None
    )
    app.state.mcp_gateway = mcp_gateway

    app.add_middleware(SecurityGateMiddleware, gate=security_gate or SecurityGate())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Routing errors use the JSON-RPC error envelope."""
        if exc.status_code == 404:
            code, message = METHOD_NOT_FOUND, f"Not found: {request.url.path}"
        elif exc.status_code == 405:
            code, message = METHOD_NOT_FOUND, f"Method {request.method} not allowed for {request.url.path}"
        else:
            code, message = INVALID_REQUEST, str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(None, code, message),
            headers=getattr(exc, "headers", None)
        )

    # MCP Protocol
    app.include_router(mcp_router)

    # Legacy SSE transport
    app.include_router(sse_router)

    return app
