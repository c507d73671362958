"""
Routers package for MCP Tool Gateway
"""
from .mcp_router import router as mcp_router
from .sse_router import router as sse_router

__all__ = [
    "mcp_router",
    "sse_router"
]
