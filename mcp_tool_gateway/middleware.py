#!/usr/bin/env python3
"""
Middleware for MCP Tool Gateway
Origin allow-listing, CORS headers, preflight handling and path normalisation.
Runs ahead of every router.
"""
import logging
from typing import Dict, Optional, Iterable
from urllib.parse import urlparse

from fastapi import Request, status
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .constants import LOCALHOST_NAMES, INVALID_REQUEST

logger = logging.getLogger(__name__)

STREAMING_PATHS = {"/sse"}


def normalize_path(path: str) -> str:
    """Strip trailing slashes; an empty path becomes '/'."""
    stripped = path.rstrip("/")
    return stripped or "/"


def create_error_response(request_id, code: int, message: str) -> Dict:
    """Create a JSON-RPC 2.0 error response."""
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message}
    }


class SecurityGate:
    """
    Validates the Origin header against the loopback allow-list.
    A missing Origin is treated as a same-origin or non-browser client.
    """

    def __init__(self, allowed_hosts: Iterable[str] = LOCALHOST_NAMES):
        self.allowed_hosts = frozenset(host.lower() for host in allowed_hosts)

    def is_origin_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return True

        try:
            parsed = urlparse(origin.strip())
            hostname = parsed.hostname
        except ValueError as e:
            logger.warning(f"Failed to parse origin: {origin}, error: {e}")
            return False

        if parsed.scheme not in ("http", "https"):
            return False
        return bool(hostname) and hostname.lower() in self.allowed_hosts

    def cors_headers(self, origin: Optional[str], streaming: bool = False) -> Dict[str, str]:
        allow_headers = "Content-Type, Last-Event-ID" if streaming else "Content-Type"
        return {
            "Access-Control-Allow-Origin": origin if origin else "*",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": allow_headers,
        }


class SecurityGateMiddleware(BaseHTTPMiddleware):
    """Rejects disallowed origins with 403 before routing and decorates allowed responses."""

    def __init__(self, app: ASGIApp, gate: Optional[SecurityGate] = None):
        super().__init__(app)
        self.gate = gate or SecurityGate()

    async def dispatch(self, request: Request, call_next):
        path = normalize_path(request.url.path)
        request.scope["path"] = path

        origin = request.headers.get("origin")
        if not self.gate.is_origin_allowed(origin):
            client = request.client.host if request.client else "unknown"
            logger.warning(f"Origin REJECTED: {origin} ({request.method} {path} from {client})")
            if request.method == "OPTIONS":
                return Response(status_code=status.HTTP_403_FORBIDDEN, media_type="application/json")
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content=create_error_response(None, INVALID_REQUEST, "Origin not allowed")
            )

        headers = self.gate.cors_headers(origin, streaming=path in STREAMING_PATHS)
        if request.method == "OPTIONS":
            return Response(status_code=status.HTTP_200_OK, headers=headers, media_type="application/json")

        response = await call_next(request)
        response.headers.update(headers)
        return response
