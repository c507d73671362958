#!/usr/bin/env python3
"""
Server lifecycle for MCP Tool Gateway
Owns the listening socket and a uvicorn server running on a worker thread.
States: STOPPED -> STARTING -> LISTENING -> STOPPED.
"""
import errno
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

import uvicorn
from fastapi import FastAPI

from .config import ConfigManager, GatewayConfig
from .executor import ToolExecutor
from .main import build_gateway, create_app
from .mcp_models import MCPToolGateway

logger = logging.getLogger(__name__)

# Listener errors that mean "we were told to stop", not a fault
_SHUTDOWN_ERRNOS = {errno.ECONNABORTED, errno.EBADF, errno.EINTR}


class ServerAlreadyRunningError(Exception):
    """A session is already active on the requested port."""
    pass


class ServerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"


@dataclass
class ServerSession:
    """Everything one running server owns, for the lifetime of that server."""
    host: str
    port: int
    listener: socket.socket
    app: FastAPI
    mcp_gateway: MCPToolGateway
    server: uvicorn.Server
    thread: threading.Thread
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def catalog(self):
        return self.mcp_gateway.catalog

    @property
    def no_confirmation_tools(self) -> Tuple[str, ...]:
        return tuple(self.mcp_gateway.config.no_confirmation_tools)

    @property
    def url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}"


def bind_listener(host: str, port: int, attempts: int = 5, delay_seconds: float = 1.0) -> socket.socket:
    """Bind the listening socket, retrying while a previous owner releases the port."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    for attempt in range(1, attempts + 1):
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
            sock.listen(128)
            return sock
        except OSError as e:
            sock.close()
            if attempt >= attempts:
                logger.error(f"Could not bind {host}:{port} after {attempts} attempts: {e}")
                raise
            logger.warning(f"Bind to {host}:{port} failed ({e}), retrying in {delay_seconds}s "
                           f"(attempt {attempt}/{attempts})")
            time.sleep(delay_seconds)
    raise OSError(f"Could not bind {host}:{port}")


class GatewayServer:
    """Starts and stops one gateway. Stop is idempotent."""

    def __init__(self, config_manager: Optional[ConfigManager] = None,
                 executor: Optional[ToolExecutor] = None):
        self.config_manager = config_manager or ConfigManager()
        self.executor = executor
        self.state = ServerState.STOPPED
        self.session: Optional[ServerSession] = None
        self.last_error: Optional[BaseException] = None
        self._lock = threading.Lock()

    @property
    def config(self) -> GatewayConfig:
        return self.config_manager.config

    @property
    def is_running(self) -> bool:
        return self.state == ServerState.LISTENING

    @property
    def port(self) -> int:
        return self.session.port if self.session else self.config.port

    def start(self, timeout_seconds: float = 10.0) -> ServerSession:
        with self._lock:
            if self.state != ServerState.STOPPED:
                raise ServerAlreadyRunningError(f"Server already {self.state.value} on port {self.port}")
            self.state = ServerState.STARTING
        self.last_error = None

        config = self.config
        listener = None
        try:
            listener = bind_listener(config.host, config.port,
                                     config.bind_retry_attempts, config.bind_retry_delay_seconds)
            port = listener.getsockname()[1]

            mcp_gateway = build_gateway(self.config_manager, self.executor)
            app = create_app(mcp_gateway)
            server = uvicorn.Server(uvicorn.Config(
                app,
                log_config=None,
                log_level=config.log_level.lower(),
                timeout_graceful_shutdown=config.graceful_shutdown_seconds
            ))
            thread = threading.Thread(
                target=self._serve, args=(server, listener),
                name=f"mcp-tool-gateway-{port}", daemon=True
            )
            self.session = ServerSession(
                host=config.host, port=port, listener=listener, app=app,
                mcp_gateway=mcp_gateway, server=server, thread=thread
            )
            thread.start()

            deadline = time.monotonic() + timeout_seconds
            while not server.started and thread.is_alive() and time.monotonic() < deadline:
                time.sleep(0.05)
            if not server.started:
                raise RuntimeError(f"Server on port {port} failed to start: {self.last_error}")
        except Exception:
            session, self.session = self.session, None
            if session is not None:
                self._teardown(session, timeout_seconds)
            elif listener is not None:
                listener.close()
            self.state = ServerState.STOPPED
            raise

        self.state = ServerState.LISTENING
        logger.info(f"MCP Tool Gateway listening on {self.session.url}")
        return self.session

    def _serve(self, server: uvicorn.Server, listener: socket.socket) -> None:
        """Accept loop; runs until should_exit is set or the listener fails."""
        try:
            server.run(sockets=[listener])
        except OSError as e:
            if e.errno in _SHUTDOWN_ERRNOS:
                logger.debug(f"Listener closed during shutdown: {e}")
            else:
                logger.error(f"Listener failed: {e}", exc_info=True)
                self.last_error = e
        except Exception as e:
            logger.error(f"Listener failed: {e}", exc_info=True)
            self.last_error = e
        finally:
            if self.state == ServerState.LISTENING and not server.should_exit:
                logger.warning("Accept loop ended without a stop request")
                self.state = ServerState.STOPPED

    def stop(self, timeout_seconds: float = 10.0) -> bool:
        """Stop the server. Returns False if nothing was running."""
        with self._lock:
            session, self.session = self.session, None
            if session is None:
                self.state = ServerState.STOPPED
                logger.info(f"No server running on port {self.config.port}")
                return False

        logger.info(f"Stopping MCP Tool Gateway on port {session.port}...")
        self._teardown(session, timeout_seconds)
        self.state = ServerState.STOPPED
        logger.info(f"MCP Tool Gateway on port {session.port} stopped")
        return True

    def _teardown(self, session: ServerSession, timeout_seconds: float) -> None:
        session.mcp_gateway.stream_manager.request_stop_threadsafe()
        session.server.should_exit = True
        session.thread.join(timeout_seconds)
        if session.thread.is_alive():
            logger.warning(f"Server on port {session.port} did not stop in {timeout_seconds}s, forcing exit")
            session.server.force_exit = True
            session.thread.join(timeout_seconds)

        try:
            session.listener.close()
        except OSError as e:
            logger.debug(f"Error closing listener: {e}")


class ServerRegistry:
    """At most one active server per port."""

    def __init__(self):
        self._servers: Dict[int, GatewayServer] = {}
        self._lock = threading.Lock()

    def get(self, port: int) -> Optional[GatewayServer]:
        with self._lock:
            return self._servers.get(port)

    def start(self, config_manager: ConfigManager, executor: Optional[ToolExecutor] = None,
              stop_existing: Optional[bool] = None) -> GatewayServer:
        if stop_existing is None:
            stop_existing = config_manager.config.stop_existing
        port = config_manager.config.port

        existing = self.get(port) if port else None
        if existing is not None and existing.is_running:
            if not stop_existing:
                raise ServerAlreadyRunningError(f"A server is already running on port {port}")
            logger.info(f"Stopping existing server on port {port}")
            self.stop(port)

        server = GatewayServer(config_manager, executor)
        server.start()
        with self._lock:
            self._servers[server.port] = server
        return server

    def stop(self, port: int) -> bool:
        with self._lock:
            server = self._servers.pop(port, None)
        if server is None:
            logger.info(f"No server running on port {port}")
            return False
        return server.stop()

    def stop_all(self) -> None:
        with self._lock:
            ports = list(self._servers)
        for port in ports:
            self.stop(port)
