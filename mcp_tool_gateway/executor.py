#!/usr/bin/env python3
"""
Tool executors for MCP Tool Gateway
The gateway never runs tool logic itself; it hands validated arguments to an
executor and receives an ExecutionOutcome back.

- CallableToolExecutor: runs registered Python callables
- RemoteToolExecutor: forwards tools/call to a backend MCP server (aiohttp)
- CompositeToolExecutor: local callables first, remote backend otherwise
"""
import asyncio
import inspect
import io
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Dict, Any, Optional, Callable

import aiohttp
from starlette.concurrency import run_in_threadpool

from .catalog import ToolDefinition
from .constants import PROTOCOL_VERSION

logger = logging.getLogger(__name__)


class InteractionDisabledError(RuntimeError):
    """Raised when a tool tries to prompt while no interactive channel exists."""
    pass


@dataclass(frozen=True)
class ConfirmationPolicy:
    """Confirmation flag passed through to the executor, never enforced by the gateway."""
    requires_confirmation: bool = False
    bypassed: bool = False

    @property
    def must_confirm(self) -> bool:
        return self.requires_confirmation and not self.bypassed


class ExecutionContext:
    """
    Interaction-disabled context handed to every execution.
    Replaces any ambient console input: reads see end-of-file, prompts raise.
    """

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        self.interactive = False
        self.input_stream = io.StringIO("")
        self.closed = False

    def prompt(self, message: str) -> str:
        raise InteractionDisabledError(
            f"Tool '{self.tool_name}' requested interactive input ({message!r}) "
            f"but no interactive channel is available"
        )

    def close(self) -> None:
        if not self.closed:
            self.input_stream.close()
            self.closed = True

    def __enter__(self) -> "ExecutionContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@dataclass
class ExecutionOutcome:
    """What an executor reports back for a single call."""
    command_exposed: bool
    success: bool = True
    output: Any = None
    error: Optional[str] = None
    reason: Optional[str] = None


class ToolExecutor(ABC):
    """Contract consumed by the gateway."""

    @abstractmethod
    async def execute(self, tool_name: str, arguments: Dict[str, Any],
                      confirmation: ConfirmationPolicy, definition: ToolDefinition,
                      context: ExecutionContext) -> ExecutionOutcome:
        ...

    def handles(self, tool_name: str) -> bool:
        return True

    async def close(self) -> None:
        pass


def _materialize(value: Any) -> Any:
    """Drain lazy sequences so they are evaluated inside the worker thread."""
    if isinstance(value, Iterator):
        return list(value)
    return value


def _call_handler(handler: Callable, kwargs: Dict[str, Any]) -> Any:
    return _materialize(handler(**kwargs))


class CallableToolExecutor(ToolExecutor):
    """Executes tools backed by Python callables registered by name."""

    def __init__(self, handlers: Optional[Dict[str, Callable]] = None):
        self._handlers: Dict[str, Callable] = dict(handlers or {})

    def register(self, tool_name: str, handler: Callable) -> None:
        self._handlers[tool_name] = handler
        logger.debug(f"Registered handler for tool {tool_name}")

    def handles(self, tool_name: str) -> bool:
        return tool_name in self._handlers

    async def execute(self, tool_name: str, arguments: Dict[str, Any],
                      confirmation: ConfirmationPolicy, definition: ToolDefinition,
                      context: ExecutionContext) -> ExecutionOutcome:
        handler = self._handlers.get(tool_name)
        if handler is None:
            return ExecutionOutcome(
                command_exposed=False,
                success=False,
                reason=f"No handler registered for tool: {tool_name}"
            )

        if confirmation.must_confirm:
            # Nobody can approve the call from here
            logger.warning(f"Refusing {tool_name}: confirmation required and no interactive channel")
            return ExecutionOutcome(
                command_exposed=False,
                success=False,
                reason=f"Tool '{tool_name}' requires confirmation, which cannot be given in this context"
            )

        kwargs = dict(arguments)
        if "context" in inspect.signature(handler).parameters:
            kwargs["context"] = context

        if inspect.iscoroutinefunction(handler):
            output = _materialize(await handler(**kwargs))
        else:
            output = await run_in_threadpool(_call_handler, handler, kwargs)

        return ExecutionOutcome(command_exposed=True, success=True, output=output)


class RemoteToolExecutor(ToolExecutor):
    """Forwards tool calls to a backend MCP server over Streamable HTTP."""

    def __init__(self, server_url: str, timeout_seconds: float = 120):
        self.server_url = server_url
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                )
                logger.info(f"New aiohttp.ClientSession created for {self.server_url}")
        return self._session

    async def execute(self, tool_name: str, arguments: Dict[str, Any],
                      confirmation: ConfirmationPolicy, definition: ToolDefinition,
                      context: ExecutionContext) -> ExecutionOutcome:
        session = await self._get_session()
        payload = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": "tools/call",
            "params": {
                "name": tool_name,
                "arguments": arguments,
                "_meta": {"requiresConfirmation": confirmation.must_confirm}
            }
        }
        headers = {
            'Accept': 'application/json, text/event-stream',
            'Content-Type': 'application/json',
            'MCP-Protocol-Version': PROTOCOL_VERSION
        }

        async with session.post(self.server_url, json=payload, headers=headers) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.error(f"Upstream MCP server at {self.server_url} returned error {response.status}: {error_text}")
                return ExecutionOutcome(
                    command_exposed=True,
                    success=False,
                    error=f"Upstream server error: {response.status}"
                )
            data = await response.json(content_type=None)

        if "error" in data:
            error = data["error"] or {}
            return ExecutionOutcome(
                command_exposed=False,
                success=False,
                error=error.get("message", "Unknown upstream error"),
                reason=f"Upstream error code {error.get('code')}"
            )

        result = data.get("result") or {}
        if result.get("structuredContent") is not None:
            output = result["structuredContent"]
        else:
            texts = [
                item.get("text", "")
                for item in result.get("content", [])
                if item.get("type") == "text"
            ]
            output = "\n".join(texts)

        if result.get("isError"):
            return ExecutionOutcome(command_exposed=True, success=False, output=output, error=str(output))
        return ExecutionOutcome(command_exposed=True, success=True, output=output)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info(f"Closed aiohttp.ClientSession for {self.server_url}")


class CompositeToolExecutor(ToolExecutor):
    """Local callables take precedence; everything else goes to the remote backend."""

    def __init__(self, local: CallableToolExecutor, remote: Optional[ToolExecutor] = None):
        self.local = local
        self.remote = remote

    def handles(self, tool_name: str) -> bool:
        return self.local.handles(tool_name) or self.remote is not None

    async def execute(self, tool_name: str, arguments: Dict[str, Any],
                      confirmation: ConfirmationPolicy, definition: ToolDefinition,
                      context: ExecutionContext) -> ExecutionOutcome:
        if self.local.handles(tool_name) or self.remote is None:
            return await self.local.execute(tool_name, arguments, confirmation, definition, context)
        return await self.remote.execute(tool_name, arguments, confirmation, definition, context)

    async def close(self) -> None:
        await self.local.close()
        if self.remote is not None:
            await self.remote.close()
