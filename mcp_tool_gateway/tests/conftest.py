"""
Shared fixtures for gateway tests.
"""
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from mcp_tool_gateway.catalog import ToolCatalog, ToolDefinition
from mcp_tool_gateway.config import GatewayConfig
from mcp_tool_gateway.executor import ToolExecutor, ExecutionOutcome
from mcp_tool_gateway.main import create_app
from mcp_tool_gateway.mcp_models import MCPToolGateway


class RecordingExecutor(ToolExecutor):
    """Records every call. Output is looked up per tool, defaulting to the 'text' argument."""

    def __init__(self, outputs: Optional[Dict[str, Any]] = None, errors: Optional[Dict[str, Exception]] = None):
        self.outputs = outputs or {}
        self.errors = errors or {}
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, tool_name, arguments, confirmation, definition, context):
        self.calls.append({
            "tool_name": tool_name,
            "arguments": dict(arguments),
            "confirmation": confirmation,
            "interactive": context.interactive,
        })
        if tool_name in self.errors:
            raise self.errors[tool_name]
        output = self.outputs.get(tool_name, arguments.get("text"))
        if callable(output):
            output = output(arguments)
        return ExecutionOutcome(command_exposed=True, success=True, output=output)


def echo_definition(**overrides) -> ToolDefinition:
    values = dict(
        name="Echo",
        description="Echoes the text argument",
        allowed_parameters=["text=string"],
        output_is_plain_text=True,
    )
    values.update(overrides)
    return ToolDefinition(**values)


def make_gateway(definitions=None, executor=None, **config) -> MCPToolGateway:
    catalog = ToolCatalog(definitions if definitions is not None else [echo_definition()])
    return MCPToolGateway(catalog, executor or RecordingExecutor(), GatewayConfig(**config))


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def gateway(executor):
    return make_gateway(executor=executor)


@pytest.fixture
def client(gateway):
    return TestClient(create_app(gateway))


@pytest.fixture(autouse=True)
def reset_sse_exit_event():
    # sse-starlette keeps a module-level exit event bound to the first event loop that waited on it
    from sse_starlette.sse import AppStatus
    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield
