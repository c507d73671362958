"""
MCP Tool Gateway Package
"""
# Import and export all public components for clean imports
from .constants import PROTOCOL_VERSION, SERVER_INFO
from .catalog import ToolCatalog, ToolDefinition, ToolParameter, ToolNotFoundException
from .config import ConfigManager, GatewayConfig, ConfigurationError
from .executor import (
    ToolExecutor,
    CallableToolExecutor,
    RemoteToolExecutor,
    CompositeToolExecutor,
    ConfirmationPolicy,
    ExecutionContext,
    ExecutionOutcome,
)
from .invoker import ToolInvoker, ToolInvocationRequest, ToolInvocationResult, OutputKind
from .shaper import OutputShaper, BoundedOutput
from .middleware import SecurityGate
from .sse_session_manager import StreamingSessionManager
from .mcp_models import MCPToolGateway
from .main import create_app, build_gateway
from .server import GatewayServer, ServerRegistry, ServerSession, ServerState, ServerAlreadyRunningError

__all__ = [
    'PROTOCOL_VERSION',
    'SERVER_INFO',
    'ToolCatalog',
    'ToolDefinition',
    'ToolParameter',
    'ToolNotFoundException',
    'ConfigManager',
    'GatewayConfig',
    'ConfigurationError',
    'ToolExecutor',
    'CallableToolExecutor',
    'RemoteToolExecutor',
    'CompositeToolExecutor',
    'ConfirmationPolicy',
    'ExecutionContext',
    'ExecutionOutcome',
    'ToolInvoker',
    'ToolInvocationRequest',
    'ToolInvocationResult',
    'OutputKind',
    'OutputShaper',
    'BoundedOutput',
    'SecurityGate',
    'StreamingSessionManager',
    'MCPToolGateway',
    'create_app',
    'build_gateway',
    'GatewayServer',
    'ServerRegistry',
    'ServerSession',
    'ServerState',
    'ServerAlreadyRunningError'
]
