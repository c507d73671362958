"""
Core MCP Gateway Model
Ties the catalog, invoker, output shaper and SSE session manager together
for one running application.
"""
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

from .catalog import ToolCatalog
from .config import GatewayConfig
from .constants import PROTOCOL_VERSION, SERVER_INFO
from .executor import ToolExecutor
from .invoker import ToolInvoker, ToolInvocationRequest, ToolInvocationResult
from .shaper import OutputShaper, BoundedOutput
from .sse_session_manager import StreamingSessionManager

logger = logging.getLogger(__name__)


class MCPToolGateway:
    """
    Per-application gateway state. One instance lives on ``app.state`` so
    several gateways can coexist in one process.
    """

    def __init__(self, catalog: ToolCatalog, executor: ToolExecutor,
                 config: Optional[GatewayConfig] = None,
                 stream_manager: Optional[StreamingSessionManager] = None):
        self.config = config or GatewayConfig()
        self.catalog = catalog
        self.executor = executor
        self.invoker = ToolInvoker(catalog, executor, self.config.no_confirmation_tools)
        self.shaper = OutputShaper(self.config.max_output_length)
        self.stream_manager = stream_manager or StreamingSessionManager(self.config.heartbeat_interval_seconds)
        self.server_start_time = datetime.now()

        logger.info(f"MCP Tool Gateway initialized with protocol version {PROTOCOL_VERSION}")

    def list_tools(self) -> List[Dict[str, Any]]:
        return self.catalog.to_mcp_tools()

    def initialize_result(self) -> Dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {
                "tools": {"listChanged": True}
            },
            "serverInfo": SERVER_INFO
        }

    async def call_tool(self, tool_name: str, arguments: Any = None) -> Tuple[ToolInvocationResult, BoundedOutput]:
        result = await self.invoker.invoke(ToolInvocationRequest(tool_name=tool_name, arguments=arguments))
        bounded = self.shaper.shape(result, result.definition)
        if result.is_error:
            logger.info(f"Tool call {tool_name} failed: {result.error_message}")
        return result, bounded

    @staticmethod
    def tool_content(bounded: BoundedOutput) -> Dict[str, Any]:
        """MCP tools/call result body."""
        content: Dict[str, Any] = {"content": [{"type": "text", "text": bounded.text}]}
        if bounded.is_error:
            content["isError"] = True
        return content
