"""
Protocol constants for MCP Tool Gateway
"""

# MCP protocol revision 2025-06-18
PROTOCOL_VERSION = "2025-06-18"
SERVER_INFO = {
    "name": "mcp-tool-gateway",
    "version": "1.0.0"
}

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 2175
DEFAULT_MAX_OUTPUT_LENGTH = 75000
DEFAULT_JSON_DEPTH = 10
MIN_JSON_DEPTH = 2
DEFAULT_HEARTBEAT_INTERVAL = 10.0

# Sentinels prefixed to reduced output so an LLM consumer does not retry blindly
TRIMMED_OUTPUT_SENTINEL = "TRIMMED OUTPUT ... don't retry same function without check parameters! >>"
JSON_REDUCED_SENTINEL = (
    "JSON REDUCED TO MINIMUM DEPTH AND STILL TRIMMED ... "
    "don't retry same function without check parameters! >>"
)
EMPTY_OUTPUT_PLACEHOLDER = "Command executed successfully but produced no output."

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

LOCALHOST_NAMES = ("localhost", "127.0.0.1", "::1")
