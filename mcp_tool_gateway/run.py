#!/usr/bin/env python3
"""
Entry point for MCP Tool Gateway
Run: python -m mcp_tool_gateway.run  (or the mcp-tool-gateway console script)
"""
import argparse
import base64
import json
import logging
import sys
import time
from typing import List, Optional

from .config import ConfigManager, ConfigurationError
from .constants import PROTOCOL_VERSION, SERVER_INFO
from .main import configure_logging
from .server import ServerRegistry, ServerAlreadyRunningError

logger = logging.getLogger(__name__)


def build_lmstudio_deeplink(server_name: str = "mcp-tool-gateway", url: str = "http://localhost:2175/mcp") -> str:
    """Deeplink that registers this gateway as an HTTP MCP server in LM Studio."""
    mcp_config = {
        "servers": {
            server_name: {
                "type": "http",
                "url": url
            }
        }
    }
    encoded = base64.b64encode(json.dumps(mcp_config, indent=4).encode("utf-8")).decode("ascii")
    return f"lmstudio://mcp?config={encoded}"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mcp-tool-gateway", description="MCP tool invocation gateway")
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--host", help="Interface to listen on")
    parser.add_argument("--port", type=int, help="Listening port")
    parser.add_argument("--max-output-length", type=int, help="Maximum characters in a tool response")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--stop-existing", action="store_true", default=None,
                        help="Stop a server already running on the same port")
    parser.add_argument("--print-lmstudio-deeplink", action="store_true",
                        help="Print the LM Studio registration deeplink and exit")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config_manager = ConfigManager.load(args.config)
        config = config_manager.update(
            host=args.host,
            port=args.port,
            max_output_length=args.max_output_length,
            log_level=args.log_level,
            stop_existing=args.stop_existing
        )
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(config.log_level)

    if args.print_lmstudio_deeplink:
        host = "localhost" if config.host in ("127.0.0.1", "0.0.0.0") else config.host
        print(build_lmstudio_deeplink(url=f"http://{host}:{config.port}/mcp"))
        return 0

    logger.info(f"Starting MCP Tool Gateway on {config.host}:{config.port}...")
    logger.info(f"Protocol Version: {PROTOCOL_VERSION}")
    logger.info(f"Server Info: {SERVER_INFO}")

    registry = ServerRegistry()
    try:
        server = registry.start(config_manager)
    except (OSError, ServerAlreadyRunningError, RuntimeError) as e:
        logger.error(f"Failed to start: {e}")
        return 1

    try:
        while server.is_running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        registry.stop_all()
    return 0 if server.last_error is None else 1


if __name__ == "__main__":
    sys.exit(main())
