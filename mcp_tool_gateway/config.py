#!/usr/bin/env python3
"""
Configuration management for MCP Tool Gateway
Loads settings from a JSON file, .env and environment variables
"""
import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .catalog import ToolDefinition
from .constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_MAX_OUTPUT_LENGTH,
    DEFAULT_HEARTBEAT_INTERVAL,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MCP_GATEWAY_CONFIG"


class ConfigurationError(Exception):
    """Raised when a configuration or tool definition file cannot be used."""
    pass


class GatewayConfig(BaseModel):
    """Main gateway configuration"""
    host: str = Field(default=DEFAULT_HOST, description="Interface to listen on")
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535, description="Listening port (0 picks a free port)")
    max_output_length: int = Field(default=DEFAULT_MAX_OUTPUT_LENGTH, ge=1,
                                   description="Maximum characters in a tool response")
    no_confirmation_tools: List[str] = Field(default_factory=list,
                                             description="Tools whose confirmation requirement is bypassed")
    stop_existing: bool = Field(default=False, description="Stop a running server on the same port first")
    heartbeat_interval_seconds: float = Field(default=DEFAULT_HEARTBEAT_INTERVAL, gt=0,
                                              description="Interval between SSE heartbeat events")
    bind_retry_attempts: int = Field(default=5, ge=1, description="Attempts to bind the listening socket")
    bind_retry_delay_seconds: float = Field(default=1.0, ge=0, description="Delay between bind attempts")
    graceful_shutdown_seconds: int = Field(default=5, ge=0, description="Time allowed for open connections on stop")
    log_level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    tools: Optional[List[ToolDefinition]] = Field(default=None,
                                                  description="Inline tool definitions (None = built-in set)")
    tools_file: Optional[str] = Field(default=None, description="JSON file holding a list of tool definitions")
    remote_executor_url: Optional[str] = Field(default=None,
                                               description="Backend MCP endpoint for tools without a local handler")


def read_tool_definitions(path: Union[str, Path]) -> List[ToolDefinition]:
    """Read a JSON list of tool definitions."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read tool definitions from {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("tools", [])
    if not isinstance(data, list):
        raise ConfigurationError(f"Tool definitions in {path} must be a JSON list")

    try:
        return [ToolDefinition(**item) for item in data]
    except (TypeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid tool definition in {path}: {e}") from e


class ConfigManager:
    """Resolves the effective gateway configuration and the tool definitions it names."""

    def __init__(self, config: Optional[GatewayConfig] = None, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.config: GatewayConfig = config or GatewayConfig()

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> "ConfigManager":
        load_dotenv()
        config_path = config_path or os.getenv(CONFIG_ENV_VAR)
        data = {}
        if config_path:
            path = Path(config_path)
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                logger.info(f"Loaded configuration from {path}")
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Cannot read configuration from {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"Configuration in {path} must be a JSON object")
        else:
            logger.info("No configuration file given, using defaults")

        data.update(cls._from_environment())
        try:
            config = GatewayConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        return cls(config, config_path)

    @staticmethod
    def _env_int(name: str) -> int:
        try:
            return int(os.getenv(name))
        except ValueError as e:
            raise ConfigurationError(f"{name} must be an integer, got {os.getenv(name)!r}") from e

    @classmethod
    def _from_environment(cls) -> dict:
        overrides = {}
        if os.getenv("MCP_GATEWAY_HOST"):
            overrides["host"] = os.getenv("MCP_GATEWAY_HOST")
        if os.getenv("MCP_GATEWAY_PORT"):
            overrides["port"] = cls._env_int("MCP_GATEWAY_PORT")
        if os.getenv("MCP_GATEWAY_MAX_OUTPUT_LENGTH"):
            overrides["max_output_length"] = cls._env_int("MCP_GATEWAY_MAX_OUTPUT_LENGTH")
        if os.getenv("MCP_GATEWAY_NO_CONFIRMATION_TOOLS"):
            overrides["no_confirmation_tools"] = [
                name.strip() for name in os.getenv("MCP_GATEWAY_NO_CONFIRMATION_TOOLS").split(",") if name.strip()
            ]
        if os.getenv("MCP_GATEWAY_LOG_LEVEL"):
            overrides["log_level"] = os.getenv("MCP_GATEWAY_LOG_LEVEL")
        if os.getenv("MCP_GATEWAY_REMOTE_EXECUTOR_URL"):
            overrides["remote_executor_url"] = os.getenv("MCP_GATEWAY_REMOTE_EXECUTOR_URL")
        return overrides

    def update(self, **kwargs) -> GatewayConfig:
        """Replace the given fields. The result is validated like a freshly loaded configuration."""
        changes = {key: value for key, value in kwargs.items() if value is not None}
        try:
            config = GatewayConfig.model_validate({**self.config.model_dump(), **changes})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        self.config = config
        return self.config

    def load_tool_definitions(self) -> List[ToolDefinition]:
        """Tools file first, then inline definitions, then the built-in set."""
        if self.config.tools_file:
            tools_path = Path(self.config.tools_file)
            if not tools_path.is_absolute() and self.config_path:
                tools_path = self.config_path.parent / tools_path
            definitions = read_tool_definitions(tools_path)
            logger.info(f"Loaded {len(definitions)} tool definitions from {tools_path}")
            return definitions
        if self.config.tools is not None:
            return list(self.config.tools)

        from .builtin_tools import default_tool_definitions
        return default_tool_definitions()
