#!/usr/bin/env python3
"""
Tool invoker for MCP Tool Gateway
Resolves a tool against the catalog, filters caller arguments, applies forced
parameters and dispatches to the executor. Never raises on a bad tool call.
"""
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, Iterable

from .catalog import ToolCatalog, ToolDefinition, ToolNotFoundException
from .executor import ToolExecutor, ConfirmationPolicy, ExecutionContext

logger = logging.getLogger(__name__)


class OutputKind(str, Enum):
    TEXT = "text"
    STRUCTURED = "structured"
    EMPTY = "empty"


def classify_output(output: Any) -> OutputKind:
    if output is None:
        return OutputKind.EMPTY
    if isinstance(output, str):
        return OutputKind.TEXT
    if isinstance(output, (list, tuple)):
        if not output:
            return OutputKind.EMPTY
        if all(isinstance(item, str) for item in output):
            return OutputKind.TEXT
    return OutputKind.STRUCTURED


@dataclass
class ToolInvocationRequest:
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolInvocationResult:
    tool_name: str
    command_exposed: bool
    success: bool = False
    output: Any = None
    output_kind: Optional[OutputKind] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    definition: Optional[ToolDefinition] = None
    forwarded_arguments: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.output_kind is None:
            self.output_kind = classify_output(self.output)

    @property
    def is_error(self) -> bool:
        return not (self.command_exposed and self.success)

    @property
    def error_message(self) -> str:
        parts = [p for p in (self.error, self.reason) if p]
        return ": ".join(parts) if parts else "Tool execution failed"


class ToolInvoker:
    """Turns a ToolInvocationRequest into a ToolInvocationResult."""

    def __init__(self, catalog: ToolCatalog, executor: ToolExecutor,
                 no_confirmation_tools: Iterable[str] = ()):
        self.catalog = catalog
        self.executor = executor
        # Read-only after startup
        self.no_confirmation_tools = frozenset(name.lower() for name in no_confirmation_tools)

    @staticmethod
    def filter_arguments(definition: ToolDefinition, arguments: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """(arguments restricted to allowed parameters) overlaid with forced parameters."""
        allowed = set(definition.allowed_parameter_names)
        supplied = arguments or {}
        forwarded = {key: value for key, value in supplied.items() if key in allowed}

        dropped = [key for key in supplied if key not in allowed]
        if dropped:
            logger.debug(f"Dropping undeclared arguments for {definition.name}: {dropped}")

        forwarded.update(definition.forced_parameters)
        return forwarded

    def is_confirmation_bypassed(self, definition: ToolDefinition) -> bool:
        return any(name.lower() in self.no_confirmation_tools for name in definition.qualified_names)

    def confirmation_policy(self, definition: ToolDefinition) -> ConfirmationPolicy:
        return ConfirmationPolicy(
            requires_confirmation=definition.requires_confirmation,
            bypassed=self.is_confirmation_bypassed(definition)
        )

    async def invoke(self, request: ToolInvocationRequest) -> ToolInvocationResult:
        # One snapshot for the whole call, so a concurrent reload cannot mix generations
        snapshot = self.catalog.snapshot()
        try:
            definition = snapshot.get(request.tool_name)
        except ToolNotFoundException as e:
            logger.warning(f"Lookup failed: {e}")
            return ToolInvocationResult(
                tool_name=request.tool_name,
                command_exposed=False,
                reason="tool not found"
            )

        arguments = request.arguments
        if arguments is not None and not isinstance(arguments, Mapping):
            logger.warning(f"Ignoring non-object arguments for {request.tool_name}: {type(arguments).__name__}")
            arguments = None

        forwarded = self.filter_arguments(definition, arguments)
        confirmation = self.confirmation_policy(definition)

        logger.info(f"Invoking tool {definition.name} (confirmation required: {confirmation.must_confirm})")
        logger.debug(f"Forwarded arguments for {definition.name}: {forwarded}")

        try:
            with ExecutionContext(definition.name) as context:
                outcome = await self.executor.execute(
                    definition.name, forwarded, confirmation, definition, context
                )
                output = outcome.output
                if isinstance(output, Iterator):
                    # Lazy output can still fail while it is drained
                    output = list(output)
        except Exception as e:
            logger.error(f"Tool {definition.name} raised {type(e).__name__}: {e}")
            return ToolInvocationResult(
                tool_name=definition.name,
                command_exposed=False,
                error=str(e) or type(e).__name__,
                definition=definition,
                forwarded_arguments=forwarded
            )

        return ToolInvocationResult(
            tool_name=definition.name,
            command_exposed=outcome.command_exposed,
            success=outcome.success and outcome.command_exposed,
            output=output,
            output_kind=classify_output(output),
            error=outcome.error,
            reason=outcome.reason,
            definition=definition,
            forwarded_arguments=forwarded
        )
