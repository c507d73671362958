#!/usr/bin/env python3
"""
Tool catalog for MCP Tool Gateway
Holds the registered tool definitions and serves lookups against an
immutable snapshot that is swapped wholesale on reload.
"""
import logging
import threading
from types import MappingProxyType
from typing import Dict, Any, List, Optional, Iterable, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_JSON_DEPTH

logger = logging.getLogger(__name__)


class ToolNotFoundException(Exception):
    """Custom exception for when a tool cannot be located."""
    pass


# Type hints accepted in parameter declarations -> JSON schema type
_TYPE_HINTS = {
    "str": "string",
    "string": "string",
    "system.string": "string",
    "int": "integer",
    "integer": "integer",
    "long": "integer",
    "system.int32": "integer",
    "system.int64": "integer",
    "float": "number",
    "double": "number",
    "number": "number",
    "system.double": "number",
    "bool": "boolean",
    "boolean": "boolean",
    "switch": "boolean",
    "system.boolean": "boolean",
    "system.management.automation.switchparameter": "boolean",
    "list": "array",
    "array": "array",
    "tuple": "array",
    "system.object[]": "array",
    "system.collections.generic.list`1": "array",
}


def convert_type_hint(type_hint: Optional[str]) -> str:
    """Map a Python, JSON schema or .NET type name onto a JSON schema type."""
    if not type_hint:
        return "string"
    return _TYPE_HINTS.get(type_hint.strip().lower(), "object")


class ToolParameter(BaseModel):
    """A single parameter a tool accepts from callers."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Parameter name as forwarded to the executor")
    type: str = Field(default="string", description="JSON schema type")
    description: str = Field(default="", description="Parameter description")
    enum: Optional[List[str]] = Field(default=None, description="Allowed values")
    required: bool = Field(default=False, description="Whether callers must supply it")

    @classmethod
    def parse(cls, declaration: str) -> "ToolParameter":
        """
        Parse the shorthand form used in tool definition files.

        ``"name"``, ``"name=type"``, ``"name=a|b|c"`` (string enum) and a
        trailing ``!`` on the name for required parameters (``"path!=string"``).
        """
        name, _, hint = declaration.partition("=")
        name = name.strip()
        required = name.endswith("!")
        if required:
            name = name[:-1].strip()
        if not name:
            raise ValueError(f"Invalid parameter declaration: {declaration!r}")

        hint = hint.strip()
        if "|" in hint:
            values = [v.strip() for v in hint.split("|") if v.strip()]
            return cls(name=name, type="string", enum=values, required=required)
        return cls(name=name, type=convert_type_hint(hint), required=required)

    def to_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema


class ToolDefinition(BaseModel):
    """One entry per exposed operation. Immutable once constructed."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Unique, case-sensitive tool name")
    description: str = Field(default="", description="Human/LLM-facing text")
    module: Optional[str] = Field(default=None, description="Owning module, used for qualified names")
    allowed_parameters: List[ToolParameter] = Field(default_factory=list)
    forced_parameters: Dict[str, Any] = Field(default_factory=dict)
    requires_confirmation: bool = Field(default=False)
    output_is_plain_text: bool = Field(default=False)
    json_serialization_depth: int = Field(default=DEFAULT_JSON_DEPTH, ge=1)

    @field_validator("allowed_parameters", mode="before")
    @classmethod
    def _parse_parameter_shorthand(cls, value):
        if value is None:
            return []
        parsed = []
        for item in value:
            if isinstance(item, str):
                parsed.append(ToolParameter.parse(item))
            else:
                parsed.append(item)
        return parsed

    @field_validator("allowed_parameters")
    @classmethod
    def _unique_parameter_names(cls, value: List[ToolParameter]):
        seen = set()
        for parameter in value:
            if parameter.name in seen:
                raise ValueError(f"Duplicate parameter name: {parameter.name}")
            seen.add(parameter.name)
        return value

    @property
    def allowed_parameter_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.allowed_parameters)

    @property
    def qualified_names(self) -> Tuple[str, ...]:
        """Bare name plus the module-qualified spellings."""
        if not self.module:
            return (self.name,)
        return (self.name, f"{self.module}\\{self.name}", f"{self.module}.{self.name}")

    def input_schema(self) -> Dict[str, Any]:
        """JSON schema advertised in tool listings. Forced parameters are hidden."""
        visible = [p for p in self.allowed_parameters if p.name not in self.forced_parameters]
        return {
            "type": "object",
            "properties": {p.name: p.to_schema() for p in visible},
            "required": [p.name for p in visible if p.required],
        }

    def to_mcp_tool(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }


class CatalogSnapshot:
    """Read-only view over one generation of tool definitions."""

    def __init__(self, definitions: Iterable[ToolDefinition], generation: int = 0):
        ordered: List[ToolDefinition] = []
        by_name: Dict[str, ToolDefinition] = {}
        for definition in definitions:
            if definition.name in by_name:
                raise ValueError(f"Duplicate tool name: {definition.name}")
            by_name[definition.name] = definition
            ordered.append(definition)
        self._ordered = tuple(ordered)
        self._by_name: Mapping[str, ToolDefinition] = MappingProxyType(by_name)
        self.generation = generation

    def lookup(self, name: str) -> Optional[ToolDefinition]:
        return self._by_name.get(name)

    def get(self, name: str) -> ToolDefinition:
        definition = self._by_name.get(name)
        if definition is None:
            raise ToolNotFoundException(f"Tool not found: {name}")
        return definition

    def list(self) -> Tuple[ToolDefinition, ...]:
        return self._ordered

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name


class ToolCatalog:
    """
    Registry of tool definitions.

    Readers take a snapshot reference; ``replace`` swaps the reference under
    a lock so an in-flight call sees either the old or the new generation.
    """

    def __init__(self, definitions: Optional[Iterable[ToolDefinition]] = None):
        if definitions is None:
            from .builtin_tools import default_tool_definitions
            definitions = default_tool_definitions()
            logger.info("No tool definitions supplied, using built-in default set")
        self._lock = threading.Lock()
        self._snapshot = CatalogSnapshot(definitions)
        logger.info(f"Tool catalog initialized with {len(self._snapshot)} tools")

    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    def lookup(self, name: str) -> Optional[ToolDefinition]:
        return self._snapshot.lookup(name)

    def get(self, name: str) -> ToolDefinition:
        return self._snapshot.get(name)

    def list(self) -> Tuple[ToolDefinition, ...]:
        return self._snapshot.list()

    def replace(self, definitions: Iterable[ToolDefinition]) -> CatalogSnapshot:
        """Atomically replace the whole catalog. No partial updates."""
        with self._lock:
            new_snapshot = CatalogSnapshot(definitions, generation=self._snapshot.generation + 1)
            self._snapshot = new_snapshot
        logger.info(f"Tool catalog reloaded: generation {new_snapshot.generation}, {len(new_snapshot)} tools")
        return new_snapshot

    def to_mcp_tools(self) -> List[Dict[str, Any]]:
        return [definition.to_mcp_tool() for definition in self._snapshot.list()]
