#!/usr/bin/env python3
"""
Output shaping for MCP Tool Gateway
Bounds tool output to a maximum length. Structured output is re-serialized
at decreasing JSON depths before anything is cut; truncation is the last
resort and always carries a sentinel prefix.
"""
import dataclasses
import json
import logging
import pprint
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from pathlib import PurePath
from typing import Any, List, Optional

from pydantic import BaseModel

from .catalog import ToolDefinition
from .constants import (
    DEFAULT_MAX_OUTPUT_LENGTH,
    MIN_JSON_DEPTH,
    TRIMMED_OUTPUT_SENTINEL,
    JSON_REDUCED_SENTINEL,
    EMPTY_OUTPUT_PLACEHOLDER,
)
from .invoker import ToolInvocationResult, OutputKind

logger = logging.getLogger(__name__)


@dataclass
class BoundedOutput:
    text: str
    truncated: bool = False
    effective_depth: Optional[int] = None
    attempted_depths: List[int] = field(default_factory=list)
    is_error: bool = False


def _summarize(value: Any) -> str:
    """Stand-in for a container that lies beyond the serialization depth."""
    try:
        return f"{type(value).__name__}[{len(value)}]"
    except TypeError:
        return type(value).__name__


def to_jsonable(value: Any, depth: int) -> Any:
    """
    Convert ``value`` into plain JSON types, expanding at most ``depth``
    levels of containers. Deeper containers are replaced by a short summary.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return to_jsonable(value.value, depth)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, PurePath):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")

    if isinstance(value, BaseModel):
        if depth <= 0:
            return type(value).__name__
        value = value.model_dump()
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        if depth <= 0:
            return type(value).__name__
        value = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}

    if isinstance(value, Mapping):
        if depth <= 0:
            return _summarize(value)
        return {str(key): to_jsonable(item, depth - 1) for key, item in value.items()}

    if isinstance(value, (list, tuple, set, frozenset, Iterator)):
        items = list(value)
        if depth <= 0:
            return f"{type(value).__name__}[{len(items)}]"
        return [to_jsonable(item, depth - 1) for item in items]

    if hasattr(value, "__dict__"):
        if depth <= 0:
            return type(value).__name__
        public = {k: v for k, v in vars(value).items() if not k.startswith("_")}
        return {key: to_jsonable(item, depth - 1) for key, item in public.items()}

    return str(value)


def materialize_nested(value: Any) -> Any:
    """Drain nested iterators once so every depth attempt sees the same data."""
    if isinstance(value, Mapping):
        return {key: materialize_nested(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return tuple(materialize_nested(item) for item in value)
    if isinstance(value, (list, Iterator)):
        return [materialize_nested(item) for item in value]
    return value


def serialize_json(value: Any, depth: int) -> str:
    return json.dumps(to_jsonable(value, depth), ensure_ascii=False, allow_nan=False)


def describe_as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        return pprint.pformat(value, width=120, sort_dicts=False)
    return str(value)


def flatten_to_text(output: Any) -> str:
    """Join output elements into one string; strings pass through unchanged."""
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, (list, tuple, Iterator)):
        return "\n".join(describe_as_text(item) for item in output)
    return describe_as_text(output)


def trim_with_sentinel(text: str, max_length: int, sentinel: str) -> str:
    """Prefix the sentinel and cut so the whole string is exactly max_length."""
    if max_length <= len(sentinel):
        return sentinel[:max_length]
    return sentinel + text[:max_length - len(sentinel)]


class OutputShaper:
    """Produces a BoundedOutput from a ToolInvocationResult."""

    def __init__(self, max_length: int = DEFAULT_MAX_OUTPUT_LENGTH, min_depth: int = MIN_JSON_DEPTH):
        if max_length < 1:
            raise ValueError("max_length must be at least 1")
        self.max_length = max_length
        self.min_depth = min_depth

    def shape(self, result: ToolInvocationResult, definition: Optional[ToolDefinition] = None,
              max_length: Optional[int] = None) -> BoundedOutput:
        limit = max_length if max_length is not None else self.max_length
        if limit < 1:
            raise ValueError("max_length must be at least 1")
        definition = definition or result.definition

        if result.is_error:
            shaped = self.shape_text(result.error_message, limit, placeholder=False)
            shaped.is_error = True
            return shaped

        if result.output_kind == OutputKind.EMPTY:
            return self.shape_text(None, limit)

        if definition is None or definition.output_is_plain_text:
            return self.shape_text(result.output, limit)

        return self.shape_structured(result.output, definition.json_serialization_depth, limit)

    def shape_text(self, output: Any, max_length: int, placeholder: bool = True) -> BoundedOutput:
        text = flatten_to_text(output)
        if placeholder and not text.strip():
            text = EMPTY_OUTPUT_PLACEHOLDER

        if len(text) > max_length:
            logger.info(f"Trimming text output from {len(text)} to {max_length} characters")
            return BoundedOutput(text=trim_with_sentinel(text, max_length, TRIMMED_OUTPUT_SENTINEL), truncated=True)
        return BoundedOutput(text=text)

    def shape_structured(self, output: Any, depth: int, max_length: int) -> BoundedOutput:
        if output is None:
            return self.shape_text(output, max_length)

        floor = min(self.min_depth, depth)
        attempted: List[int] = []
        serialized = ""
        try:
            output = materialize_nested(output)
            for current in range(depth, floor - 1, -1):
                attempted.append(current)
                serialized = serialize_json(output, current)
                if len(serialized) <= max_length:
                    if current < depth:
                        logger.info(f"Reduced JSON depth from {depth} to {current} to fit {max_length} characters")
                    return BoundedOutput(text=serialized, effective_depth=current, attempted_depths=attempted)
        except Exception as e:
            logger.warning(f"JSON serialization failed ({e}), falling back to text output")
            fallback = self.shape_text(output, max_length)
            fallback.attempted_depths = attempted
            return fallback

        logger.info(f"JSON output still {len(serialized)} characters at depth {floor}, trimming")
        return BoundedOutput(
            text=trim_with_sentinel(serialized, max_length, JSON_REDUCED_SENTINEL),
            truncated=True,
            effective_depth=floor,
            attempted_depths=attempted
        )
