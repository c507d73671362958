#!/usr/bin/env python3
"""
Built-in tool inventory
General-purpose introspection and productivity tools exposed when the
operator does not supply a tool list, plus the catalog reload tool.
"""
import logging
import math
import os
import platform
import socket
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Callable, Sequence

from .catalog import ToolCatalog, ToolDefinition

logger = logging.getLogger(__name__)

RELOAD_TOOL_NAME = "reload_tool_catalog"


def get_current_time(utc: bool = False) -> str:
    now = datetime.now(timezone.utc) if utc else datetime.now().astimezone()
    return now.isoformat()


def get_system_info() -> Dict[str, Any]:
    return {
        "hostname": socket.gethostname(),
        "platform": platform.platform(),
        "system": platform.system(),
        "release": platform.release(),
        "machine": platform.machine(),
        "python_version": sys.version.split()[0],
        "cpu_count": os.cpu_count(),
    }


def get_number_of_cpu_cores() -> int:
    return os.cpu_count() or 1


def get_vector_similarity(vector1: Sequence[float], vector2: Sequence[float]) -> float:
    """
    Cosine similarity normalised to [0, 1] and rounded to 6 digits.
    Zero-magnitude input yields 0.0.
    """
    if vector1 is None or vector2 is None:
        raise ValueError("Both vector1 and vector2 must contain values.")
    if len(vector1) != len(vector2):
        raise ValueError("vector1 and vector2 must have the same length.")
    if len(vector1) == 0:
        raise ValueError("Vectors cannot be empty.")

    dot_product = sum(float(a) * float(b) for a, b in zip(vector1, vector2))
    magnitude1 = math.sqrt(sum(float(a) ** 2 for a in vector1))
    magnitude2 = math.sqrt(sum(float(b) ** 2 for b in vector2))
    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    similarity = min(max(dot_product / (magnitude1 * magnitude2), -1.0), 1.0)
    return round((similarity + 1) / 2, 6)


def list_directory(path: str = ".", include_hidden: bool = False) -> List[Dict[str, Any]]:
    directory = Path(path).expanduser()
    if not directory.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")

    entries = []
    for entry in sorted(directory.iterdir(), key=lambda p: p.name.lower()):
        if not include_hidden and entry.name.startswith("."):
            continue
        stat = entry.stat()
        entries.append({
            "name": entry.name,
            "type": "directory" if entry.is_dir() else "file",
            "size": stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
        })
    return entries


def make_reload_handler(catalog: ToolCatalog, loader: Callable[[], List[ToolDefinition]]) -> Callable[[], str]:
    """Bind the reload tool to a catalog and the loader that produces its replacement."""

    def reload_tool_catalog() -> str:
        definitions = loader()
        snapshot = catalog.replace(definitions)
        return f"Tool catalog reloaded: {len(snapshot)} tools available (generation {snapshot.generation})."

    return reload_tool_catalog


BUILTIN_HANDLERS: Dict[str, Callable] = {
    "get_current_time": get_current_time,
    "get_system_info": get_system_info,
    "get_number_of_cpu_cores": get_number_of_cpu_cores,
    "get_vector_similarity": get_vector_similarity,
    "list_directory": list_directory,
}


def default_tool_definitions() -> List[ToolDefinition]:
    return [
        ToolDefinition(
            name="get_current_time",
            description="Returns the current date and time as an ISO 8601 string.",
            allowed_parameters=["utc=bool"],
            output_is_plain_text=True,
        ),
        ToolDefinition(
            name="get_system_info",
            description="Returns basic information about the host running the gateway.",
            json_serialization_depth=2,
        ),
        ToolDefinition(
            name="get_number_of_cpu_cores",
            description="Returns the number of logical CPU cores on the host.",
            output_is_plain_text=True,
        ),
        ToolDefinition(
            name="get_vector_similarity",
            description="Calculates the cosine similarity of two equal-length vectors, normalised to the range 0..1.",
            allowed_parameters=["vector1!=array", "vector2!=array"],
            output_is_plain_text=True,
        ),
        ToolDefinition(
            name="list_directory",
            description="Lists the entries of a directory with their type, size and modification time.",
            allowed_parameters=["path=string", "include_hidden=bool"],
            json_serialization_depth=3,
        ),
        ToolDefinition(
            name=RELOAD_TOOL_NAME,
            description="Reloads the tool definitions from the gateway configuration.",
            output_is_plain_text=True,
        ),
    ]
