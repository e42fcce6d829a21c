"""Tool catalog: contract, executors and the registry built at startup."""

from __future__ import annotations

from .base import (
    InvocationState,
    Tool,
    ToolArgs,
    ToolContext,
    ToolErr,
    ToolInvocation,
    ToolOk,
    ToolResult,
)
from .registry import ToolRegistry, ToolServices, build_registry
from .storage import BlobStorageError, BlobStore

__all__ = [
    "BlobStorageError",
    "BlobStore",
    "InvocationState",
    "Tool",
    "ToolArgs",
    "ToolContext",
    "ToolErr",
    "ToolInvocation",
    "ToolOk",
    "ToolRegistry",
    "ToolResult",
    "ToolServices",
    "build_registry",
]
