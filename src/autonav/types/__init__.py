"""Public types for autonav."""

from autonav.types.config import AgentConfig, PermissionMode, SandboxConfig
from autonav.types.events import (
    AgentEvent,
    ErrorEvent,
    ResultEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
    Usage,
)
from autonav.types.memento import DiffStats, IterationRecord, MementoOptions, MementoResult
from autonav.types.plan import ImplementationPlan, ImplementationStep
from autonav.types.tools import ToolDefinition, ToolParam, ToolResult, define_tool

__all__ = [
    "AgentConfig",
    "AgentEvent",
    "DiffStats",
    "ErrorEvent",
    "ImplementationPlan",
    "ImplementationStep",
    "IterationRecord",
    "MementoOptions",
    "MementoResult",
    "PermissionMode",
    "ResultEvent",
    "SandboxConfig",
    "TextEvent",
    "ToolDefinition",
    "ToolParam",
    "ToolResult",
    "ToolResultEvent",
    "ToolUseEvent",
    "Usage",
    "define_tool",
]
