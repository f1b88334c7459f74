"""Harness-agnostic tool definitions.

A :class:`ToolDefinition` is plain data plus an async handler. Each harness
adapts it to its own hosting mechanism (an SDK MCP server, JSONL
interception, generated tool files), but the handler always runs in this
process, so closure-based capture works the same everywhere.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class ToolParam:
    """A parameter for a tool."""

    name: str
    type: str  # "string", "integer", "number", "boolean", "array", "object"
    description: str
    required: bool = True
    enum: tuple[str, ...] | None = None
    items: dict[str, Any] | None = None  # For array types: JSON Schema for items
    constraints: dict[str, Any] = field(default_factory=dict)  # minLength, minItems, ...

    def to_schema(self) -> dict[str, Any]:
        prop: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            prop["enum"] = list(self.enum)
        if self.items is not None:
            prop["items"] = self.items
        prop.update(self.constraints)
        return prop


@dataclass(slots=True)
class ToolResult:
    """Result returned by a tool handler."""

    content: str
    is_error: bool = False

    @classmethod
    def json(cls, payload: dict[str, Any], *, is_error: bool = False) -> ToolResult:
        return cls(content=json.dumps(payload), is_error=is_error)

    def to_mcp(self) -> dict[str, Any]:
        """Render in the MCP tool-result shape used by the agent SDK."""
        return {
            "content": [{"type": "text", "text": self.content}],
            "is_error": self.is_error,
        }


ToolHandler = Callable[[dict[str, Any]], Awaitable[ToolResult]]


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A tool exposed to an agent session."""

    name: str
    description: str
    parameters: tuple[ToolParam, ...]
    handler: ToolHandler

    def input_schema(self) -> dict[str, Any]:
        """JSON Schema for the tool's arguments."""
        return {
            "type": "object",
            "properties": {p.name: p.to_schema() for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }

    async def invoke(self, args: dict[str, Any]) -> ToolResult:
        """Run the handler, converting raised exceptions into error results."""
        try:
            return await self.handler(args)
        except Exception as exc:
            return ToolResult(content=str(exc), is_error=True)


def define_tool(
    name: str,
    description: str,
    parameters: tuple[ToolParam, ...] | list[ToolParam],
    handler: ToolHandler,
) -> ToolDefinition:
    """Create a tool definition (pure data constructor)."""
    return ToolDefinition(
        name=name,
        description=description,
        parameters=tuple(parameters),
        handler=handler,
    )
