"""Event types emitted by every harness session."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True, slots=True)
class Usage:
    """Token counts reported for a turn."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True, slots=True)
class TextEvent:
    """A complete block of assistant text."""

    type: ClassVar[str] = "text"

    text: str


@dataclass(frozen=True, slots=True)
class ToolUseEvent:
    """The agent invoked a tool."""

    type: ClassVar[str] = "tool_use"

    name: str
    id: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResultEvent:
    """Output of a tool invocation."""

    type: ClassVar[str] = "tool_result"

    tool_use_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """A non-terminal error reported by the backend."""

    type: ClassVar[str] = "error"

    message: str
    retryable: bool = False


@dataclass(frozen=True, slots=True)
class ResultEvent:
    """Terminal event of a turn. Exactly one is produced per turn."""

    type: ClassVar[str] = "result"

    success: bool
    text: str | None = None
    usage: Usage | None = None
    cost_usd: float | None = None
    duration_ms: int | None = None
    duration_api_ms: int | None = None
    num_turns: int | None = None
    session_id: str | None = None


AgentEvent = TextEvent | ToolUseEvent | ToolResultEvent | ErrorEvent | ResultEvent
