"""Session contract shared by all harness adapters, plus stream helpers."""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from autonav.types.config import AgentConfig
from autonav.types.events import (
    AgentEvent,
    ErrorEvent,
    ResultEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
    Usage,
)
from autonav.types.tools import ToolDefinition


class HarnessError(Exception):
    """The backend could not be started or spoke an unexpected protocol."""


class SessionClosedError(HarnessError):
    """A follow-up was requested on a session that was already closed."""

    def __init__(self) -> None:
        super().__init__("Session is closed")


@dataclass(frozen=True, slots=True)
class ToolServer:
    """A named group of tools attached to a session via ``mcp_servers``.

    ``native`` holds the backend's own server object when the backend hosts
    tools itself (the in-process SDK). Backends that cannot host Python
    handlers leave it unset and intercept calls to ``tools`` instead.
    """

    name: str
    tools: tuple[ToolDefinition, ...] = ()
    native: Any = field(default=None, compare=False)


def registered_tools(config: AgentConfig) -> dict[str, ToolDefinition]:
    """Collect tool definitions from every :class:`ToolServer` in *config*."""
    tools: dict[str, ToolDefinition] = {}
    for server in config.mcp_servers.values():
        if isinstance(server, ToolServer):
            for td in server.tools:
                tools[td.name] = td
    return tools


@runtime_checkable
class HarnessSession(Protocol):
    """A streaming, stateful conversation with one backend.

    Iterating the session yields the events of the current turn. ``send``
    starts a follow-up turn. ``close`` releases every OS resource the session
    owns and may be called any number of times.
    """

    def __aiter__(self) -> AsyncIterator[AgentEvent]: ...

    def send(self, prompt: str) -> AsyncIterator[AgentEvent]: ...

    def update_config(self, **changes: Any) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class Harness(Protocol):
    """Factory for sessions against one kind of backend."""

    @property
    def display_name(self) -> str: ...

    def run(self, config: AgentConfig, prompt: str) -> HarnessSession:
        """Create a session. Must not perform backend I/O."""
        ...

    def create_tool_server(self, name: str, tools: list[ToolDefinition]) -> ToolServer: ...

    async def close(self) -> None: ...


class ClosingSession:
    """Mixin making a session usable as ``async with harness.run(...) as s``.

    The concrete session provides ``close()``.
    """

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


# ---------------------------------------------------------------------------
# Stream helpers
# ---------------------------------------------------------------------------


async def collect_text(events: AsyncIterable[AgentEvent]) -> str:
    """Return the final answer text of a turn.

    Each text event is a complete block, so the last one wins. The result
    text is used only when no text event was seen.
    """
    text = ""
    async for event in events:
        if isinstance(event, TextEvent):
            text = event.text
        elif isinstance(event, ResultEvent) and event.text and not text:
            text = event.text
    return text


@dataclass(slots=True)
class CollectedResult:
    """Everything observed while consuming one turn."""

    success: bool = False
    text: str = ""
    usage: Usage | None = None
    cost_usd: float | None = None
    duration_ms: int | None = None
    session_id: str | None = None
    text_events: list[str] = field(default_factory=list)
    tool_uses: list[ToolUseEvent] = field(default_factory=list)
    tool_results: list[ToolResultEvent] = field(default_factory=list)
    errors: list[ErrorEvent] = field(default_factory=list)


async def collect_result(events: AsyncIterable[AgentEvent]) -> CollectedResult:
    """Accumulate a whole turn into a :class:`CollectedResult`."""
    result = CollectedResult()
    async for event in events:
        match event:
            case TextEvent(text=text):
                result.text_events.append(text)
                result.text = text
            case ToolUseEvent():
                result.tool_uses.append(event)
            case ToolResultEvent():
                result.tool_results.append(event)
            case ErrorEvent():
                result.errors.append(event)
            case ResultEvent():
                result.success = event.success
                if event.text and not result.text:
                    result.text = event.text
                result.usage = event.usage
                result.cost_usd = event.cost_usd
                result.duration_ms = event.duration_ms
                result.session_id = event.session_id
    return result
