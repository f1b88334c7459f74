"""In-process harness backed by the Claude Agent SDK.

AgentConfig maps almost directly onto ``ClaudeAgentOptions``; the main job
here is flattening the SDK's nested messages into :data:`AgentEvent`.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import Any

import claude_agent_sdk

from autonav.harnesses.base import ClosingSession, SessionClosedError, ToolServer
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

logger = logging.getLogger(__name__)

_ERROR_PREFIX = re.compile(r"^(Error:|error:)")

QueryFn = Callable[..., AsyncIterator[Any]]


def _usage(raw: Any) -> Usage | None:
    if not raw:
        return None
    if isinstance(raw, dict):
        return Usage(
            input_tokens=int(raw.get("input_tokens") or 0),
            output_tokens=int(raw.get("output_tokens") or 0),
        )
    return Usage(
        input_tokens=int(getattr(raw, "input_tokens", 0) or 0),
        output_tokens=int(getattr(raw, "output_tokens", 0) or 0),
    )


def _block_content(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [c.get("text", "") for c in content if isinstance(c, dict) and c.get("type") == "text"]
        if texts:
            return "\n".join(texts)
    return json.dumps(content)


def flatten_message(message: Any) -> list[AgentEvent]:
    """Translate one SDK message into zero or more events.

    Messages are recognised by shape so the function also accepts
    lightweight stand-ins: result messages carry ``subtype`` and
    ``num_turns``, assistant messages carry ``model`` and a block list, user
    messages carry only ``content``.
    """
    events: list[AgentEvent] = []

    if hasattr(message, "subtype") and hasattr(message, "num_turns"):
        success = message.subtype == "success"
        if success:
            text = getattr(message, "result", None)
        else:
            errors = getattr(message, "errors", None) or []
            text = "; ".join(str(e) for e in errors) or getattr(message, "result", None) or message.subtype
        events.append(ResultEvent(
            success=success,
            text=text,
            usage=_usage(getattr(message, "usage", None)),
            cost_usd=getattr(message, "total_cost_usd", None),
            duration_ms=getattr(message, "duration_ms", None),
            duration_api_ms=getattr(message, "duration_api_ms", None),
            num_turns=message.num_turns,
            session_id=getattr(message, "session_id", None),
        ))
        return events

    content = getattr(message, "content", None)

    if hasattr(message, "model") and isinstance(content, list):
        if getattr(message, "error", None) == "rate_limit":
            events.append(ErrorEvent(message="Rate limit reached", retryable=True))
        for block in content:
            if hasattr(block, "text"):
                events.append(TextEvent(text=block.text))
            elif hasattr(block, "name") and hasattr(block, "input"):
                events.append(ToolUseEvent(name=block.name, id=block.id, input=dict(block.input or {})))
        return events

    if isinstance(content, list):
        for block in content:
            if hasattr(block, "tool_use_id"):
                body = _block_content(getattr(block, "content", None))
                is_error = bool(getattr(block, "is_error", False)) or bool(_ERROR_PREFIX.match(body))
                events.append(ToolResultEvent(tool_use_id=block.tool_use_id, content=body, is_error=is_error))
    return events


def build_options(config: AgentConfig, **extra: Any) -> claude_agent_sdk.ClaudeAgentOptions:
    """Map an AgentConfig onto SDK options, passing only the fields that are set."""
    kwargs: dict[str, Any] = {}
    if config.model:
        kwargs["model"] = config.model
    if config.system_prompt:
        kwargs["system_prompt"] = config.system_prompt
    if config.cwd:
        kwargs["cwd"] = config.cwd
    if config.additional_directories:
        kwargs["add_dirs"] = list(config.additional_directories)
    if config.max_turns is not None:
        kwargs["max_turns"] = config.max_turns
    if config.max_budget_usd is not None:
        kwargs["max_budget_usd"] = config.max_budget_usd
    if config.allowed_tools:
        kwargs["allowed_tools"] = list(config.allowed_tools)
    if config.disallowed_tools:
        kwargs["disallowed_tools"] = list(config.disallowed_tools)
    if config.mcp_servers:
        kwargs["mcp_servers"] = {
            name: server.native if isinstance(server, ToolServer) else server
            for name, server in config.mcp_servers.items()
        }
    if config.permission_mode is not None:
        kwargs["permission_mode"] = config.permission_mode.value
    if config.stderr is not None:
        kwargs["stderr"] = config.stderr
    # Sandboxing is the SDK's own concern; config.sandbox is not forwarded.
    kwargs.update(extra)
    return claude_agent_sdk.ClaudeAgentOptions(**kwargs)


class ClaudeCodeSession(ClosingSession):
    """A conversation driven through ``claude_agent_sdk.query``.

    No SDK call happens until the first event is requested. Follow-up turns
    resume the SDK session when its id is known, and otherwise replay the
    transcript as a fresh query.
    """

    def __init__(self, query_fn: QueryFn, config: AgentConfig, prompt: str) -> None:
        self._query_fn = query_fn
        self._config = config.copy()
        self._history: list[str] = []
        self._sdk_session_id: str | None = None
        self._closed = False
        self._turn = self._stream(prompt)

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self._turn

    def send(self, prompt: str) -> AsyncIterator[AgentEvent]:
        if self._closed:
            raise SessionClosedError()
        self._turn = self._stream(prompt)
        return self._turn

    def update_config(self, **changes: Any) -> None:
        self._config.update(**changes)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._turn.aclose()
        except RuntimeError:
            # Still being iterated by another task; it stops at its next event.
            logger.debug("SDK turn busy during close")

    async def _stream(self, prompt: str) -> AsyncIterator[AgentEvent]:
        extra: dict[str, Any] = {}
        if self._sdk_session_id:
            extra["resume"] = self._sdk_session_id
            query_prompt = prompt
        else:
            query_prompt = "\n\n".join([*self._history, f"User: {prompt}"]) if self._history else prompt
        self._history.append(f"User: {prompt}")

        options = build_options(self._config, **extra)
        logger.debug("SDK query (model=%s, resume=%s)", self._config.model, self._sdk_session_id)

        last_text = ""
        saw_result = False
        async with aclosing(self._query_fn(prompt=query_prompt, options=options)) as messages:
            async for message in messages:
                if self._closed:
                    break
                for event in flatten_message(message):
                    if isinstance(event, TextEvent):
                        last_text = event.text
                    elif isinstance(event, ResultEvent):
                        saw_result = True
                        if event.session_id:
                            self._sdk_session_id = event.session_id
                    yield event

        if last_text:
            self._history.append(f"Assistant: {last_text}")
        if not saw_result:
            yield ResultEvent(success=False, text="No result message received")


class ClaudeCodeHarness:
    """Harness running the Claude Agent SDK in this process."""

    display_name = "Claude"

    def __init__(self, query_fn: QueryFn | None = None) -> None:
        self._query_fn = query_fn or claude_agent_sdk.query

    def run(self, config: AgentConfig, prompt: str) -> ClaudeCodeSession:
        return ClaudeCodeSession(self._query_fn, config, prompt)

    def create_tool_server(self, name: str, tools: list[ToolDefinition]) -> ToolServer:
        sdk_tools = [_to_sdk_tool(td) for td in tools]
        native = claude_agent_sdk.create_sdk_mcp_server(name=name, version="1.0.0", tools=sdk_tools)
        return ToolServer(name=name, tools=tuple(tools), native=native)

    async def close(self) -> None:
        pass


def _to_sdk_tool(td: ToolDefinition) -> Any:
    async def handler(args: dict[str, Any]) -> dict[str, Any]:
        result = await td.invoke(args)
        return result.to_mcp()

    return claude_agent_sdk.tool(td.name, td.description, td.input_schema())(handler)
