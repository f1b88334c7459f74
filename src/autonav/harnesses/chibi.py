"""Subprocess harness speaking JSONL with ``chibi-json``.

Each turn spawns a fresh ``chibi-json`` process. Conversation state lives in
a chibi context on disk, named uniquely per session, so history survives
the process restarts. Commands go to stdin and transcript entries come back
on stdout, one JSON object per line.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from autonav.core.config import toml_value
from autonav.harnesses.base import (
    ClosingSession,
    HarnessError,
    SessionClosedError,
    ToolServer,
    registered_tools,
)
from autonav.sandbox.home import EphemeralHome
from autonav.sandbox.nono import NonoSandbox
from autonav.types.config import AgentConfig
from autonav.types.events import (
    AgentEvent,
    ResultEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
    Usage,
)
from autonav.types.tools import ToolDefinition

logger = logging.getLogger(__name__)

DEFAULT_EXECUTABLE = "chibi-json"
DESTROY_AFTER_SECONDS_INACTIVE = 12 * 60 * 60
TERMINATE_TIMEOUT = 5.0
_LINE_LIMIT = 16 * 1024 * 1024


def normalize_model_name(model: str) -> str:
    """Chibi expects provider-qualified names for Anthropic models."""
    if model.startswith("claude-"):
        return f"anthropic/{model}"
    return model


def render_local_toml(config: AgentConfig) -> str:
    lines: list[str] = []
    if config.model:
        lines.append(f"model = {toml_value(normalize_model_name(config.model))}")
    if config.max_turns is not None:
        lines.append(f"fuel = {config.max_turns}")
    if config.allowed_tools:
        lines += ["", "[tools]", f"include = {toml_value(config.allowed_tools)}"]
    elif config.disallowed_tools:
        lines += ["", "[tools]", f"exclude = {toml_value(config.disallowed_tools)}"]
    return "\n".join(lines) + "\n"


def parse_line(line: str) -> list[AgentEvent]:
    """Translate one stdout line into events. Non-JSON lines yield nothing."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, dict):
        return []

    events: list[AgentEvent] = []
    entry_type = data.get("entry_type")

    if entry_type == "message" and data.get("content"):
        events.append(TextEvent(text=str(data["content"])))
    elif entry_type == "tool_call":
        events.append(ToolUseEvent(
            name=data.get("tool_name") or data.get("name") or "unknown",
            id=data.get("id") or "",
            input=data.get("input") or data.get("arguments") or {},
        ))
    elif entry_type == "tool_result":
        content = data.get("content")
        events.append(ToolResultEvent(
            tool_use_id=data.get("tool_call_id") or data.get("id") or "",
            content=content if isinstance(content, str) else json.dumps(content or ""),
            is_error=data.get("is_error") is True,
        ))

    if data.get("type") == "result":
        usage = data.get("usage")
        events.append(ResultEvent(
            success=data.get("success") is not False,
            text=data.get("text") or data.get("content") or "",
            usage=Usage(
                input_tokens=usage.get("input_tokens") or 0,
                output_tokens=usage.get("output_tokens") or 0,
            ) if isinstance(usage, dict) else None,
            cost_usd=data.get("cost_usd"),
        ))

    if data.get("type") == "text" and data.get("text"):
        events.append(TextEvent(text=data["text"]))

    content = data.get("content")
    if data.get("role") == "assistant" and content:
        if isinstance(content, str):
            events.append(TextEvent(text=content))
        elif isinstance(content, list):
            for block in content:
                if not isinstance(block, dict):
                    continue
                if block.get("type") == "text":
                    events.append(TextEvent(text=block.get("text", "")))
                elif block.get("type") == "tool_use":
                    events.append(ToolUseEvent(
                        name=block.get("name") or "unknown",
                        id=block.get("id") or "",
                        input=block.get("input") or {},
                    ))

    return events


class ChibiSession(ClosingSession):
    """One chibi conversation, one child process per turn."""

    def __init__(
        self,
        config: AgentConfig,
        prompt: str,
        *,
        executable: str,
        sandbox: NonoSandbox,
    ) -> None:
        self._config = config.copy()
        self._executable = executable
        self._sandbox = sandbox
        self._tools = registered_tools(self._config)
        self.context_name = f"autonav-{uuid.uuid4().hex}"
        self._home: EphemeralHome | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._started = False
        self._closed = False
        self._turn = self._stream(prompt)

    @property
    def context_dir(self) -> Path | None:
        return self._home.path if self._home else None

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self._turn

    def send(self, prompt: str) -> AsyncIterator[AgentEvent]:
        if self._closed:
            raise SessionClosedError()
        self._turn = self._stream(prompt)
        return self._turn

    def update_config(self, **changes: Any) -> None:
        self._config.update(**changes)
        self._tools = registered_tools(self._config)
        if self._home is not None:
            self._write_local_toml(self._home.path)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._turn.aclose()
        except RuntimeError:
            logger.debug("chibi turn busy during close")
        await self._terminate()
        if self._home is not None:
            self._home.cleanup()

    # ------------------------------------------------------------------
    # Process management
    # ------------------------------------------------------------------

    def _write_local_toml(self, path: Path) -> None:
        (path / "local.toml").write_text(render_local_toml(self._config))

    def _command(self, kind: str, content: str, **extra: Any) -> bytes:
        payload = {"type": kind, "context": self.context_name, "content": content, **extra}
        return (json.dumps(payload) + "\n").encode()

    async def _spawn(self, prompt: str) -> asyncio.subprocess.Process:
        if self._home is None:
            self._home = EphemeralHome("chibi", setup=self._write_local_toml)

        args: list[str] = []
        if self._config.cwd:
            args += ["--project-root", self._config.cwd]
        args += ["--context-dir", str(self._home.path)]
        if self._config.sandbox is not None:
            await self._sandbox.check()
        command, args = self._sandbox.wrap_command(self._executable, args, self._config.sandbox)

        logger.debug("Spawning %s %s", command, " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_LINE_LIMIT,
            )
        except OSError as exc:
            raise HarnessError(f"Failed to start {command}: {exc}") from exc

        assert proc.stdin is not None
        try:
            if not self._started and self._config.system_prompt:
                proc.stdin.write(self._command(
                    "set_system_prompt",
                    self._config.system_prompt,
                    flags={"destroy_after_seconds_inactive": DESTROY_AFTER_SECONDS_INACTIVE},
                ))
            proc.stdin.write(self._command("send_prompt", prompt))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
            code = await proc.wait()
            raise HarnessError(f"{command} exited before accepting the prompt (code {code}): {exc}") from exc
        self._started = True
        self._stderr_task = asyncio.create_task(self._pump_stderr(proc))
        return proc

    async def _pump_stderr(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        async for raw in proc.stderr:
            text = raw.decode(errors="replace")
            if self._config.stderr is not None:
                self._config.stderr(text)
            else:
                logger.debug("chibi stderr: %s", text.rstrip())

    async def _terminate(self) -> None:
        proc, self._proc = self._proc, None
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
                try:
                    await asyncio.wait_for(proc.wait(), timeout=TERMINATE_TIMEOUT)
                except TimeoutError:
                    proc.kill()
                    await proc.wait()
            except ProcessLookupError:
                pass
        if self._stderr_task is not None:
            self._stderr_task.cancel()
            self._stderr_task = None

    async def _reply(self, proc: asyncio.subprocess.Process, tool: ToolDefinition, event: ToolUseEvent) -> None:
        result = await tool.invoke(event.input)
        payload = {
            "type": "tool_result",
            "tool_call_id": event.id,
            "content": result.content,
            "is_error": result.is_error,
        }
        assert proc.stdin is not None
        try:
            proc.stdin.write((json.dumps(payload) + "\n").encode())
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning("chibi exited before tool result for %s: %s", event.name, exc)

    async def _stream(self, prompt: str) -> AsyncIterator[AgentEvent]:
        await self._terminate()
        proc = self._proc = await self._spawn(prompt)
        saw_result = False
        try:
            assert proc.stdout is not None
            async for raw in proc.stdout:
                line = raw.decode(errors="replace").strip()
                if not line:
                    continue
                for event in parse_line(line):
                    if isinstance(event, ResultEvent):
                        saw_result = True
                    elif isinstance(event, ToolUseEvent) and event.name in self._tools:
                        await self._reply(proc, self._tools[event.name], event)
                    yield event

            if proc.stdin is not None:
                proc.stdin.close()
            code = await proc.wait()
            if self._stderr_task is not None:
                await self._stderr_task
                self._stderr_task = None
            if not saw_result:
                yield ResultEvent(
                    success=code == 0,
                    text="Completed" if code == 0 else f"Process exited with code {code}",
                )
        finally:
            if proc.returncode is None:
                await self._terminate()


class ChibiHarness:
    """Harness driving the ``chibi-json`` executable."""

    display_name = "chibi"

    def __init__(
        self,
        executable: str = DEFAULT_EXECUTABLE,
        *,
        sandbox: NonoSandbox | None = None,
    ) -> None:
        self._executable = executable
        self._sandbox = sandbox or NonoSandbox()

    def run(self, config: AgentConfig, prompt: str) -> ChibiSession:
        return ChibiSession(config, prompt, executable=self._executable, sandbox=self._sandbox)

    def create_tool_server(self, name: str, tools: list[ToolDefinition]) -> ToolServer:
        return ToolServer(name=name, tools=tuple(tools))

    async def close(self) -> None:
        pass
