"""HTTP/SSE harness backed by an ``opencode serve`` process.

One server is started lazily per harness instance and shared by its
sessions. Each session creates a server-side session resource, subscribes
to the event stream *before* posting its prompt, and translates the
session's events into :data:`AgentEvent`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import random
import re
import shutil
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio
import httpx

from autonav.harnesses.base import (
    ClosingSession,
    HarnessError,
    SessionClosedError,
    ToolServer,
    registered_tools,
)
from autonav.harnesses.tool_bridge import ToolBridge
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

DEFAULT_EXECUTABLE = "opencode"
STARTUP_TIMEOUT = 15.0
SESSION_TITLE = "autonav"
_READY_RE = re.compile(r"opencode server listening on\s+(https?://\S+)")


# ---------------------------------------------------------------------------
# Server process
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ServerHandle:
    """A running server and how to stop it."""

    url: str
    process: asyncio.subprocess.Process | None = None
    _drain: asyncio.Task[None] | None = field(default=None, repr=False)

    async def close(self) -> None:
        if self._drain is not None:
            self._drain.cancel()
        proc = self.process
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=5.0)
            except TimeoutError:
                proc.kill()
                await proc.wait()
        except ProcessLookupError:
            pass


ServerLauncher = Callable[[dict[str, Any]], Awaitable[ServerHandle]]


def server_config_for(config: AgentConfig) -> dict[str, Any]:
    """Server-wide config: model and a permission map.

    Edits and shell access are denied when the sandbox only lists read paths.
    """
    read_only = config.sandbox is not None and config.sandbox.is_read_only
    server_config: dict[str, Any] = {
        "permission": {
            "edit": "deny" if read_only else "allow",
            "bash": "deny" if read_only else "allow",
            "webfetch": "allow",
            "doom_loop": "allow",
            "external_directory": "allow",
        },
    }
    if config.model:
        server_config["model"] = config.model
    return server_config


async def launch_server(
    server_config: dict[str, Any],
    *,
    executable: str = DEFAULT_EXECUTABLE,
    hostname: str = "127.0.0.1",
    port: int | None = None,
    timeout: float = STARTUP_TIMEOUT,
) -> ServerHandle:
    """Start ``opencode serve`` and wait for its readiness line."""
    port = port or random.randint(10000, 59999)
    proc_env = {**os.environ, "OPENCODE_CONFIG_CONTENT": json.dumps(server_config)}
    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            "serve",
            f"--hostname={hostname}",
            f"--port={port}",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=proc_env,
        )
    except OSError as exc:
        raise HarnessError(f"Failed to start {executable}: {exc}") from exc

    assert proc.stdout is not None
    output: list[str] = []

    async def wait_ready() -> str:
        async for raw in proc.stdout:
            line = raw.decode(errors="replace")
            output.append(line)
            if match := _READY_RE.search(line):
                return match.group(1)
        raise HarnessError(
            f"Server exited with code {await proc.wait()} before becoming ready\n{''.join(output)}"
        )

    try:
        url = await asyncio.wait_for(wait_ready(), timeout=timeout)
    except BaseException:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    async def drain() -> None:
        async for raw in proc.stdout:
            logger.debug("opencode: %s", raw.decode(errors="replace").rstrip())

    logger.info("opencode server ready at %s", url)
    return ServerHandle(url=url, process=proc, _drain=asyncio.create_task(drain()))


# ---------------------------------------------------------------------------
# Wire helpers
# ---------------------------------------------------------------------------


def parse_model(model: str | None) -> dict[str, str] | None:
    """``"provider/model"`` → ``{"providerID", "modelID"}``; bare names → None."""
    if not model:
        return None
    provider, sep, model_id = model.partition("/")
    if not sep or not provider:
        return None
    return {"providerID": provider, "modelID": model_id}


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the ``data`` payload of each server-sent event."""
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if name == "data":
            data.append(value[1:] if value.startswith(" ") else value)
    if data:
        yield "\n".join(data)


_ZOD_TYPES = {
    "string": "tool.schema.string()",
    "integer": "tool.schema.number().int()",
    "number": "tool.schema.number()",
    "boolean": "tool.schema.boolean()",
    "array": "tool.schema.array(tool.schema.any())",
    "object": "tool.schema.record(tool.schema.string(), tool.schema.any())",
}


def render_tool_stub(tool: ToolDefinition, bridge_url: str) -> str:
    """Source of a ``.opencode/tools`` file declaring *tool*.

    The stub posts its arguments to the tool bridge at *bridge_url*, which
    runs the handler in this process. Error results are thrown so opencode
    marks the call as failed.
    """
    args = []
    for p in tool.parameters:
        expr = _ZOD_TYPES.get(p.type, "tool.schema.any()")
        if not p.required:
            expr += ".optional()"
        expr += f".describe({json.dumps(p.description)})"
        args.append(f"    {p.name}: {expr},")
    endpoint = json.dumps(f"{bridge_url}/tools/{tool.name}")
    return "\n".join([
        'import { tool } from "@opencode-ai/plugin"',
        "",
        "export default tool({",
        f"  description: {json.dumps(tool.description)},",
        "  args: {",
        *args,
        "  },",
        "  async execute(args, context) {",
        f"    const response = await fetch({endpoint}, {{",
        '      method: "POST",',
        '      headers: { "content-type": "application/json" },',
        "      body: JSON.stringify({ args, sessionID: context.sessionID, callID: context.callID }),",
        "    })",
        "    const result = await response.json()",
        "    if (result.is_error) throw new Error(result.content)",
        "    return result.content",
        "  },",
        "})",
        "",
    ])


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class OpenCodeSession(ClosingSession):
    """A conversation with one server-side session.

    Server start, file injection and session creation all happen on first
    consumption, so config updates made before then are simply applied to
    the pending config.
    """

    def __init__(self, harness: OpenCodeHarness, config: AgentConfig, prompt: str) -> None:
        self._harness = harness
        self._config = config.copy()
        self._directory = Path(self._config.cwd or os.getcwd())
        self._client: httpx.AsyncClient | None = None
        self.session_id: str | None = None
        self._injected: list[Path] = []
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

    @property
    def _params(self) -> dict[str, str]:
        return {"directory": str(self._directory)}

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._turn.aclose()
        except RuntimeError:
            logger.debug("opencode turn busy during close")

        client = self._client
        if self.session_id and client is not None and not client.is_closed:
            try:
                await client.post(f"/session/{self.session_id}/abort", params=self._params)
                await client.delete(f"/session/{self.session_id}", params=self._params)
            except httpx.HTTPError as exc:
                logger.warning("Failed to delete opencode session %s: %s", self.session_id, exc)
        if self.session_id:
            self._harness.bridge.unregister(self.session_id)
        self._cleanup_injected()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _inject_files(self, tools: dict[str, ToolDefinition], bridge_url: str | None) -> None:
        if tools and bridge_url:
            dot_dir = self._directory / ".opencode"
            tools_dir = dot_dir / "tools"
            existed = dot_dir.exists()
            tools_dir.mkdir(parents=True, exist_ok=True)
            if not existed:
                self._injected.append(dot_dir)
            for td in tools.values():
                stub = tools_dir / f"{td.name}.ts"
                if existed and not stub.exists():
                    self._injected.append(stub)
                stub.write_text(render_tool_stub(td, bridge_url))

        config_path = self._directory / "opencode.json"
        if not config_path.exists():
            project: dict[str, Any] = {"$schema": "https://opencode.ai/config.json"}
            if self._config.model:
                project["model"] = self._config.model
            config_path.write_text(json.dumps(project, indent=2))
            self._injected.append(config_path)

    def _cleanup_injected(self) -> None:
        injected, self._injected = self._injected, []
        for path in injected:
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to remove %s: %s", path, exc)

    async def _ensure_session(self) -> httpx.AsyncClient:
        if self._client is not None and self.session_id is not None:
            return self._client

        client = await self._harness.ensure_server(self._config)
        tools = registered_tools(self._config)
        bridge_url = await self._harness.ensure_bridge() if tools else None
        self._inject_files(tools, bridge_url)
        try:
            response = await client.post("/session", json={"title": SESSION_TITLE}, params=self._params)
            response.raise_for_status()
            session_id = response.json().get("id")
        except (httpx.HTTPError, ValueError) as exc:
            self._cleanup_injected()
            raise HarnessError(f"Failed to create OpenCode session: {exc}") from exc
        if not session_id:
            self._cleanup_injected()
            raise HarnessError("Failed to create OpenCode session: no session ID returned")

        self._client = client
        self.session_id = session_id
        if self._config.stderr is not None:
            self._config.stderr(f"[opencode] Session {session_id} created\n")
        return client

    def _prompt_body(self, prompt: str) -> dict[str, Any]:
        body: dict[str, Any] = {"parts": [{"type": "text", "text": prompt}]}
        if self._config.system_prompt:
            body["system"] = self._config.system_prompt
        if model := parse_model(self._config.model):
            body["model"] = model
        return body

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _approve(self, client: httpx.AsyncClient, permission_id: str) -> None:
        try:
            response = await client.post(
                f"/session/{self.session_id}/permissions/{permission_id}",
                json={"response": "always"},
                params=self._params,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.debug("Permission %s approval failed: %s", permission_id, exc)

    async def _stream(self, prompt: str) -> AsyncIterator[AgentEvent]:
        client = await self._ensure_session()
        tools = registered_tools(self._config)
        bridge = self._harness.bridge
        if tools:
            bridge.register(self.session_id, tools)
        input_tokens = output_tokens = 0
        cost = 0.0

        def result(success: bool) -> ResultEvent:
            return ResultEvent(
                success=success,
                usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
                cost_usd=cost or None,
                session_id=self.session_id,
            )

        async with client.stream("GET", "/event", params=self._params) as response:
            response.raise_for_status()
            posted = await client.post(
                f"/session/{self.session_id}/prompt_async",
                json=self._prompt_body(prompt),
                params=self._params,
            )
            posted.raise_for_status()

            try:
                async for payload in iter_sse_data(response.aiter_lines()):
                    if self._closed:
                        break
                    try:
                        event = json.loads(payload)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(event, dict):
                        continue
                    props = event.get("properties")
                    if not isinstance(props, dict):
                        continue

                    part = props.get("part") if isinstance(props.get("part"), dict) else {}
                    owner = props.get("sessionID") or part.get("sessionID")
                    if owner and owner != self.session_id:
                        continue

                    match event.get("type"):
                        case "message.part.updated":
                            kind = part.get("type")
                            if kind == "text":
                                time = part.get("time") or {}
                                if part.get("text") and time.get("end"):
                                    yield TextEvent(text=part["text"])
                            elif kind == "tool":
                                state = part.get("state") or {}
                                status = state.get("status")
                                if status not in ("completed", "error"):
                                    continue
                                use = ToolUseEvent(
                                    name=part.get("tool") or "unknown",
                                    id=part.get("callID") or "",
                                    input=state.get("input") or {},
                                )
                                handled = (
                                    bridge.pop_result(self.session_id, use.id, use.name)
                                    if use.name in tools
                                    else None
                                )
                                yield use
                                if handled is not None:
                                    yield ToolResultEvent(
                                        tool_use_id=use.id,
                                        content=handled.content,
                                        is_error=handled.is_error,
                                    )
                                elif status == "completed":
                                    if state.get("output") is not None:
                                        yield ToolResultEvent(tool_use_id=use.id, content=str(state["output"]))
                                else:
                                    yield ToolResultEvent(
                                        tool_use_id=use.id,
                                        content=state.get("error") or "Tool error",
                                        is_error=True,
                                    )
                            elif kind == "step-finish":
                                tokens = part.get("tokens") or {}
                                input_tokens += tokens.get("input") or 0
                                output_tokens += tokens.get("output") or 0
                                cost += part.get("cost") or 0
                        case "session.error":
                            error = props.get("error") or {}
                            data = error.get("data") or {}
                            yield ErrorEvent(
                                message=str(data.get("message") or error.get("name") or "Unknown OpenCode error"),
                                retryable=data.get("isRetryable") is True,
                            )
                        case "session.idle":
                            yield result(True)
                            return
                        case "session.status":
                            if (props.get("status") or {}).get("type") == "idle":
                                yield result(True)
                                return
                        case "permission.updated":
                            if props.get("id") and props.get("sessionID") == self.session_id:
                                await self._approve(client, props["id"])
            except httpx.HTTPError as exc:
                if not self._closed:
                    yield ErrorEvent(message=f"SSE stream error: {exc}")

        yield result(not self._closed)


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


class OpenCodeHarness:
    """Harness sharing one lazily started ``opencode serve`` process.

    Registered tools are served to the generated tool files by a
    :class:`ToolBridge`, started the first time a session carries tools.
    Closing the harness stops both; sessions must be closed first.
    """

    display_name = "opencode"

    def __init__(
        self,
        launcher: ServerLauncher | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        bridge: ToolBridge | None = None,
    ) -> None:
        self._launcher = launcher or launch_server
        self._transport = transport
        self.bridge = bridge or ToolBridge()
        self._server: ServerHandle | None = None
        self._client: httpx.AsyncClient | None = None
        self._lock = anyio.Lock()

    async def ensure_bridge(self) -> str:
        async with self._lock:
            return await self.bridge.start()

    async def ensure_server(self, config: AgentConfig) -> httpx.AsyncClient:
        """Start the shared server once, even under concurrent callers."""
        async with self._lock:
            if self._client is None:
                if config.stderr is not None:
                    config.stderr("[opencode] Starting server...\n")
                self._server = await self._launcher(server_config_for(config))
                self._client = httpx.AsyncClient(
                    base_url=self._server.url,
                    transport=self._transport,
                    timeout=httpx.Timeout(30.0, read=None),
                )
            return self._client

    def run(self, config: AgentConfig, prompt: str) -> OpenCodeSession:
        return OpenCodeSession(self, config, prompt)

    def create_tool_server(self, name: str, tools: list[ToolDefinition]) -> ToolServer:
        return ToolServer(name=name, tools=tuple(tools))

    async def close(self) -> None:
        client, self._client = self._client, None
        server, self._server = self._server, None
        if client is not None:
            await client.aclose()
        if server is not None:
            await server.close()
        await self.bridge.close()
