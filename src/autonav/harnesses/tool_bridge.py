"""Local HTTP endpoint that runs registered tools for generated tool files.

opencode loads custom tools from ``.opencode/tools/*.ts``. Those files
cannot call Python handlers, so each one forwards its arguments to this
bridge and hands the handler's result back to the agent. Results are also
kept per call so the event stream can report exactly what the agent saw.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from collections.abc import Iterator
from typing import Any

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from autonav.harnesses.base import HarnessError
from autonav.types.tools import ToolDefinition, ToolResult

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT = 5.0


class ToolCall(BaseModel):
    args: dict[str, Any] = Field(default_factory=dict)
    sessionID: str | None = None
    callID: str | None = None


class ToolReply(BaseModel):
    content: str
    is_error: bool = False


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the host process."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class ToolBridge:
    """Dispatches tool calls to the handlers of registered sessions."""

    def __init__(self, host: str = "127.0.0.1") -> None:
        self.host = host
        self.url: str | None = None
        self._sessions: dict[str, dict[str, ToolDefinition]] = {}
        self._results: dict[str, list[tuple[str | None, str, ToolResult]]] = {}
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task[None] | None = None
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        app = FastAPI(title="autonav tool bridge")

        @app.post("/tools/{name}")
        async def call_tool(name: str, call: ToolCall) -> ToolReply:
            result = await self.dispatch(name, call)
            return ToolReply(content=result.content, is_error=result.is_error)

        return app

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, session_id: str, tools: dict[str, ToolDefinition]) -> None:
        self._sessions[session_id] = dict(tools)
        self._results.setdefault(session_id, [])

    def unregister(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._results.pop(session_id, None)

    def _lookup(self, name: str, session_id: str | None) -> tuple[str | None, ToolDefinition | None]:
        if session_id in self._sessions:
            return session_id, self._sessions[session_id].get(name)
        # Calls without a known session go to the latest registration of the tool.
        for sid, tools in reversed(self._sessions.items()):
            if name in tools:
                return sid, tools[name]
        return None, None

    async def dispatch(self, name: str, call: ToolCall) -> ToolResult:
        session_id, tool = self._lookup(name, call.sessionID)
        if tool is None:
            logger.warning("Tool bridge received call to unknown tool %s", name)
            return ToolResult(content=f"Unknown tool: {name}", is_error=True)

        logger.debug("Tool bridge running %s for session %s", name, session_id)
        result = await tool.invoke(call.args)
        if session_id in self._results:
            self._results[session_id].append((call.callID, name, result))
        return result

    def pop_result(self, session_id: str, call_id: str, name: str) -> ToolResult | None:
        """Take the recorded result of a call, matching by call id, else by tool name."""
        recorded = self._results.get(session_id)
        if not recorded:
            return None
        for i, (cid, _, result) in enumerate(recorded):
            if cid and cid == call_id:
                del recorded[i]
                return result
        for i, (cid, tool_name, result) in enumerate(recorded):
            if not cid and tool_name == name:
                del recorded[i]
                return result
        return None

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> str:
        """Serve the bridge on an ephemeral local port; returns its URL."""
        if self.url is not None:
            return self.url

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind((self.host, 0))
        port = sock.getsockname()[1]
        config = uvicorn.Config(self.app, log_level="warning", lifespan="off", access_log=False)
        server = _EmbeddedServer(config)
        task = asyncio.create_task(server.serve(sockets=[sock]))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + STARTUP_TIMEOUT
        while not server.started:
            if task.done():
                sock.close()
                exc = task.exception()
                raise HarnessError(f"Tool bridge failed to start: {exc}")
            if loop.time() > deadline:
                server.should_exit = True
                await task
                sock.close()
                raise HarnessError("Tool bridge did not start in time")
            await asyncio.sleep(0.01)

        self._server, self._task = server, task
        self.url = f"http://{self.host}:{port}"
        logger.debug("Tool bridge listening on %s", self.url)
        return self.url

    async def close(self) -> None:
        server, self._server = self._server, None
        task, self._task = self._task, None
        self.url = None
        if server is not None and task is not None:
            server.should_exit = True
            await task
