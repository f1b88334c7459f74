"""Tests for the chibi JSONL subprocess harness, using a fake chibi-json script."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from autonav.harnesses.base import HarnessError, SessionClosedError, ToolServer, collect_result
from autonav.harnesses.chibi import ChibiHarness, normalize_model_name, parse_line, render_local_toml
from autonav.sandbox import NonoSandbox, NoSandbox
from autonav.types.config import AgentConfig, SandboxConfig
from autonav.types.events import ResultEvent, TextEvent, ToolResultEvent, ToolUseEvent
from autonav.types.tools import ToolResult, define_tool
from tests.conftest import write_script

# Reads commands until send_prompt, echoes the prompt, and reports a result.
ECHO_CHIBI = """
import json, sys
log = open(sys.argv[0] + ".log", "a")
log.write(json.dumps(sys.argv[1:]) + "\\n")
while True:
    line = sys.stdin.readline()
    if not line:
        break
    log.write(line)
    log.flush()
    cmd = json.loads(line)
    if cmd["type"] == "send_prompt":
        print(json.dumps({"entry_type": "message", "content": "echo: " + cmd["content"]}), flush=True)
        print(json.dumps({"type": "result", "success": True, "text": "done",
                          "usage": {"input_tokens": 3, "output_tokens": 4}}), flush=True)
        break
"""

# Calls the "ping" tool, waits for the tool result, and reports it back.
TOOL_CHIBI = """
import json, sys
log = open(sys.argv[0] + ".log", "a")
while True:
    cmd = json.loads(sys.stdin.readline())
    log.write(json.dumps(cmd) + "\\n")
    if cmd["type"] == "send_prompt":
        break
print(json.dumps({"entry_type": "tool_call", "tool_name": "ping", "id": "c1", "input": {"host": "a"}}), flush=True)
reply = json.loads(sys.stdin.readline())
log.write(json.dumps(reply) + "\\n")
log.flush()
print(json.dumps({"entry_type": "tool_result", "tool_call_id": "c1", "content": reply["content"]}), flush=True)
print(json.dumps({"type": "result", "success": True, "text": "pinged"}), flush=True)
"""

FAILING_CHIBI = """
import json, sys
sys.stdin.readline()
print(json.dumps({"entry_type": "message", "content": "partial"}), flush=True)
sys.exit(3)
"""


def logged_commands(script: Path) -> list[dict]:
    lines = Path(str(script) + ".log").read_text().splitlines()
    return [json.loads(line) for line in lines]


@pytest.fixture(autouse=True)
def _chibi_home(monkeypatch, tmp_path):
    monkeypatch.setenv("AUTONAV_CHIBI_HOME", str(tmp_path / "chibi-home"))


class TestParseLine:
    def test_message_entry(self):
        assert parse_line('{"entry_type": "message", "content": "hi"}') == [TextEvent(text="hi")]

    def test_tool_call_entry_yields_single_event(self):
        events = parse_line('{"entry_type": "tool_call", "tool_name": "read_file", "id": "x", "arguments": {"p": 1}}')
        assert events == [ToolUseEvent(name="read_file", id="x", input={"p": 1})]

    def test_tool_result_entry(self):
        [event] = parse_line('{"entry_type": "tool_result", "tool_call_id": "x", "content": {"ok": true}, "is_error": true}')
        assert event == ToolResultEvent(tool_use_id="x", content='{"ok": true}', is_error=True)

    def test_result_line(self):
        [event] = parse_line('{"type": "result", "success": false, "text": "nope"}')
        assert isinstance(event, ResultEvent)
        assert event.success is False
        assert event.text == "nope"

    def test_assistant_content_blocks(self):
        line = json.dumps({
            "role": "assistant",
            "content": [{"type": "text", "text": "a"}, {"type": "tool_use", "name": "t", "id": "1", "input": {}}],
        })
        assert parse_line(line) == [TextEvent(text="a"), ToolUseEvent(name="t", id="1")]

    def test_non_json_ignored(self):
        assert parse_line("warming up...") == []
        assert parse_line("[1, 2]") == []


class TestLocalToml:
    def test_model_normalization(self):
        assert normalize_model_name("claude-haiku-4-5") == "anthropic/claude-haiku-4-5"
        assert normalize_model_name("openai/gpt-5") == "openai/gpt-5"

    def test_render(self):
        toml = render_local_toml(AgentConfig(model="claude-x", max_turns=5, disallowed_tools=["shell"]))
        assert 'model = "anthropic/claude-x"' in toml
        assert "fuel = 5" in toml
        assert '[tools]\nexclude = ["shell"]' in toml

    def test_allowed_tools_win(self):
        toml = render_local_toml(AgentConfig(allowed_tools=["read_file"], disallowed_tools=["shell"]))
        assert 'include = ["read_file"]' in toml
        assert "exclude" not in toml


class TestChibiSession:
    def test_run_spawns_nothing(self, tmp_path):
        script = write_script(tmp_path / "chibi", ECHO_CHIBI)
        session = ChibiHarness(str(script), sandbox=NoSandbox()).run(AgentConfig(), "hi")
        assert session.context_dir is None
        assert not Path(str(script) + ".log").exists()

    @pytest.mark.asyncio
    async def test_turn_and_system_prompt(self, tmp_path):
        script = write_script(tmp_path / "chibi", ECHO_CHIBI)
        harness = ChibiHarness(str(script), sandbox=NoSandbox())
        config = AgentConfig(system_prompt="You are a navigator", cwd=str(tmp_path), model="claude-x")
        async with harness.run(config, "hello") as session:
            result = await collect_result(session)
            assert result.success is True
            assert result.text == "echo: hello"
            assert result.usage.total == 7
            assert (session.context_dir / "local.toml").read_text().startswith('model = "anthropic/claude-x"')

            follow_up = await collect_result(session.send("again"))
            assert follow_up.text == "echo: again"

        log = logged_commands(script)
        argv = log[0]
        assert argv[:2] == ["--project-root", str(tmp_path)]
        assert argv[2] == "--context-dir"
        commands = [entry for entry in log if isinstance(entry, dict)]
        kinds = [c["type"] for c in commands]
        # The system prompt is only sent with the first turn.
        assert kinds == ["set_system_prompt", "send_prompt", "send_prompt"]
        assert commands[0]["flags"] == {"destroy_after_seconds_inactive": 43200}
        assert len({c["context"] for c in commands}) == 1
        assert commands[0]["context"] == session.context_name

    @pytest.mark.asyncio
    async def test_registered_tool_is_answered(self, tmp_path):
        script = write_script(tmp_path / "chibi", TOOL_CHIBI)
        calls = []

        async def ping(args):
            calls.append(args)
            return ToolResult(content="pong")

        server = ToolServer(name="net", tools=(define_tool("ping", "Ping a host", [], ping),))
        config = AgentConfig(mcp_servers={"net": server})
        session = ChibiHarness(str(script), sandbox=NoSandbox()).run(config, "ping it")
        events = [e async for e in session]
        await session.close()

        assert calls == [{"host": "a"}]
        uses = [e for e in events if isinstance(e, ToolUseEvent)]
        assert len(uses) == 1
        results = [e for e in events if isinstance(e, ToolResultEvent)]
        assert results[0].content == "pong"
        reply = logged_commands(script)[-1]
        assert reply == {"type": "tool_result", "tool_call_id": "c1", "content": "pong", "is_error": False}
        assert isinstance(events[-1], ResultEvent)

    @pytest.mark.asyncio
    async def test_exit_code_fallback(self, tmp_path):
        script = write_script(tmp_path / "chibi", FAILING_CHIBI)
        session = ChibiHarness(str(script), sandbox=NoSandbox()).run(AgentConfig(), "go")
        events = [e async for e in session]
        await session.close()
        assert events[0] == TextEvent(text="partial")
        assert events[-1] == ResultEvent(success=False, text="Process exited with code 3")

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path):
        session = ChibiHarness(str(tmp_path / "missing"), sandbox=NoSandbox()).run(AgentConfig(), "go")
        with pytest.raises(HarnessError):
            async for _ in session:
                pass
        await session.close()

    @pytest.mark.asyncio
    async def test_close_cleans_up_and_is_idempotent(self, tmp_path):
        script = write_script(tmp_path / "chibi", ECHO_CHIBI)
        session = ChibiHarness(str(script), sandbox=NoSandbox()).run(AgentConfig(), "hello")
        await collect_result(session)
        context_dir = session.context_dir
        assert context_dir.exists()

        await session.close()
        await session.close()
        assert not context_dir.exists()
        with pytest.raises(SessionClosedError):
            session.send("more")


class CheckFirstSandbox(NonoSandbox):
    """Records async checks and refuses the blocking one before them."""

    def __init__(self):
        super().__init__("nono-not-installed")
        self.checks = 0

    async def check(self):
        self.checks += 1
        return await super().check()

    def is_available(self):
        assert self._available is not None
        return super().is_available()


class BrokenPipeProcess:
    """A child that died before reading its prompt."""

    def __init__(self):
        self.returncode = None
        self.killed = False
        self.stdin = self

    def write(self, data):
        pass

    async def drain(self):
        raise BrokenPipeError(32, "Broken pipe")

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


class TestSpawn:
    @pytest.mark.asyncio
    async def test_sandbox_is_checked_without_blocking(self, tmp_path):
        script = write_script(tmp_path / "chibi", ECHO_CHIBI)
        sandbox = CheckFirstSandbox()
        config = AgentConfig(sandbox=SandboxConfig(read_paths=(str(tmp_path),)))
        async with ChibiHarness(str(script), sandbox=sandbox).run(config, "hello") as session:
            result = await collect_result(session)
        assert result.text == "echo: hello"
        assert sandbox.checks == 1

    @pytest.mark.asyncio
    async def test_child_exiting_before_prompt_is_reaped(self, tmp_path, monkeypatch):
        proc = BrokenPipeProcess()

        async def fake_exec(*args, **kwargs):
            return proc

        monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
        session = ChibiHarness("chibi-json", sandbox=NoSandbox()).run(AgentConfig(), "go")
        with pytest.raises(HarnessError, match="exited before accepting the prompt"):
            async for _ in session:
                pass
        assert proc.killed is True
        await session.close()
