"""Tests for the in-process SDK harness, driven by a fake query function."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from autonav.harnesses.base import SessionClosedError, ToolServer, collect_result
from autonav.harnesses.claude_code import ClaudeCodeHarness, build_options, flatten_message
from autonav.types.config import AgentConfig, PermissionMode
from autonav.types.events import ErrorEvent, ResultEvent, TextEvent, ToolResultEvent, ToolUseEvent
from autonav.types.tools import ToolResult, define_tool


def assistant(*blocks, error=None):
    return SimpleNamespace(model="claude-haiku-4-5", content=list(blocks), error=error)


def text_block(text):
    return SimpleNamespace(type="text", text=text)


def tool_block(name, id, input):
    return SimpleNamespace(type="tool_use", name=name, id=id, input=input)


def user_tool_result(tool_use_id, content, is_error=None):
    return SimpleNamespace(content=[SimpleNamespace(tool_use_id=tool_use_id, content=content, is_error=is_error)])


def result_message(subtype="success", result="done", session_id="sdk-session", errors=None):
    return SimpleNamespace(
        subtype=subtype,
        num_turns=2,
        result=result,
        errors=errors,
        usage={"input_tokens": 100, "output_tokens": 20},
        total_cost_usd=0.02,
        duration_ms=1500,
        duration_api_ms=1200,
        session_id=session_id,
    )


class FakeQuery:
    """Records calls and replays a scripted list of messages per call."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.calls = []

    def __call__(self, *, prompt, options):
        self.calls.append((prompt, options))
        messages = self.scripts.pop(0) if self.scripts else []

        async def gen():
            for message in messages:
                yield message

        return gen()


class TestFlattenMessage:
    def test_assistant_blocks(self):
        events = flatten_message(assistant(
            text_block("Reading the file"),
            tool_block("Read", "t1", {"file_path": "a.py"}),
        ))
        assert events == [
            TextEvent(text="Reading the file"),
            ToolUseEvent(name="Read", id="t1", input={"file_path": "a.py"}),
        ]

    def test_rate_limited_assistant(self):
        events = flatten_message(assistant(error="rate_limit"))
        assert events == [ErrorEvent(message="Rate limit reached", retryable=True)]

    def test_tool_result_blocks(self):
        events = flatten_message(user_tool_result("t1", "file body"))
        assert events == [ToolResultEvent(tool_use_id="t1", content="file body", is_error=False)]

    def test_tool_result_error_prefix(self):
        [event] = flatten_message(user_tool_result("t1", "Error: file not found"))
        assert event.is_error is True

    def test_tool_result_structured_content(self):
        [event] = flatten_message(user_tool_result("t1", [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]))
        assert event.content == "a\nb"

    def test_success_result(self):
        [event] = flatten_message(result_message())
        assert event.success is True
        assert event.text == "done"
        assert event.usage.total == 120
        assert event.cost_usd == 0.02
        assert event.num_turns == 2
        assert event.session_id == "sdk-session"

    def test_error_result_joins_errors(self):
        [event] = flatten_message(result_message(subtype="error_during_execution", errors=["one", "two"]))
        assert event.success is False
        assert event.text == "one; two"

    def test_prompt_echo_ignored(self):
        assert flatten_message(SimpleNamespace(content="the prompt")) == []


class TestBuildOptions:
    def test_maps_fields(self):
        native = {"type": "sdk", "name": "tools"}
        config = AgentConfig(
            model="claude-opus-4-5",
            system_prompt="be nice",
            cwd="/tmp/nav",
            additional_directories=["/tmp/code"],
            max_turns=5,
            disallowed_tools=["Bash"],
            mcp_servers={"tools": ToolServer(name="tools", native=native)},
            permission_mode=PermissionMode.BYPASS,
        )
        options = build_options(config)
        assert options.model == "claude-opus-4-5"
        assert options.system_prompt == "be nice"
        assert str(options.cwd) == "/tmp/nav"
        assert [str(d) for d in options.add_dirs] == ["/tmp/code"]
        assert options.max_turns == 5
        assert options.disallowed_tools == ["Bash"]
        assert options.mcp_servers == {"tools": native}
        assert options.permission_mode == "bypassPermissions"

    def test_extra_options(self):
        options = build_options(AgentConfig(), resume="abc")
        assert options.resume == "abc"


class TestClaudeCodeSession:
    @pytest.mark.asyncio
    async def test_run_is_lazy(self):
        fake = FakeQuery([result_message()])
        session = ClaudeCodeHarness(query_fn=fake).run(AgentConfig(), "hello")
        assert fake.calls == []
        await collect_result(session)
        assert len(fake.calls) == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_full_turn(self):
        fake = FakeQuery([
            assistant(text_block("Let me look"), tool_block("Read", "t1", {"file_path": "x"})),
            user_tool_result("t1", "contents"),
            assistant(text_block("All good")),
            result_message(),
        ])
        session = ClaudeCodeHarness(query_fn=fake).run(AgentConfig(model="m"), "check x")
        result = await collect_result(session)
        assert result.success is True
        assert result.text == "All good"
        assert [t.name for t in result.tool_uses] == ["Read"]
        assert fake.calls[0][0] == "check x"

    @pytest.mark.asyncio
    async def test_missing_result_is_synthesized(self):
        fake = FakeQuery([assistant(text_block("partial"))])
        session = ClaudeCodeHarness(query_fn=fake).run(AgentConfig(), "hi")
        events = [e async for e in session]
        results = [e for e in events if isinstance(e, ResultEvent)]
        assert len(results) == 1
        assert results[0].success is False
        assert results[0].text == "No result message received"

    @pytest.mark.asyncio
    async def test_follow_up_resumes_sdk_session(self):
        fake = FakeQuery(
            [assistant(text_block("first")), result_message(session_id="sdk-1")],
            [assistant(text_block("second")), result_message(session_id="sdk-1")],
        )
        session = ClaudeCodeHarness(query_fn=fake).run(AgentConfig(), "one")
        await collect_result(session)
        result = await collect_result(session.send("two"))
        assert result.text == "second"
        prompt, options = fake.calls[1]
        assert prompt == "two"
        assert options.resume == "sdk-1"

    @pytest.mark.asyncio
    async def test_follow_up_without_session_id_replays_transcript(self):
        fake = FakeQuery(
            [assistant(text_block("first answer")), result_message(session_id=None)],
            [result_message(session_id=None)],
        )
        session = ClaudeCodeHarness(query_fn=fake).run(AgentConfig(), "one")
        await collect_result(session)
        await collect_result(session.send("two"))
        prompt, _ = fake.calls[1]
        assert prompt == "User: one\n\nAssistant: first answer\n\nUser: two"

    @pytest.mark.asyncio
    async def test_update_config_applies_to_next_turn(self):
        fake = FakeQuery([result_message()], [result_message()])
        session = ClaudeCodeHarness(query_fn=fake).run(AgentConfig(model="a"), "one")
        await collect_result(session)
        session.update_config(model="b")
        await collect_result(session.send("two"))
        assert fake.calls[1][1].model == "b"

    @pytest.mark.asyncio
    async def test_close_twice_and_send_after_close(self):
        session = ClaudeCodeHarness(query_fn=FakeQuery()).run(AgentConfig(), "hi")
        await session.close()
        await session.close()
        with pytest.raises(SessionClosedError):
            session.send("again")


class TestToolServer:
    def test_create_tool_server_wraps_sdk_server(self):
        async def handler(args):
            return ToolResult(content="pong")

        td = define_tool("ping", "Ping", [], handler)
        server = ClaudeCodeHarness(query_fn=FakeQuery()).create_tool_server("pinger", [td])
        assert server.name == "pinger"
        assert server.tools == (td,)
        assert server.native is not None
