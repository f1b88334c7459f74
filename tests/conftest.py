"""Test fixtures including MockHarness for deterministic testing."""

from __future__ import annotations

import subprocess
import sys
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from autonav.harnesses.base import ClosingSession, SessionClosedError, ToolServer, registered_tools
from autonav.types.config import AgentConfig
from autonav.types.events import AgentEvent, ResultEvent, TextEvent, ToolResultEvent, ToolUseEvent
from autonav.types.memento import DiffStats
from autonav.types.tools import ToolDefinition


@dataclass
class MockTurn:
    """A scripted turn for MockHarness.

    ``tool_calls`` are dispatched to the session's registered tools before
    ``events`` are yielded, the way a backend would call them mid-turn.
    """

    events: list[AgentEvent] = field(default_factory=lambda: [TextEvent(text="ok"), ResultEvent(success=True)])
    tool_calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    # Each tool call: ("submit_implementation_plan", {...args})


class MockSession(ClosingSession):
    def __init__(self, harness: MockHarness, config: AgentConfig, prompt: str) -> None:
        self.harness = harness
        self.config = config.copy()
        self.prompts = [prompt]
        self.closed = False
        self.close_calls = 0
        self._turn = self._stream(prompt)

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self._turn

    def send(self, prompt: str) -> AsyncIterator[AgentEvent]:
        if self.closed:
            raise SessionClosedError()
        self.prompts.append(prompt)
        self._turn = self._stream(prompt)
        return self._turn

    def update_config(self, **changes: Any) -> None:
        self.config.update(**changes)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    async def _stream(self, prompt: str) -> AsyncIterator[AgentEvent]:
        turn = self.harness.next_turn(self.config, prompt)
        tools = registered_tools(self.config)
        for i, (name, args) in enumerate(turn.tool_calls):
            call_id = f"call_{i}"
            yield ToolUseEvent(name=name, id=call_id, input=args)
            result = await tools[name].invoke(args)
            yield ToolResultEvent(tool_use_id=call_id, content=result.content, is_error=result.is_error)
        for event in turn.events:
            yield event


class MockHarness:
    """A deterministic harness for testing.

    Usage:
        harness = MockHarness(turns=[
            MockTurn(tool_calls=[("submit_implementation_plan", plan_args)]),
            MockTurn(events=[TextEvent(text="done"), ResultEvent(success=True)]),
        ])

    A callable ``responder(config, prompt) -> MockTurn`` may be given instead
    of a list. Once a list runs out, turns default to a plain success.
    """

    display_name = "mock"

    def __init__(
        self,
        turns: list[MockTurn] | None = None,
        responder: Callable[[AgentConfig, str], MockTurn] | None = None,
    ) -> None:
        self._turns = list(turns or [])
        self._responder = responder
        self.runs: list[tuple[AgentConfig, str]] = []
        self.sessions: list[MockSession] = []
        self.tool_servers: list[ToolServer] = []
        self.closed = False

    def next_turn(self, config: AgentConfig, prompt: str) -> MockTurn:
        if self._responder is not None:
            return self._responder(config, prompt)
        if self._turns:
            return self._turns.pop(0)
        return MockTurn()

    def run(self, config: AgentConfig, prompt: str) -> MockSession:
        self.runs.append((config, prompt))
        session = MockSession(self, config, prompt)
        self.sessions.append(session)
        return session

    def create_tool_server(self, name: str, tools: list[ToolDefinition]) -> ToolServer:
        server = ToolServer(name=name, tools=tuple(tools))
        self.tool_servers.append(server)
        return server

    async def close(self) -> None:
        self.closed = True


class FakeGitClient:
    """In-memory stand-in for GitClient used by loop tests."""

    def __init__(self, *, dirty: bool = False, gh: bool = False, fail_commit: bool = False) -> None:
        self.commits: list[str] = []
        self.branches: list[str] = []
        self.pushed: list[str] = []
        self.pull_requests: list[dict[str, Any]] = []
        self.dirty = dirty
        self.gh = gh
        self.fail_commit = fail_commit
        self.changes_pending = True

    async def ensure_repo(self) -> bool:
        return False

    async def has_uncommitted_changes(self) -> bool:
        return self.dirty

    async def diff_stats(self) -> DiffStats:
        return DiffStats(files_changed=1, lines_added=2, lines_removed=0)

    async def create_branch(self, name: str) -> bool:
        self.branches.append(name)
        return True

    async def current_branch(self) -> str:
        return self.branches[-1] if self.branches else "main"

    async def default_branch(self) -> str | None:
        return "main"

    async def recent_log(self, count: int = 10) -> str:
        return "\n".join(f"{i:07x} {msg}" for i, msg in enumerate(reversed(self.commits[-count:])))

    async def commit(self, message: str) -> str | None:
        if self.fail_commit:
            from autonav.memento.git import GitError

            raise GitError(["git", "commit", "-m", message], "fatal: simulated failure")
        self.dirty = False
        if not self.changes_pending:
            return None
        self.commits.append(message)
        return f"{len(self.commits):07x}"

    async def last_commit_diff_stats(self) -> DiffStats:
        return DiffStats(files_changed=1, lines_added=10, lines_removed=2)

    async def is_gh_available(self) -> bool:
        return self.gh

    async def push(self, branch: str, *, set_upstream: bool = True) -> None:
        self.pushed.append(branch)

    async def create_pull_request(self, title: str, body: str, *, base: str = "main", draft: bool = False) -> str:
        self.pull_requests.append({"title": title, "body": body, "base": base})
        return "https://github.com/example/repo/pull/1"


def plan_args(
    summary: str = "feat: add greeting module",
    *,
    complete: bool = False,
    completion_message: str | None = None,
) -> dict[str, Any]:
    args: dict[str, Any] = {
        "summary": summary,
        "steps": [{"description": "Create greet.py", "files": ["greet.py"]}],
        "validationCriteria": ["greet.py exists"],
        "isComplete": complete,
    }
    if completion_message:
        args["completionMessage"] = completion_message
    return args


def write_navigator(
    root: Path,
    name: str = "test-nav",
    *,
    description: str | None = "Knows about the test project",
    related: list[dict[str, str]] | None = None,
    harness: str | None = None,
) -> Path:
    """Create a minimal navigator directory (CLAUDE.md + config.json)."""
    import json

    nav = root / name
    nav.mkdir(parents=True, exist_ok=True)
    (nav / "CLAUDE.md").write_text(f"# {name}\n\nYou are the {name} navigator.\n")
    config: dict[str, Any] = {"name": name}
    if description:
        config["description"] = description
    if related:
        config["relatedNavigators"] = related
    if harness:
        config["harness"] = {"type": harness}
    (nav / "config.json").write_text(json.dumps(config))
    return nav


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script using the current interpreter."""
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(0o755)
    return path


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A fresh git repository with a committer identity configured."""
    repo = tmp_path / "repo"
    repo.mkdir()
    for args in (
        ["git", "init", "-q"],
        ["git", "config", "user.email", "test@example.com"],
        ["git", "config", "user.name", "Test"],
        ["git", "config", "commit.gpgsign", "false"],
    ):
        subprocess.run(args, cwd=repo, check=True, capture_output=True)
    return repo


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path: Path):
    """Keep tests away from the user's autonav config and env."""
    for var in ("AUTONAV_HARNESS", "AUTONAV_QUERY_DEPTH", "AUTONAV_SANDBOX", "AUTONAV_DEBUG"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("AUTONAV_CONFIG_DIR", str(tmp_path / "autonav-config"))
