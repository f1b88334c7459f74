"""Rich-powered terminal output for the memento loop."""

from __future__ import annotations

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from autonav.cli.output import tool_detail
from autonav.memento.loop import MementoObserver
from autonav.types.events import AgentEvent, ErrorEvent, ResultEvent, ToolResultEvent, ToolUseEvent
from autonav.types.memento import DiffStats, MementoResult
from autonav.types.plan import ImplementationPlan

STYLE_ROLE = "bold #a78bfa"
STYLE_DETAIL = "#7c7c8a"
STYLE_ERROR = "bold #f87171"
STYLE_WAIT = "#fbbf24"
STYLE_OK = "#34d399"
STYLE_LABEL = "bold #94a3b8"
STYLE_VALUE = "#e2e8f0"


class RichMementoObserver(MementoObserver):
    """Prints loop progress to stderr with rich.

    Tool calls are only shown in verbose mode; plans, waits and commits
    always are.
    """

    def __init__(self, console: Console | None = None, *, verbose: bool = False) -> None:
        self._console = console or Console(stderr=True)
        self._verbose = verbose

    def on_iteration_start(self, iteration: int, max_iterations: int) -> None:
        label = f"Iteration {iteration}" + (f"/{max_iterations}" if max_iterations else "")
        self._console.rule(Text(label, style=STYLE_ROLE))

    def on_plan(self, iteration: int, plan: ImplementationPlan) -> None:
        if plan.is_complete:
            message = plan.completion_message or plan.summary
            self._console.print(Panel(message, title="Task complete", border_style=STYLE_OK, expand=False))
            return
        body = Text(plan.summary + "\n", style=STYLE_VALUE)
        for i, step in enumerate(plan.steps, start=1):
            body.append(f"\n{i}. {step.description}", style=STYLE_DETAIL)
        self._console.print(Panel(body, title="Plan", border_style="#3f3f50", expand=False))

    def on_event(self, role: str, event: AgentEvent) -> None:
        match event:
            case ToolUseEvent(name=name, input=args) if self._verbose:
                line = Text(f"  {role} ", style=STYLE_ROLE)
                line.append(name, style=STYLE_VALUE)
                if detail := tool_detail(name, args):
                    line.append(f"  {detail}", style=STYLE_DETAIL)
                self._console.print(line)
            case ToolResultEvent(content=content, is_error=True) if self._verbose:
                self._console.print(Text(f"    ✗ {content[:300]}", style=STYLE_ERROR))
            case ErrorEvent(message=message):
                self._console.print(Text(f"  {role}: {message}", style=STYLE_ERROR))
            case ResultEvent(success=False, text=text):
                self._console.print(Text(f"  {role} failed: {text or 'unknown error'}", style=STYLE_ERROR))

    def on_wait(self, reason: str, remaining: int, formatted: str) -> None:
        if remaining % 10 == 0 or remaining <= 10:
            self._console.print(Text(f"  {reason}: resuming in {formatted}", style=STYLE_WAIT))

    def on_commit(self, iteration: int, commit: str | None, stats: DiffStats) -> None:
        if commit is None:
            self._console.print(Text("  No changes to commit", style=STYLE_DETAIL))
            return
        line = Text("  Committed ", style=STYLE_OK)
        line.append(commit, style=STYLE_VALUE)
        line.append(f"  +{stats.lines_added} -{stats.lines_removed}", style=STYLE_DETAIL)
        self._console.print(line)

    def confirm_uncommitted(self, stats: DiffStats) -> bool:
        self._console.print(Text("Uncommitted changes detected.", style=STYLE_WAIT))
        self._console.print(
            Text(
                f"  {stats.files_changed} files, +{stats.lines_added} -{stats.lines_removed}. "
                "The navigator only sees committed history.",
                style=STYLE_DETAIL,
            )
        )
        return click.confirm("Commit them before starting?", default=True, err=True)


def print_memento_result(result: MementoResult, console: Console | None = None) -> None:
    """Print the loop outcome as a compact table."""
    console = console or Console(stderr=True)

    tbl = Table(show_header=False, show_edge=False, show_lines=False, padding=(0, 1), expand=False)
    tbl.add_column(style=STYLE_LABEL, justify="right", no_wrap=True)
    tbl.add_column(style=STYLE_VALUE)

    tbl.add_row("Status", Text("completed" if result.success else "failed", style=STYLE_OK if result.success else STYLE_ERROR))
    tbl.add_row("Iterations", str(result.iterations))
    tbl.add_row("Commits", str(len(result.commits)))
    tbl.add_row("Lines", f"+{result.diff_stats.lines_added} -{result.diff_stats.lines_removed}")
    if result.branch:
        tbl.add_row("Branch", result.branch)
    if result.pr_url:
        tbl.add_row("PR", result.pr_url)
    tbl.add_row("Duration", f"{result.duration_ms / 1000:.1f}s")
    if result.completion_message:
        tbl.add_row("Summary", result.completion_message)
    for error in result.errors:
        tbl.add_row("Error", Text(error, style=STYLE_ERROR))

    console.print(Panel(tbl, border_style="#3f3f50", expand=False, padding=(0, 1)))
