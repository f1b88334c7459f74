"""Types for the memento plan/implement/commit loop."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_IMPLEMENTER_MODEL = "claude-haiku-4-5"
DEFAULT_NAVIGATOR_MODEL = "claude-opus-4-5"


@dataclass(frozen=True, slots=True)
class DiffStats:
    """Numbers parsed from ``git diff --shortstat``."""

    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0

    def __add__(self, other: DiffStats) -> DiffStats:
        return DiffStats(
            files_changed=self.files_changed + other.files_changed,
            lines_added=self.lines_added + other.lines_added,
            lines_removed=self.lines_removed + other.lines_removed,
        )


@dataclass(slots=True)
class MementoOptions:
    """Options for a memento loop run."""

    task: str
    code_dir: str
    nav_dir: str
    max_iterations: int = 0  # 0 = unlimited
    branch: str | None = None
    model: str = DEFAULT_IMPLEMENTER_MODEL
    nav_model: str = DEFAULT_NAVIGATOR_MODEL
    max_turns: int = 50
    max_retries: int = 5
    git_log_count: int = 20
    pr: bool = False


@dataclass(frozen=True, slots=True)
class IterationRecord:
    """What happened in one completed iteration."""

    iteration: int
    summary: str
    commit: str | None = None
    diff_stats: DiffStats = field(default_factory=DiffStats)
    implementer_success: bool = True


@dataclass(frozen=True, slots=True)
class MementoResult:
    """Final outcome of a memento loop run."""

    success: bool
    iterations: int
    duration_ms: int
    completion_message: str | None = None
    branch: str | None = None
    pr_url: str | None = None
    errors: tuple[str, ...] = ()
    diff_stats: DiffStats = field(default_factory=DiffStats)
    history: tuple[IterationRecord, ...] = ()

    @property
    def commits(self) -> tuple[str, ...]:
        return tuple(r.commit for r in self.history if r.commit)
