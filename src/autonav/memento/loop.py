"""The memento loop: plan, implement, commit, repeat.

The implementer starts from nothing each iteration. The only state carried
between iterations is the git history of the code directory, which the
navigator reads before planning the next step.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path

from autonav.core.navigator import LoadedNavigator, load_navigator
from autonav.harnesses.base import CollectedResult, Harness, HarnessError, collect_result
from autonav.memento.git import GitClient, GitError
from autonav.memento.prompts import (
    NavigatorIdentity,
    PlanPromptContext,
    build_implementer_prompt,
    build_implementer_system_prompt,
    build_nav_plan_prompt,
    build_nav_system_prompt,
)
from autonav.memento.protocol import NAV_PROTOCOL_SERVER, SUBMIT_PLAN_TOOL, PlanCapture
from autonav.memento.rate_limit import (
    compute_wait_seconds,
    get_connection_retry_delay,
    is_transient_connection_error,
    parse_rate_limit_error,
    wait_with_countdown,
)
from autonav.types.config import AgentConfig, PermissionMode
from autonav.types.events import AgentEvent
from autonav.types.memento import DiffStats, IterationRecord, MementoOptions, MementoResult
from autonav.types.plan import ImplementationPlan

logger = logging.getLogger(__name__)

NAV_DISALLOWED_TOOLS = ["Write", "Edit", "Bash"]
PRE_LOOP_COMMIT_MESSAGE = "chore: commit pending changes before memento loop"
MAX_ERROR_DETAIL = 500


class MementoError(Exception):
    """The loop cannot continue (no plan, retries exhausted, bad setup)."""


class MementoObserver:
    """Receives progress from a running loop. Every hook is optional."""

    def on_iteration_start(self, iteration: int, max_iterations: int) -> None:
        pass

    def on_plan(self, iteration: int, plan: ImplementationPlan) -> None:
        pass

    def on_event(self, role: str, event: AgentEvent) -> None:
        pass

    def on_wait(self, reason: str, remaining: int, formatted: str) -> None:
        pass

    def on_commit(self, iteration: int, commit: str | None, stats: DiffStats) -> None:
        pass

    def confirm_uncommitted(self, stats: DiffStats) -> bool:
        """Whether to commit changes found before the loop starts."""
        return True


def _failure_text(result: CollectedResult) -> str | None:
    """Error text of a turn that needs handling, or None if it went fine."""
    if result.success and not any(e.retryable for e in result.errors):
        return None
    parts = [e.message for e in result.errors]
    if not result.success:
        parts.append(result.text or "No result message received")
    return "\n".join(parts)


def _truncate(text: str, limit: int = MAX_ERROR_DETAIL) -> str:
    return text if len(text) <= limit else text[:limit] + "... (truncated)"


class MementoLoop:
    """Drives navigator and implementer sessions against one code directory."""

    def __init__(
        self,
        options: MementoOptions,
        harness: Harness,
        *,
        git: GitClient | None = None,
        observer: MementoObserver | None = None,
        implementer_harness: Harness | None = None,
    ) -> None:
        self.options = options
        self.code_dir = Path(options.code_dir).expanduser().resolve()
        self.nav_dir = Path(options.nav_dir).expanduser().resolve()
        self._harness = harness
        self._implementer_harness = implementer_harness or harness
        self._git = git or GitClient(self.code_dir)
        self._observer = observer or MementoObserver()
        self._navigator: LoadedNavigator | None = None

    # ------------------------------------------------------------------
    # Session plumbing
    # ------------------------------------------------------------------

    async def _observe(self, role: str, events: AsyncIterable[AgentEvent]) -> AsyncIterator[AgentEvent]:
        async for event in events:
            self._observer.on_event(role, event)
            yield event

    async def _run_turn(self, harness: Harness, role: str, config: AgentConfig, prompt: str) -> CollectedResult:
        session = harness.run(config, prompt)
        try:
            return await collect_result(self._observe(role, session))
        finally:
            await session.close()

    async def _run_with_retries(
        self,
        harness: Harness,
        role: str,
        config: AgentConfig,
        prompt: str,
        *,
        capture: PlanCapture | None = None,
    ) -> CollectedResult:
        """Run one turn, waiting out rate limits and connection drops.

        Errors the backend flags as retryable wait like connection drops. A
        failure that is none of these is returned to the caller (or re-raised
        if the backend threw). After ``max_retries`` waits the loop gives up.
        """
        attempt = 0
        while True:
            if capture is not None:
                capture.reset_captured_plan()

            error: Exception | None = None
            retryable = False
            try:
                result = await self._run_turn(harness, role, config, prompt)
                failure = _failure_text(result)
                retryable = not result.success and any(e.retryable for e in result.errors)
            except (HarnessError, OSError) as exc:
                error, failure = exc, str(exc)
            if failure is None:
                return result

            rate_limit = parse_rate_limit_error(failure)
            if rate_limit.is_rate_limited:
                reason = "Rate limited"
                if rate_limit.reset_time_raw:
                    reason += f" (resets {rate_limit.reset_time_raw})"
                wait = compute_wait_seconds(rate_limit, attempt)
            elif is_transient_connection_error(failure):
                reason = "Connection error"
                wait = get_connection_retry_delay(attempt)
            elif retryable:
                reason = "Retryable error"
                wait = get_connection_retry_delay(attempt)
            elif error is not None:
                raise error
            else:
                return result

            if attempt >= self.options.max_retries:
                raise MementoError(f"{role} failed after {attempt} retries: {_truncate(failure)}")
            logger.warning("%s: %s, retrying in %ss (attempt %d)", role, reason, wait, attempt + 1)
            await wait_with_countdown(
                wait, lambda remaining, formatted: self._observer.on_wait(reason, remaining, formatted)
            )
            attempt += 1

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _identity(self) -> NavigatorIdentity | None:
        navigator = self._navigator
        if navigator is not None and navigator.config.get("name") and navigator.description:
            return NavigatorIdentity(name=navigator.name, description=navigator.description)
        return None

    async def plan(self, iteration: int, git_log: str) -> ImplementationPlan:
        """Ask the navigator for the next plan. Raises MementoError without one."""
        assert self._navigator is not None
        capture = PlanCapture()
        server = self._harness.create_tool_server(NAV_PROTOCOL_SERVER, capture.tools)
        config = AgentConfig(
            model=self.options.nav_model,
            max_turns=self.options.max_turns,
            system_prompt=build_nav_system_prompt(self._navigator.system_prompt),
            cwd=str(self.nav_dir),
            additional_directories=[str(self.code_dir)],
            disallowed_tools=list(NAV_DISALLOWED_TOOLS),
            mcp_servers={NAV_PROTOCOL_SERVER: server},
            permission_mode=PermissionMode.BYPASS,
        )
        prompt = build_nav_plan_prompt(
            PlanPromptContext(
                task=self.options.task,
                code_directory=str(self.code_dir),
                iteration=iteration,
                max_iterations=self.options.max_iterations,
                branch=self.options.branch,
            ),
            git_log,
            self._identity(),
        )

        result = await self._run_with_retries(self._harness, "Navigator", config, prompt, capture=capture)
        plan = capture.get_captured_plan()
        if plan is None:
            if not result.success:
                raise MementoError(f"Navigator query failed: {result.text or 'Unknown error'}")
            raise MementoError(
                f"Navigator did not submit a plan. The navigator must use the {SUBMIT_PLAN_TOOL} tool."
            )
        return plan

    async def implement(self, plan: ImplementationPlan) -> CollectedResult:
        config = AgentConfig(
            model=self.options.model,
            max_turns=self.options.max_turns,
            system_prompt=build_implementer_system_prompt(str(self.code_dir)),
            cwd=str(self.code_dir),
            permission_mode=PermissionMode.BYPASS,
        )
        prompt = build_implementer_prompt(str(self.code_dir), plan)
        return await self._run_with_retries(self._implementer_harness, "Implementer", config, prompt)

    async def _prepare(self) -> None:
        if not self.code_dir.exists():
            raise MementoError(f"Code directory not found: {self.code_dir}")
        self._navigator = load_navigator(self.nav_dir)

        await self._git.ensure_repo()
        if await self._git.has_uncommitted_changes():
            if not self._observer.confirm_uncommitted(await self._git.diff_stats()):
                raise MementoError("Aborted: uncommitted changes in code directory")
            await self._git.commit(PRE_LOOP_COMMIT_MESSAGE)
        if self.options.branch:
            await self._git.create_branch(self.options.branch)

    async def _open_pull_request(self, history: list[IterationRecord], completion: str | None) -> str | None:
        branch = self.options.branch
        if not (self.options.pr and branch):
            return None
        if not await self._git.is_gh_available():
            logger.warning("gh CLI not available. Cannot create PR. Install and authenticate gh CLI.")
            return None

        task = self.options.task
        iterations = "\n".join(f"- **{r.iteration}**: {r.summary}" for r in history)
        body = (
            f"## Summary\n\n{completion or task}\n\n"
            f"## Iterations\n\n{iterations}\n\n"
            "---\n*Created by autonav memento loop*"
        )
        await self._git.push(branch, set_upstream=True)
        return await self._git.create_pull_request(
            title=task if len(task) <= 70 else task[:67] + "...",
            body=body,
            base=await self._git.default_branch() or "main",
        )

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> MementoResult:
        start = time.monotonic()
        await self._prepare()

        options = self.options
        iteration = 0
        errors: list[str] = []
        history: list[IterationRecord] = []
        totals = DiffStats()
        completion: str | None = None
        pr_url: str | None = None
        success = True

        try:
            while options.max_iterations == 0 or iteration < options.max_iterations:
                iteration += 1
                self._observer.on_iteration_start(iteration, options.max_iterations)

                git_log = await self._git.recent_log(options.git_log_count)
                plan = await self.plan(iteration, git_log)
                self._observer.on_plan(iteration, plan)
                if plan.is_complete:
                    completion = plan.completion_message
                    logger.info("Navigator marked the task complete at iteration %d", iteration)
                    break

                implemented = await self.implement(plan)
                if not implemented.success:
                    detail = _failure_text(implemented) or "Unknown error"
                    errors.append(f"Iteration {iteration}: Implementer failed - {_truncate(detail)}")

                commit = await self._git.commit(plan.summary)
                stats = await self._git.last_commit_diff_stats() if commit else DiffStats()
                totals += stats
                history.append(
                    IterationRecord(
                        iteration=iteration,
                        summary=plan.summary,
                        commit=commit,
                        diff_stats=stats,
                        implementer_success=implemented.success,
                    )
                )
                self._observer.on_commit(iteration, commit, stats)

            pr_url = await self._open_pull_request(history, completion)
        except (MementoError, GitError, HarnessError) as exc:
            logger.error("Memento loop stopped at iteration %d: %s", iteration, exc)
            errors.append(str(exc))
            success = False

        return MementoResult(
            success=success,
            iterations=iteration,
            duration_ms=int((time.monotonic() - start) * 1000),
            completion_message=completion,
            branch=options.branch or await self._git.current_branch(),
            pr_url=pr_url,
            errors=tuple(errors),
            diff_stats=totals,
            history=tuple(history),
        )


async def run_memento_loop(
    options: MementoOptions,
    harness: Harness,
    *,
    observer: MementoObserver | None = None,
    git: GitClient | None = None,
) -> MementoResult:
    """Run a loop to completion with a single harness for both roles."""
    return await MementoLoop(options, harness, git=git, observer=observer).run()
