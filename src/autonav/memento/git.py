"""Git and GitHub CLI operations for the memento loop.

Every method maps onto one or two ``git`` invocations in the repository
directory. Failures raise :class:`GitError` carrying the command line and
stderr; the read-only queries that have a natural empty answer return it
instead.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
from pathlib import Path

from autonav.types.memento import DiffStats

logger = logging.getLogger(__name__)

_FILES_RE = re.compile(r"(\d+) files? changed")
_INSERTIONS_RE = re.compile(r"(\d+) insertions?\(\+\)")
_DELETIONS_RE = re.compile(r"(\d+) deletions?\(-\)")


class GitError(Exception):
    """A git (or gh) command exited non-zero."""

    def __init__(self, command: list[str], stderr: str) -> None:
        self.command = command
        self.stderr = stderr
        super().__init__(f"Git command failed: {shlex.join(command)}\n{stderr}")


def parse_shortstat(output: str) -> DiffStats:
    """Parse ``" 3 files changed, 10 insertions(+), 5 deletions(-)"``."""

    def number(pattern: re.Pattern[str]) -> int:
        match = pattern.search(output)
        return int(match.group(1)) if match else 0

    return DiffStats(
        files_changed=number(_FILES_RE),
        lines_added=number(_INSERTIONS_RE),
        lines_removed=number(_DELETIONS_RE),
    )


class GitClient:
    """Async git operations rooted at one working directory."""

    def __init__(self, cwd: str | Path) -> None:
        self.cwd = Path(cwd)

    async def _exec(self, *command: str) -> str:
        proc = await asyncio.create_subprocess_exec(
            *command,
            cwd=self.cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise GitError(list(command), stderr.decode(errors="replace").strip())
        return stdout.decode(errors="replace").strip()

    async def _git(self, *args: str) -> str:
        logger.debug("git %s", shlex.join(args))
        return await self._exec("git", *args)

    async def _succeeds(self, *args: str) -> bool:
        try:
            await self._git(*args)
        except GitError:
            return False
        return True

    # -- repository state ---------------------------------------------------

    async def is_repo(self) -> bool:
        return await self._succeeds("rev-parse", "--is-inside-work-tree")

    async def ensure_repo(self) -> bool:
        """Run ``git init`` when needed. Returns True if a repo was created."""
        if await self.is_repo():
            return False
        await self._git("init")
        logger.info("Initialized git repository in %s", self.cwd)
        return True

    async def current_branch(self) -> str:
        try:
            return await self._git("branch", "--show-current") or "HEAD"
        except GitError:
            return "HEAD"

    async def create_branch(self, name: str) -> bool:
        """Check out *name*, creating it first if needed. Returns True if created."""
        if await self._succeeds("rev-parse", "--verify", name):
            await self._git("checkout", name)
            return False
        await self._git("checkout", "-b", name)
        return True

    async def default_branch(self) -> str | None:
        try:
            ref = await self._git("symbolic-ref", "refs/remotes/origin/HEAD")
        except GitError:
            return None
        return ref.removeprefix("refs/remotes/origin/") or None

    async def remote_url(self) -> str | None:
        try:
            return await self._git("remote", "get-url", "origin")
        except GitError:
            return None

    async def recent_log(self, count: int = 10) -> str:
        """``git log --oneline``, or ``""`` when there are no commits yet."""
        if not await self._succeeds("rev-parse", "HEAD"):
            return ""
        return await self._git("log", "--oneline", "--no-decorate", "-n", str(count))

    async def recent_diff(self) -> str:
        staged = await self._git("diff", "--cached")
        unstaged = await self._git("diff")
        return f"{staged}\n{unstaged}".strip()

    async def diff_stats(self) -> DiffStats:
        return parse_shortstat(await self._git("diff", "--shortstat"))

    async def last_commit_diff_stats(self) -> DiffStats:
        try:
            output = await self._git("diff", "--shortstat", "HEAD~1", "HEAD")
        except GitError:
            # First commit has no parent.
            output = await self._git("show", "--shortstat", "--format=", "HEAD")
        return parse_shortstat(output)

    async def has_uncommitted_changes(self) -> bool:
        return bool(await self._git("status", "--porcelain"))

    # -- mutations ----------------------------------------------------------

    async def stage_all(self) -> None:
        await self._git("add", "-A")

    async def commit(self, message: str) -> str | None:
        """Stage and commit everything. Returns the short hash, or None if clean."""
        if not await self.has_uncommitted_changes():
            logger.debug("No changes to commit")
            return None
        await self.stage_all()
        await self._git("commit", "-m", message)
        commit_hash = await self._git("rev-parse", "--short", "HEAD")
        logger.info("Committed %s: %s", commit_hash, message)
        return commit_hash

    async def push(self, branch: str, *, set_upstream: bool = True) -> None:
        args = ["push", "-u", "origin", branch] if set_upstream else ["push", "origin", branch]
        await self._git(*args)

    async def worktree_add(self, path: str | Path, branch: str, base_ref: str | None = None) -> Path:
        """Check *branch* out at *path*, creating the branch from *base_ref* if needed."""
        path = Path(path)
        if await self._succeeds("rev-parse", "--verify", f"refs/heads/{branch}"):
            await self._git("worktree", "add", str(path), branch)
        else:
            await self._git("worktree", "add", "-b", branch, str(path), *([base_ref] if base_ref else []))
        return path

    async def worktree_remove(self, path: str | Path, *, force: bool = False) -> None:
        await self._git("worktree", "remove", *(["--force"] if force else []), str(path))

    # -- GitHub CLI ---------------------------------------------------------

    async def is_gh_available(self) -> bool:
        try:
            await self._exec("gh", "auth", "status")
        except (GitError, OSError):
            return False
        return True

    async def create_pull_request(
        self,
        title: str,
        body: str,
        *,
        base: str = "main",
        draft: bool = False,
    ) -> str:
        """Open a PR with ``gh pr create`` and return its URL."""
        args = ["gh", "pr", "create", "--title", title, "--body", body, "--base", base]
        if draft:
            args.append("--draft")
        output = await self._exec(*args)
        return output.splitlines()[-1] if output else output
