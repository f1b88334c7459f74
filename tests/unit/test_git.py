"""Tests for GitClient against a real temporary repository."""

from __future__ import annotations

import subprocess

import pytest

from autonav.memento.git import GitClient, GitError, parse_shortstat
from autonav.types.memento import DiffStats


def test_parse_shortstat():
    assert parse_shortstat(" 3 files changed, 10 insertions(+), 5 deletions(-)") == DiffStats(3, 10, 5)
    assert parse_shortstat(" 1 file changed, 1 insertion(+)") == DiffStats(1, 1, 0)
    assert parse_shortstat("") == DiffStats(0, 0, 0)


def test_git_error_message():
    err = GitError(["git", "commit", "-m", "two words"], "fatal: nope")
    assert str(err) == "Git command failed: git commit -m 'two words'\nfatal: nope"
    assert err.stderr == "fatal: nope"


class TestGitClient:
    @pytest.mark.asyncio
    async def test_ensure_repo(self, tmp_path):
        client = GitClient(tmp_path)
        assert await client.is_repo() is False
        assert await client.ensure_repo() is True
        assert (tmp_path / ".git").is_dir()
        assert await client.ensure_repo() is False

    @pytest.mark.asyncio
    async def test_commit_cycle(self, git_repo):
        client = GitClient(git_repo)
        assert await client.recent_log() == ""
        assert await client.has_uncommitted_changes() is False
        assert await client.commit("chore: nothing") is None

        (git_repo / "a.txt").write_text("one\ntwo\n")
        assert await client.has_uncommitted_changes() is True
        first = await client.commit("feat: add a")
        assert first
        assert await client.has_uncommitted_changes() is False
        assert await client.last_commit_diff_stats() == DiffStats(1, 2, 0)

        (git_repo / "a.txt").write_text("one\nthree\n")
        assert await client.diff_stats() == DiffStats(1, 1, 1)
        assert "three" in await client.recent_diff()
        await client.commit("fix: change a")

        log = await client.recent_log()
        assert log.splitlines()[0].endswith("fix: change a")
        assert log.splitlines()[1] == f"{first} feat: add a"
        assert len((await client.recent_log(count=1)).splitlines()) == 1

    @pytest.mark.asyncio
    async def test_branches(self, git_repo):
        client = GitClient(git_repo)
        (git_repo / "a.txt").write_text("a")
        await client.commit("init")
        base = await client.current_branch()

        assert await client.create_branch("feat/x") is True
        assert await client.current_branch() == "feat/x"
        subprocess.run(["git", "checkout", "-q", base], cwd=git_repo, check=True)
        assert await client.create_branch("feat/x") is False
        assert await client.current_branch() == "feat/x"

    @pytest.mark.asyncio
    async def test_remote_queries_without_remote(self, git_repo):
        client = GitClient(git_repo)
        assert await client.default_branch() is None
        assert await client.remote_url() is None

    @pytest.mark.asyncio
    async def test_push_without_remote_raises(self, git_repo):
        client = GitClient(git_repo)
        (git_repo / "a.txt").write_text("a")
        await client.commit("init")
        with pytest.raises(GitError) as exc_info:
            await client.push(await client.current_branch())
        assert exc_info.value.command[:3] == ["git", "push", "-u"]

    @pytest.mark.asyncio
    async def test_worktrees(self, git_repo, tmp_path):
        client = GitClient(git_repo)
        (git_repo / "a.txt").write_text("a")
        await client.commit("init")

        path = await client.worktree_add(tmp_path / "wt", "feat/wt")
        assert (path / "a.txt").read_text() == "a"
        assert await GitClient(path).current_branch() == "feat/wt"
        await client.worktree_remove(path)
        assert not path.exists()

        again = await client.worktree_add(tmp_path / "wt2", "feat/wt")
        assert await GitClient(again).current_branch() == "feat/wt"
        await client.worktree_remove(again, force=True)

    @pytest.mark.asyncio
    async def test_gh_missing(self, git_repo, monkeypatch):
        monkeypatch.setenv("PATH", str(git_repo))
        assert await GitClient(git_repo).is_gh_available() is False
