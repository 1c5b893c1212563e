"""Git adapter for the persistent clones agents work in."""

from __future__ import annotations

from pathlib import Path

from warden.adapters.base import CommandRunner, CommandResult
from warden.errors import ExternalError


class Git:
    def __init__(self, runner: CommandRunner, binary: str = "git") -> None:
        self.runner = runner
        self.binary = binary

    async def _git(self, repo: str | Path, *args: str, check: bool = True) -> CommandResult:
        return await self.runner.run([self.binary, *args], cwd=repo, check=check)

    async def fetch(self, repo: str | Path, remote: str = "origin") -> None:
        await self._git(repo, "fetch", remote)

    async def pull_rebase(self, repo: str | Path, remote: str, branch: str) -> None:
        await self._git(repo, "pull", "--rebase", remote, branch)

    async def rev(self, repo: str | Path, ref: str = "HEAD") -> str:
        result = await self._git(repo, "rev-parse", ref)
        return result.stdout.strip()

    async def is_ancestor(self, repo: str | Path, commit: str, ref: str) -> bool:
        result = await self._git(repo, "merge-base", "--is-ancestor", commit, ref, check=False)
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise ExternalError(result.args, result.stderr, result.returncode)

    async def remotes(self, repo: str | Path) -> list[str]:
        result = await self._git(repo, "remote")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def is_git_worktree(path: Path) -> bool:
    """A clone or linked worktree has a ``.git`` directory or file at its top."""
    return (path / ".git").exists()
