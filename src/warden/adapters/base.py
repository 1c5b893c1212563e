"""Subprocess runner shared by every external CLI adapter."""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from warden.errors import (
    ExternalBinaryMissing,
    ExternalError,
    ExternalTimeout,
    NotFound,
    PermissionDenied,
)

if TYPE_CHECKING:
    from warden.identity import AgentIdentity
    from warden.protocol.models import AgentRecord, MailMessage


@dataclass(slots=True)
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def json(self) -> Any:
        """Decode stdout; empty output decodes to ``None``."""
        text = self.stdout.strip()
        if not text:
            return None
        return json.loads(text)


def _spawn_error(exc: OSError, args: Sequence[str], cwd: Path | None) -> Exception:
    if isinstance(exc, FileNotFoundError):
        if cwd is not None and not cwd.exists():
            return NotFound(str(cwd))
        return ExternalBinaryMissing(args[0])
    if isinstance(exc, PermissionError):
        return PermissionDenied(args[0])
    return exc


async def _reap(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()


async def _drain(stream: asyncio.StreamReader | None, tail: list[bytes], limit: int = 4000) -> None:
    if stream is None:
        return
    size = 0
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return
        tail.append(chunk)
        size += len(chunk)
        while size > limit and len(tail) > 1:
            size -= len(tail.pop(0))


class CommandRunner:
    """Runs one external command per call with a bounded wait.

    Failures map onto the adapter error kinds: a missing binary, a refused
    exec, a timeout or a non-zero exit. Cancelling the calling task kills
    the child before the cancellation propagates.
    """

    def __init__(
        self,
        *,
        cwd: str | Path | None = None,
        timeout: float = 30.0,
        env: dict[str, str] | None = None,
    ) -> None:
        self.cwd = Path(cwd) if cwd is not None else None
        self.timeout = timeout
        self.env = env

    def _environ(self, extra: dict[str, str] | None) -> dict[str, str] | None:
        if not self.env and not extra:
            return None
        merged = dict(os.environ)
        merged.update(self.env or {})
        merged.update(extra or {})
        return merged

    async def run(
        self,
        args: Sequence[str],
        *,
        cwd: str | Path | None = None,
        timeout: float | None = None,
        check: bool = True,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        workdir = Path(cwd) if cwd is not None else self.cwd
        bound = self.timeout if timeout is None else timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(workdir) if workdir is not None else None,
                env=self._environ(env),
            )
        except OSError as exc:
            raise _spawn_error(exc, argv, workdir) from exc

        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=bound)
        except TimeoutError:
            await _reap(proc)
            raise ExternalTimeout(argv, bound) from None
        except asyncio.CancelledError:
            await _reap(proc)
            raise

        result = CommandResult(
            args=argv,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=(out or b"").decode("utf-8", errors="replace"),
            stderr=(err or b"").decode("utf-8", errors="replace"),
        )
        if check and not result.ok:
            raise ExternalError(argv, result.stderr, result.returncode)
        return result

    async def stream_lines(
        self,
        args: Sequence[str],
        *,
        cwd: str | Path | None = None,
    ) -> AsyncIterator[str]:
        """Yield stdout lines of a long-running command until EOF.

        The child is terminated when the consumer stops iterating or is
        cancelled. A non-zero exit after EOF raises ``ExternalError``.
        """
        argv = [str(a) for a in args]
        workdir = Path(cwd) if cwd is not None else self.cwd
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(workdir) if workdir is not None else None,
                env=self._environ(None),
            )
        except OSError as exc:
            raise _spawn_error(exc, argv, workdir) from exc

        assert proc.stdout is not None
        stderr_tail: list[bytes] = []
        drain = asyncio.create_task(_drain(proc.stderr, stderr_tail))
        try:
            while True:
                raw = await proc.stdout.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    yield line
            returncode = await proc.wait()
            await drain
            if returncode != 0:
                stderr = b"".join(stderr_tail).decode("utf-8", errors="replace")
                raise ExternalError(argv, stderr, returncode)
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.terminate()
                try:
                    await asyncio.wait_for(proc.wait(), timeout=5)
                except TimeoutError:
                    await _reap(proc)
            drain.cancel()


class IssueStoreAPI(Protocol):
    async def show(self, record_id: str) -> tuple[AgentRecord | None, bool]: ...

    async def list_by_type(self, issue_type: str) -> list[AgentRecord]: ...

    async def status_of(self, issue_id: str) -> str | None: ...

    async def find_trackers(self, child_id: str) -> list[str]: ...

    def follow_events(self) -> AsyncIterator[str]: ...


class MailboxAPI(Protocol):
    async def inbox(self, identity: AgentIdentity) -> list[MailMessage]: ...

    async def delete(self, message_id: str) -> None: ...

    async def send(self, to: str, subject: str, body: str, priority: str = "normal") -> None: ...


class MultiplexerAPI(Protocol):
    async def has_session(self, name: str) -> bool: ...

    async def is_assistant_alive(self, name: str) -> bool: ...

    async def kill_session(self, name: str) -> None: ...

    async def new_session(self, name: str, cwd: str | Path, initial_command: str | None = None) -> None: ...

    async def set_env(self, name: str, key: str, value: str) -> None: ...

    async def send_keys(self, name: str, text: str) -> None: ...

    async def signal(self, name: str, text: str) -> None: ...

    async def wait_for_shell_ready(self, name: str, timeout: float) -> bool: ...

    async def wait_for_assistant(self, name: str, timeout: float) -> bool: ...

    async def accept_permissions_dialog(self, name: str) -> bool: ...

    async def apply_theme(self, name: str, theme: Any, title: str) -> None: ...

    async def ensure_session_fresh(self, name: str, cwd: str | Path) -> bool: ...


class GitAPI(Protocol):
    async def fetch(self, repo: str | Path, remote: str = "origin") -> None: ...

    async def pull_rebase(self, repo: str | Path, remote: str, branch: str) -> None: ...

    async def rev(self, repo: str | Path, ref: str = "HEAD") -> str: ...

    async def is_ancestor(self, repo: str | Path, commit: str, ref: str) -> bool: ...

    async def remotes(self, repo: str | Path) -> list[str]: ...
