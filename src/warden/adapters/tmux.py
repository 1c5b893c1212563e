"""Terminal-multiplexer adapter (``tmux``)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from warden.adapters.base import CommandResult, CommandRunner
from warden.errors import ExternalError

log = logging.getLogger(__name__)

SHELLS = frozenset({"bash", "zsh", "sh", "fish", "tcsh", "ksh", "dash"})
PERMISSIONS_DIALOG_MARKER = "Bypass Permissions mode"

_MISSING_SESSION_MARKERS = ("can't find session", "no server running", "session not found", "error connecting")


def _pane(name: str) -> str:
    return f"={name}:"


def _missing_session(exc: ExternalError) -> bool:
    text = exc.stderr.lower()
    return any(marker in text for marker in _MISSING_SESSION_MARKERS)


@dataclass(frozen=True, slots=True)
class SessionTheme:
    name: str
    bg: str
    fg: str = "colour255"


class Tmux:
    """One method per multiplexer operation.

    Targets use the ``=name`` form so a session name never matches another
    session by prefix.
    """

    def __init__(
        self,
        runner: CommandRunner,
        binary: str = "tmux",
        *,
        poll_interval: float = 0.1,
        settle_delay: float = 0.5,
    ) -> None:
        self.runner = runner
        self.binary = binary
        self.poll_interval = poll_interval
        self.settle_delay = settle_delay

    async def _tmux(self, *args: str, check: bool = True) -> CommandResult:
        return await self.runner.run([self.binary, *args], check=check)

    async def has_session(self, name: str) -> bool:
        result = await self._tmux("has-session", "-t", f"={name}", check=False)
        return result.ok

    async def pane_command(self, name: str) -> str | None:
        try:
            result = await self._tmux("display-message", "-p", "-t", _pane(name), "#{pane_current_command}")
        except ExternalError as exc:
            if _missing_session(exc):
                return None
            raise
        return result.stdout.strip()

    async def is_assistant_alive(self, name: str) -> bool:
        """True when the pane runs something other than a bare shell."""
        command = await self.pane_command(name)
        if not command:
            return False
        return command not in SHELLS

    async def kill_session(self, name: str) -> None:
        try:
            await self._tmux("kill-session", "-t", f"={name}")
        except ExternalError as exc:
            if not _missing_session(exc):
                raise

    async def new_session(self, name: str, cwd: str | Path, initial_command: str | None = None) -> None:
        args = ["new-session", "-d", "-s", name, "-c", str(cwd)]
        if initial_command:
            args.append(initial_command)
        await self._tmux(*args)

    async def set_env(self, name: str, key: str, value: str) -> None:
        await self._tmux("set-environment", "-t", f"={name}", key, value)

    async def send_keys(self, name: str, text: str) -> None:
        """Type *text* literally and press Enter."""
        await self._tmux("send-keys", "-t", _pane(name), "-l", text)
        await asyncio.sleep(self.settle_delay)
        await self._tmux("send-keys", "-t", _pane(name), "Enter")

    async def signal(self, name: str, text: str) -> None:
        """Inject a single-line prompt into the running assistant."""
        line = " ".join(text.split())
        await self.send_keys(name, line)

    async def capture(self, name: str, lines: int = 50) -> str:
        result = await self._tmux("capture-pane", "-p", "-t", _pane(name), "-S", f"-{lines}")
        return result.stdout

    async def _wait_pane(self, name: str, timeout: float, *, want_shell: bool) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            command = await self.pane_command(name)
            if command:
                if (command in SHELLS) == want_shell:
                    return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)

    async def wait_for_shell_ready(self, name: str, timeout: float) -> bool:
        return await self._wait_pane(name, timeout, want_shell=True)

    async def wait_for_assistant(self, name: str, timeout: float) -> bool:
        return await self._wait_pane(name, timeout, want_shell=False)

    async def accept_permissions_dialog(self, name: str) -> bool:
        content = await self.capture(name)
        if PERMISSIONS_DIALOG_MARKER not in content:
            return False
        await self._tmux("send-keys", "-t", _pane(name), "Down")
        await asyncio.sleep(self.settle_delay)
        await self._tmux("send-keys", "-t", _pane(name), "Enter")
        return True

    async def apply_theme(self, name: str, theme: SessionTheme, title: str) -> None:
        target = f"={name}"
        await self._tmux("set-option", "-t", target, "status-style", f"bg={theme.bg},fg={theme.fg}")
        await self._tmux("set-option", "-t", target, "status-left", f" {title} ")
        await self._tmux("set-option", "-t", target, "status-left-length", "60")

    async def ensure_session_fresh(self, name: str, cwd: str | Path) -> bool:
        """Make sure a session with a live assistant, or a fresh one, exists.

        Returns ``True`` when a new session was created. A session whose
        assistant is already running is left alone; one that exists with a
        dead assistant is killed and recreated.
        """
        if await self.has_session(name):
            if await self.is_assistant_alive(name):
                return False
            log.info("session %s exists but its assistant is dead; recreating", name)
            await self.kill_session(name)
        await self.new_session(name, cwd)
        return True
