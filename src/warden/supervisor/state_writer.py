"""Heartbeat record and PID file persistence, plus operator helpers."""

from __future__ import annotations

import os
import signal
import time
from collections.abc import Callable

from warden.errors import ErrorCategory, WardenError
from warden.protocol.io import read_json, write_json_atomic
from warden.protocol.models import HeartbeatState
from warden.workspace.layout import WorkspaceLayout


def write_state(layout: WorkspaceLayout, state: HeartbeatState) -> None:
    write_json_atomic(layout.state_file, state.to_dict())


def read_state(layout: WorkspaceLayout) -> HeartbeatState:
    return HeartbeatState.from_dict(read_json(layout.state_file, default=None))


def write_pid(layout: WorkspaceLayout, pid: int | None = None) -> None:
    layout.pid_file.parent.mkdir(parents=True, exist_ok=True)
    layout.pid_file.write_text(str(pid if pid is not None else os.getpid()), encoding="ascii")


def read_pid(layout: WorkspaceLayout) -> int | None:
    try:
        return int(layout.pid_file.read_text(encoding="ascii").strip())
    except (OSError, ValueError):
        return None


def remove_pid(layout: WorkspaceLayout) -> None:
    layout.pid_file.unlink(missing_ok=True)


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def is_running(layout: WorkspaceLayout) -> tuple[bool, int]:
    """Check the PID file by sending signal 0; stale files are removed.

    Informational only: the lock file is what keeps a second daemon out.
    """
    pid = read_pid(layout)
    if pid is None:
        return False, 0
    if not _alive(pid):
        remove_pid(layout)
        return False, 0
    return True, pid


def stop_daemon(
    layout: WorkspaceLayout,
    *,
    grace_seconds: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """SIGTERM the running daemon, SIGKILL it after the grace period."""
    running, pid = is_running(layout)
    if not running:
        raise WardenError("daemon is not running", category=ErrorCategory.LIFECYCLE)
    os.kill(pid, signal.SIGTERM)
    sleep(grace_seconds)
    if _alive(pid):
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    remove_pid(layout)
    return pid


def send_lifecycle_kick(layout: WorkspaceLayout) -> int:
    running, pid = is_running(layout)
    if not running:
        raise WardenError("daemon is not running", category=ErrorCategory.LIFECYCLE)
    os.kill(pid, signal.SIGUSR1)
    return pid
