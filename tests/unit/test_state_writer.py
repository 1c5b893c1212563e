"""Tests for the heartbeat record, PID file and operator helpers."""

from __future__ import annotations

import os
import signal
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest

from warden.errors import WardenError
from warden.protocol.models import HeartbeatState
from warden.supervisor.state_writer import (
    is_running,
    read_pid,
    read_state,
    send_lifecycle_kick,
    stop_daemon,
    write_pid,
    write_state,
)
from warden.workspace.layout import WorkspaceLayout


@pytest.fixture
def layout(tmp_path: Path) -> WorkspaceLayout:
    return WorkspaceLayout(tmp_path)


def test_state_round_trip(layout: WorkspaceLayout) -> None:
    state = HeartbeatState(running=True, pid=99, last_heartbeat=datetime(2026, 3, 1, tzinfo=UTC), heartbeat_count=4)
    write_state(layout, state)
    assert read_state(layout) == state


def test_read_state_without_file(layout: WorkspaceLayout) -> None:
    assert read_state(layout) == HeartbeatState()


def test_pid_file(layout: WorkspaceLayout) -> None:
    write_pid(layout)
    assert read_pid(layout) == os.getpid()
    assert is_running(layout) == (True, os.getpid())


def test_stale_pid_file_is_removed(layout: WorkspaceLayout) -> None:
    write_pid(layout, 4242)
    with patch("warden.supervisor.state_writer.os.kill", side_effect=ProcessLookupError):
        assert is_running(layout) == (False, 0)
    assert not layout.pid_file.exists()


def test_garbage_pid_file(layout: WorkspaceLayout) -> None:
    layout.daemon_dir.mkdir(parents=True)
    layout.pid_file.write_text("not-a-pid", encoding="ascii")
    assert is_running(layout) == (False, 0)


@patch("warden.supervisor.state_writer.os.kill")
def test_stop_daemon_escalates_to_sigkill(mock_kill: MagicMock, layout: WorkspaceLayout) -> None:
    write_pid(layout, 4242)
    pid = stop_daemon(layout, grace_seconds=0, sleep=lambda _: None)
    assert pid == 4242
    assert mock_kill.call_args_list == [
        call(4242, 0),
        call(4242, signal.SIGTERM),
        call(4242, 0),
        call(4242, signal.SIGKILL),
    ]
    assert not layout.pid_file.exists()


@patch("warden.supervisor.state_writer.os.kill")
def test_stop_daemon_graceful_exit(mock_kill: MagicMock, layout: WorkspaceLayout) -> None:
    write_pid(layout, 4242)

    def kill(pid: int, sig: int) -> None:
        if sig == 0 and mock_kill.call_count > 2:
            raise ProcessLookupError

    mock_kill.side_effect = kill
    stop_daemon(layout, grace_seconds=0, sleep=lambda _: None)
    assert call(4242, signal.SIGKILL) not in mock_kill.call_args_list


def test_stop_daemon_not_running(layout: WorkspaceLayout) -> None:
    with pytest.raises(WardenError, match="not running"):
        stop_daemon(layout)


@patch("warden.supervisor.state_writer.os.kill")
def test_send_lifecycle_kick(mock_kill: MagicMock, layout: WorkspaceLayout) -> None:
    write_pid(layout, 4242)
    assert send_lifecycle_kick(layout) == 4242
    mock_kill.assert_called_with(4242, signal.SIGUSR1)


def test_kick_not_running(layout: WorkspaceLayout) -> None:
    with pytest.raises(WardenError):
        send_lifecycle_kick(layout)
