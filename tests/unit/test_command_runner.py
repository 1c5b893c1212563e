"""Tests for the subprocess runner behind every adapter."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from warden.adapters.base import CommandResult, CommandRunner
from warden.errors import (
    ExternalBinaryMissing,
    ExternalError,
    ExternalTimeout,
    NotFound,
    PermissionDenied,
)

EXEC = "warden.adapters.base.asyncio.create_subprocess_exec"


def _proc(stdout: bytes = b"", stderr: bytes = b"", returncode: int | None = 0) -> MagicMock:
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.wait = AsyncMock(return_value=returncode)
    proc.returncode = returncode
    return proc


class TestRun:
    @pytest.mark.asyncio
    @patch(EXEC)
    async def test_success(self, mock_exec: MagicMock) -> None:
        mock_exec.return_value = _proc(b'{"ok": true}\n')
        result = await CommandRunner().run(["bd", "show", "x", "--json"])
        assert result.ok
        assert result.json() == {"ok": True}
        assert mock_exec.call_args[0] == ("bd", "show", "x", "--json")

    @pytest.mark.asyncio
    @patch(EXEC)
    async def test_non_zero_exit_raises(self, mock_exec: MagicMock) -> None:
        mock_exec.return_value = _proc(b"", b"boom\n", returncode=2)
        with pytest.raises(ExternalError) as info:
            await CommandRunner().run(["gt", "mail", "delete", "m-1"])
        assert info.value.exit_code == 2
        assert info.value.stderr == "boom\n"
        assert info.value.command == ["gt", "mail", "delete", "m-1"]

    @pytest.mark.asyncio
    @patch(EXEC)
    async def test_non_zero_exit_unchecked(self, mock_exec: MagicMock) -> None:
        mock_exec.return_value = _proc(returncode=1)
        result = await CommandRunner().run(["tmux", "has-session"], check=False)
        assert not result.ok

    @pytest.mark.asyncio
    @patch(EXEC, side_effect=FileNotFoundError("tmux"))
    async def test_missing_binary(self, _mock: MagicMock) -> None:
        with pytest.raises(ExternalBinaryMissing) as info:
            await CommandRunner().run(["tmux", "ls"])
        assert info.value.binary == "tmux"

    @pytest.mark.asyncio
    @patch(EXEC, side_effect=FileNotFoundError("cwd"))
    async def test_missing_cwd(self, _mock: MagicMock, tmp_path: Path) -> None:
        with pytest.raises(NotFound):
            await CommandRunner().run(["git", "fetch"], cwd=tmp_path / "gone")

    @pytest.mark.asyncio
    @patch(EXEC, side_effect=PermissionError("nope"))
    async def test_permission_denied(self, _mock: MagicMock) -> None:
        with pytest.raises(PermissionDenied):
            await CommandRunner().run(["bd", "list"])

    @pytest.mark.asyncio
    @patch(EXEC)
    async def test_timeout_kills_child(self, mock_exec: MagicMock) -> None:
        proc = _proc(returncode=None)
        proc.communicate = AsyncMock(side_effect=asyncio.TimeoutError())
        proc.kill = MagicMock()
        mock_exec.return_value = proc
        with pytest.raises(ExternalTimeout) as info:
            await CommandRunner(timeout=0.5).run(["bd", "list"])
        assert info.value.timeout == 0.5
        proc.kill.assert_called_once()
        proc.wait.assert_awaited()

    @pytest.mark.asyncio
    @patch(EXEC)
    async def test_default_cwd_passed(self, mock_exec: MagicMock, tmp_path: Path) -> None:
        mock_exec.return_value = _proc()
        await CommandRunner(cwd=tmp_path).run(["bd", "list"])
        assert mock_exec.call_args.kwargs["cwd"] == str(tmp_path)


def test_command_result_empty_json() -> None:
    assert CommandResult(["x"], 0, "  \n", "").json() is None


class TestStreamLines:
    @pytest.mark.asyncio
    @patch(EXEC)
    async def test_yields_non_empty_lines_until_eof(self, mock_exec: MagicMock) -> None:
        proc = _proc(returncode=0)
        proc.stdout = MagicMock()
        proc.stdout.readline = AsyncMock(side_effect=[b'{"type":"a"}\n', b"\n", b'{"type":"b"}\n', b""])
        proc.stderr = None
        mock_exec.return_value = proc

        lines = [line async for line in CommandRunner().stream_lines(["bd", "activity"])]
        assert lines == ['{"type":"a"}', '{"type":"b"}']

    @pytest.mark.asyncio
    @patch(EXEC)
    async def test_non_zero_exit_after_eof(self, mock_exec: MagicMock) -> None:
        proc = _proc(returncode=3)
        proc.stdout = MagicMock()
        proc.stdout.readline = AsyncMock(side_effect=[b""])
        proc.stderr = None
        proc.wait = AsyncMock(return_value=3)
        mock_exec.return_value = proc

        with pytest.raises(ExternalError):
            async for _ in CommandRunner().stream_lines(["bd", "activity"]):
                pass

    @pytest.mark.asyncio
    @patch(EXEC)
    async def test_consumer_exit_terminates_child(self, mock_exec: MagicMock) -> None:
        proc = _proc(returncode=None)
        proc.stdout = MagicMock()
        proc.stdout.readline = AsyncMock(return_value=b'{"type":"a"}\n')
        proc.stderr = None
        proc.terminate = MagicMock()
        mock_exec.return_value = proc

        stream = CommandRunner().stream_lines(["bd", "activity"])
        assert await stream.__anext__() == '{"type":"a"}'
        await stream.aclose()
        proc.terminate.assert_called_once()
