"""Global test fixtures for warden."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from tests.helpers.fakes import (
    FakeClock,
    FakeGit,
    FakeIssueStore,
    FakeMailbox,
    FakeRunner,
    FakeTmux,
    make_workspace,
)
from warden.workspace.layout import WorkspaceLayout


@pytest.fixture(autouse=True)
def _plain_structlog() -> Iterator[None]:
    """Keep structlog on its defaults so ``capture_logs`` sees every event."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A workspace root with one operational group ``grp``."""
    return make_workspace(tmp_path)


@pytest.fixture
def layout(workspace: Path) -> WorkspaceLayout:
    return WorkspaceLayout(workspace)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture
def issues() -> FakeIssueStore:
    return FakeIssueStore()


@pytest.fixture
def mail() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()
