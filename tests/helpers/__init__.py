"""Shared test helpers for the warden test suite."""

from __future__ import annotations

from tests.helpers.fakes import (
    T0,
    FakeClock,
    FakeGit,
    FakeIssueStore,
    FakeMailbox,
    FakeRunner,
    FakeTmux,
    fast_config,
    make_workspace,
    result,
)

__all__ = [
    "T0",
    "FakeClock",
    "FakeGit",
    "FakeIssueStore",
    "FakeMailbox",
    "FakeRunner",
    "FakeTmux",
    "fast_config",
    "make_workspace",
    "result",
]
