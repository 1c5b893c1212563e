"""Tests for the session environment, startup nudges and themes."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from warden.identity import AgentIdentity, Role
from warden.session.env import agent_env, build_startup_command, export_prefix
from warden.session.nudges import NUDGE_TAG, format_startup_nudge, propulsion_nudge
from warden.session.theme import HQ_THEME, PALETTE, assign_theme, theme_for


class TestAgentEnv:
    def test_worker(self, tmp_path: Path) -> None:
        env = agent_env(AgentIdentity.worker("grp", "n1"), tmp_path, session_id_env="CLAUDE_SESSION_ID")
        assert env == {
            "ROLE_TAG": "worker",
            "ACTOR_ADDRESS": "grp/workers/n1",
            "WORKSPACE_ROOT": str(tmp_path),
            "GIT_AUTHOR_NAME": "n1",
            "GROUP": "grp",
            "AGENT_NAME": "n1",
            "NO_BACKGROUND_DAEMON": "1",
            "SESSION_ID_VAR_NAME": "CLAUDE_SESSION_ID",
        }

    def test_singleton_has_no_group(self, tmp_path: Path) -> None:
        env = agent_env(AgentIdentity.coordinator(), tmp_path)
        assert env["ROLE_TAG"] == "coordinator"
        assert env["GIT_AUTHOR_NAME"] == "coordinator"
        assert "GROUP" not in env
        assert "NO_BACKGROUND_DAEMON" not in env

    def test_observer_author_is_address(self, tmp_path: Path) -> None:
        env = agent_env(AgentIdentity.observer("grp"), tmp_path)
        assert env["GIT_AUTHOR_NAME"] == "grp/observer"
        assert "AGENT_NAME" not in env


class TestStartupCommand:
    def test_exports_sorted_and_quoted(self) -> None:
        prefix = export_prefix({"B": "two words", "A": "x"})
        assert prefix == "export A=x B='two words'"

    def test_exec_after_exports(self) -> None:
        cmd = build_startup_command({"ROLE_TAG": "worker"}, "claude --dangerously-skip-permissions")
        assert cmd == "export ROLE_TAG=worker && exec claude --dangerously-skip-permissions"

    def test_no_env(self) -> None:
        assert build_startup_command({}, "claude") == "exec claude"


class TestNudges:
    NOW = datetime(2026, 3, 1, 12, 34, 56, tzinfo=UTC)

    def test_first_nudge_format(self) -> None:
        line = format_startup_nudge("grp/workers/n1", "coordinator", "crash-restart", self.NOW)
        assert line == f"{NUDGE_TAG} grp/workers/n1 <- coordinator • 2026-03-01T12:34 • crash-restart"

    @pytest.mark.parametrize("topic", ["restart", "cold-start"])
    def test_topics_with_instruction(self, topic: str) -> None:
        line = format_startup_nudge("grp/observer", "coordinator", topic, self.NOW)
        assert line.startswith(f"{NUDGE_TAG} grp/observer <- coordinator • 2026-03-01T12:34 • {topic} ")
        assert "mail" in line

    def test_propulsion_by_role(self, tmp_path: Path) -> None:
        assert "gt hook" in propulsion_nudge(Role.WORKER, tmp_path)
        assert "gt hook" in propulsion_nudge(Role.CREW, tmp_path)
        assert "merge queue" in propulsion_nudge(Role.MERGER, tmp_path)
        assert "[session:" not in propulsion_nudge(Role.OBSERVER, tmp_path)

    def test_propulsion_session_tag(self, tmp_path: Path) -> None:
        (tmp_path / ".runtime").mkdir()
        (tmp_path / ".runtime" / "session_id").write_text("abc-123\n", encoding="utf-8")
        assert propulsion_nudge(Role.WORKER, tmp_path).endswith(" [session:abc-123]")


class TestTheme:
    def test_group_theme_is_stable(self) -> None:
        assert assign_theme("grp") == assign_theme("grp")
        assert assign_theme("grp") in PALETTE

    def test_singletons_use_hq_theme(self) -> None:
        assert theme_for(AgentIdentity.overseer()) == (HQ_THEME, "overseer")

    def test_group_title_is_address(self) -> None:
        theme, title = theme_for(AgentIdentity.crew("grp", "alice"))
        assert theme == assign_theme("grp")
        assert title == "grp/crew/alice"
