"""Tests for workspace paths and group settings."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tests.helpers.fakes import make_workspace
from warden.config.schema import SupervisionConfig
from warden.identity import AgentIdentity
from warden.workspace.groups import GroupRegistry, parse_group_settings
from warden.workspace.layout import ROOT_ENV_VAR, WorkspaceLayout, resolve_root


def _registry(root: Path, **supervision: object) -> GroupRegistry:
    return GroupRegistry(WorkspaceLayout(root), SupervisionConfig(**supervision))


class TestResolveRoot:
    def test_argument_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ROOT_ENV_VAR, "/elsewhere")
        assert resolve_root(tmp_path) == tmp_path.resolve()

    def test_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ROOT_ENV_VAR, str(tmp_path))
        assert resolve_root(None) == tmp_path.resolve()

    def test_cwd_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(ROOT_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        assert resolve_root() == tmp_path.resolve()


def test_layout_paths(tmp_path: Path) -> None:
    layout = WorkspaceLayout(tmp_path)
    assert layout.lock_file == tmp_path / "daemon" / "daemon.lock"
    assert layout.pid_file == tmp_path / "daemon" / "daemon.pid"
    assert layout.log_file == tmp_path / "daemon" / "daemon.log"
    assert layout.state_file == tmp_path / "daemon" / "state.json"
    assert layout.group_registry == tmp_path / "overseer" / "groups.json"
    assert layout.group_config("grp") == tmp_path / "grp" / "config.json"


class TestGroupSettings:
    def test_defaults(self) -> None:
        s = parse_group_settings("grp", {})
        assert s.default_branch == "main"
        assert s.session_prefix == ""
        assert s.record_prefix == "gt"
        assert s.auto_restart is True
        assert s.auto_restart_blocked is False

    def test_null_auto_restart_blocks(self) -> None:
        s = parse_group_settings("grp", {"auto_restart": None})
        assert s.auto_restart_blocked is True

    def test_false_auto_restart_disables(self) -> None:
        s = parse_group_settings("grp", {"auto_restart": False})
        assert s.auto_restart is False
        assert s.auto_restart_blocked is False


class TestGroupRegistry:
    def test_known_groups_sorted(self, tmp_path: Path) -> None:
        make_workspace(tmp_path, {"zeta": {}, "alpha": {}})
        assert _registry(tmp_path).known_groups() == ["alpha", "zeta"]

    def test_no_registry(self, tmp_path: Path) -> None:
        assert _registry(tmp_path).known_groups() == []

    def test_prefixes_resolved_from_group_config(self, tmp_path: Path) -> None:
        make_workspace(tmp_path, {"grp": {"session_prefix": "gt-", "record_prefix": "bd"}})
        registry = _registry(tmp_path, hq_prefix="top-")
        p = registry.prefixes(AgentIdentity.worker("grp", "n1"))
        assert (p.hq, p.session, p.record) == ("top-", "gt-", "bd")
        singleton = registry.prefixes(AgentIdentity.coordinator())
        assert (singleton.hq, singleton.session) == ("top-", "")

    @pytest.mark.parametrize(
        ("settings", "reason"),
        [
            ({"status": "parked"}, "group is parked"),
            ({"status": "DOCKED"}, "group is docked"),
            ({"auto_restart": None}, "auto_restart is blocked"),
            ({"auto_restart": False}, "auto_restart is disabled"),
        ],
    )
    def test_non_operational(self, tmp_path: Path, settings: dict, reason: str) -> None:
        make_workspace(tmp_path, {"grp": settings})
        assert _registry(tmp_path).operational("grp") == (False, reason)

    def test_operational(self, tmp_path: Path) -> None:
        make_workspace(tmp_path, {"grp": {"status": "operational", "auto_restart": True}})
        assert _registry(tmp_path).operational("grp") == (True, "")

    def test_missing_config_is_operational_with_warning(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        registry = _registry(tmp_path)
        with caplog.at_level("WARNING"):
            assert registry.operational("ghost") == (True, "")
        assert "parked state may have been lost" in caplog.text

    def test_settings_are_read_fresh(self, tmp_path: Path) -> None:
        make_workspace(tmp_path, {"grp": {}})
        registry = _registry(tmp_path)
        assert registry.operational("grp")[0] is True
        (tmp_path / "grp" / "config.json").write_text(json.dumps({"status": "parked"}), encoding="utf-8")
        assert registry.operational("grp")[0] is False
