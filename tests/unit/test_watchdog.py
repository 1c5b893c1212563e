"""Tests for crash, stall and orphan detection."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from tests.helpers.fakes import (
    FakeClock,
    FakeGit,
    FakeIssueStore,
    FakeMailbox,
    FakeTmux,
    fast_config,
    make_workspace,
)
from warden.errors import ExternalError
from warden.events import CRASH_DETECTED, ORPHAN_DETECTED, STALL_DETECTED, EventBus
from warden.identity import AgentIdentity
from warden.protocol.models import AgentRecord
from warden.session.restart import RestartProtocol
from warden.supervisor.mass_death import MassDeathAlarm
from warden.supervisor.watchdog import Observation, Verdict, Watchdog, classify, is_stalled
from warden.workspace.groups import GroupRegistry
from warden.workspace.layout import WorkspaceLayout

N1 = AgentIdentity.worker("grp", "n1")
RID = "gt-grp-worker-n1"


def _obs(record: AgentRecord | None, has_session: bool, alive: bool) -> Observation:
    return Observation(N1, "grp-n1", record, has_session, alive)


class TestClassify:
    def test_no_record_is_skipped(self, clock: FakeClock) -> None:
        assert classify(_obs(None, False, False), clock(), 1800) is None

    def test_idle_agent_is_healthy_without_session(self, clock: FakeClock) -> None:
        assert classify(_obs(AgentRecord(RID), False, False), clock(), 1800) is Verdict.HEALTHY

    def test_crash(self, clock: FakeClock) -> None:
        record = AgentRecord(RID, assigned_work="W-1")
        assert classify(_obs(record, False, False), clock(), 1800) is Verdict.CRASHED

    def test_orphan(self, clock: FakeClock) -> None:
        record = AgentRecord(RID, assigned_work="W-1")
        assert classify(_obs(record, True, False), clock(), 1800) is Verdict.ORPHANED

    def test_stall(self, clock: FakeClock) -> None:
        record = AgentRecord(RID, assigned_work="W-1", updated_at=clock() - timedelta(hours=1))
        assert classify(_obs(record, True, True), clock(), 1800) is Verdict.STALLED

    def test_recent_activity_is_healthy(self, clock: FakeClock) -> None:
        record = AgentRecord(RID, assigned_work="W-1", updated_at=clock() - timedelta(minutes=5))
        assert classify(_obs(record, True, True), clock(), 1800) is Verdict.HEALTHY

    def test_future_timestamp_is_not_stalled(self, clock: FakeClock) -> None:
        assert not is_stalled(clock() + timedelta(hours=3), clock(), 1800)
        assert not is_stalled(None, clock(), 1800)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def alarm(bus: EventBus, clock: FakeClock) -> MassDeathAlarm:
    return MassDeathAlarm(window_seconds=30, threshold=3, bus=bus, clock=clock)


@pytest.fixture
def watchdog(
    tmp_path: Path,
    issues: FakeIssueStore,
    tmux: FakeTmux,
    mail: FakeMailbox,
    git: FakeGit,
    alarm: MassDeathAlarm,
    bus: EventBus,
    clock: FakeClock,
) -> Watchdog:
    make_workspace(tmp_path, workers={"grp": ["n1"]})
    layout = WorkspaceLayout(tmp_path)
    config = fast_config()
    groups = GroupRegistry(layout, config.supervision)
    restart = RestartProtocol(layout=layout, groups=groups, tmux=tmux, git=git, config=config, clock=clock)
    return Watchdog(
        layout=layout,
        groups=groups,
        issues=issues,
        tmux=tmux,
        mail=mail,
        restart=restart,
        alarm=alarm,
        stall_timeout_seconds=1800,
        bus=bus,
        clock=clock,
    )


class TestWatchdog:
    @pytest.mark.asyncio
    async def test_crash_is_restarted_and_recorded(
        self, watchdog: Watchdog, issues: FakeIssueStore, tmux: FakeTmux, alarm: MassDeathAlarm, bus: EventBus
    ) -> None:
        issues.add_agent(RID, assigned_work="W-123")
        report = await watchdog.run()
        assert report.crashed == [N1]
        assert report.restarted == [N1]
        assert "grp-n1" in tmux.sessions
        assert [d.session_name for d in alarm.deaths] == ["grp-n1"]
        assert [e.actor for e in bus.of_type(CRASH_DETECTED)] == ["grp/workers/n1"]

    @pytest.mark.asyncio
    async def test_crash_in_raiders_layout_is_restarted(
        self, watchdog: Watchdog, issues: FakeIssueStore, tmux: FakeTmux, alarm: MassDeathAlarm, tmp_path: Path
    ) -> None:
        (tmp_path / "grp" / "workers" / "n1").rmdir()
        (tmp_path / "grp" / "raiders" / "n1").mkdir(parents=True)
        issues.add_agent(RID, assigned_work="W-123")
        report = await watchdog.run()
        assert report.crashed == [N1]
        assert report.restarted == [N1]
        assert [d.session_name for d in alarm.deaths] == ["grp-n1"]
        assert tmux.sessions["grp-n1"].cwd == str(tmp_path / "grp" / "raiders" / "n1")

    @pytest.mark.asyncio
    async def test_idle_agent_is_left_alone(
        self, watchdog: Watchdog, issues: FakeIssueStore, tmux: FakeTmux, mail: FakeMailbox
    ) -> None:
        issues.add_agent(RID)
        report = await watchdog.run()
        assert report.crashed == [] and report.orphaned == []
        assert tmux.sessions == {}
        assert mail.sent == []

    @pytest.mark.asyncio
    async def test_missing_record_is_skipped(
        self, watchdog: Watchdog, tmux: FakeTmux, issues: FakeIssueStore
    ) -> None:
        report = await watchdog.run()
        assert report.skipped == [N1]
        assert issues.show_calls == [RID]
        assert tmux.sessions == {}

    @pytest.mark.asyncio
    async def test_stall_notifies_observer(
        self, watchdog: Watchdog, issues: FakeIssueStore, tmux: FakeTmux, mail: FakeMailbox, clock: FakeClock, bus: EventBus
    ) -> None:
        issues.add_agent(RID, assigned_work="W-1", updated_at=clock() - timedelta(minutes=120))
        tmux.add_session("grp-n1", alive=True)
        report = await watchdog.run()
        assert report.stalled == [N1]
        assert len(mail.sent) == 1
        assert mail.sent[0].to == "grp/observer"
        assert mail.sent[0].subject == f"STALLED_AGENT: {RID} stuck for 120m"
        assert "assigned_work: W-1" in mail.sent[0].body
        assert bus.of_type(STALL_DETECTED)[0].payload["minutes"] == 120

    @pytest.mark.asyncio
    async def test_orphan_notifies_observer_with_cleanup_state(
        self, watchdog: Watchdog, issues: FakeIssueStore, tmux: FakeTmux, mail: FakeMailbox, bus: EventBus
    ) -> None:
        issues.add_agent(RID, assigned_work="W-1", cleanup_state="has_unpushed")
        tmux.add_session("grp-n1", alive=False)
        report = await watchdog.run()
        assert report.orphaned == [N1]
        assert report.restarted == []
        assert mail.sent[0].subject == f"ORPHANED_WORK: {RID} has assigned work but is dead"
        assert "cleanup_state: has_unpushed" in mail.sent[0].body
        assert len(bus.of_type(ORPHAN_DETECTED)) == 1

    @pytest.mark.asyncio
    async def test_failed_crash_restart_notifies_observer(
        self, watchdog: Watchdog, issues: FakeIssueStore, tmux: FakeTmux, mail: FakeMailbox
    ) -> None:
        issues.add_agent(RID, assigned_work="W-9")
        tmux.failures["new_session"] = ExternalError(["tmux", "new-session"], "no server", 1)
        report = await watchdog.run()
        assert report.crashed == [N1]
        assert report.restarted == []
        assert mail.sent[0].subject == "CRASHED_WORKER: grp/n1 restart failed"
        assert "restart_error:" in mail.sent[0].body

    @pytest.mark.asyncio
    async def test_parked_group_crash_notifies_observer(
        self,
        watchdog: Watchdog,
        issues: FakeIssueStore,
        tmux: FakeTmux,
        mail: FakeMailbox,
        alarm: MassDeathAlarm,
        tmp_path: Path,
    ) -> None:
        (tmp_path / "grp" / "config.json").write_text(json.dumps({"status": "parked"}), encoding="utf-8")
        issues.add_agent(RID, assigned_work="W-1")
        report = await watchdog.run()
        assert report.crashed == [N1]
        assert report.restarted == []
        assert tmux.sessions == {}
        assert len(alarm.deaths) == 1
        assert [m.to for m in mail.sent] == ["grp/observer"]
        assert mail.sent[0].subject == "CRASHED_WORKER: grp/n1 restart failed"
        assert "restart_error: grp: group is parked" in mail.sent[0].body

    @pytest.mark.asyncio
    async def test_list_failure_falls_back_to_show(
        self, watchdog: Watchdog, issues: FakeIssueStore, tmux: FakeTmux
    ) -> None:
        issues.add_agent(RID, assigned_work="W-1")
        issues.list_error = ExternalError(["bd", "list"], "timeout", 1)
        tmux.add_session("grp-n1", alive=True)
        report = await watchdog.run()
        assert issues.show_calls == [RID]
        assert report.crashed == [] and report.stalled == []

    @pytest.mark.asyncio
    async def test_observe_failure_skips_agent(
        self, watchdog: Watchdog, issues: FakeIssueStore, tmux: FakeTmux
    ) -> None:
        issues.add_agent(RID, assigned_work="W-1")
        tmux.failures["has_session"] = ExternalError(["tmux"], "no server", 1)
        report = await watchdog.run()
        assert report.skipped == [N1]
        assert report.crashed == []

    @pytest.mark.asyncio
    async def test_handlers_ignore_observation_without_record(
        self, watchdog: Watchdog, mail: FakeMailbox, alarm: MassDeathAlarm, clock: FakeClock
    ) -> None:
        obs = _obs(None, False, False)
        assert await watchdog.handle_crash(obs) is False
        await watchdog.handle_stall(obs, clock())
        await watchdog.handle_orphan(obs)
        assert mail.sent == []
        assert alarm.deaths == []
