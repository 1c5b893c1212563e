"""Crash, stall and orphan detection for named agents."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from warden.adapters.base import IssueStoreAPI, MailboxAPI, MultiplexerAPI
from warden.errors import NonOperational, RestartInProgress, WardenError
from warden.events import CRASH_DETECTED, ORPHAN_DETECTED, STALL_DETECTED, EventBus, SupervisorEvent
from warden.identity import AgentIdentity, list_named_agents, record_id, session_name
from warden.logger import get_logger
from warden.protocol.models import AgentRecord, utc_now
from warden.session.restart import RestartProtocol
from warden.supervisor.mass_death import MassDeathAlarm
from warden.workspace.groups import GroupRegistry
from warden.workspace.layout import WorkspaceLayout

log = get_logger(__name__)


class Verdict(StrEnum):
    HEALTHY = "healthy"
    CRASHED = "crashed"
    STALLED = "stalled"
    ORPHANED = "orphaned"


@dataclass(slots=True)
class Observation:
    identity: AgentIdentity
    session: str
    record: AgentRecord | None
    has_session: bool
    assistant_alive: bool


def is_stalled(updated_at: datetime | None, now: datetime, timeout_seconds: float) -> bool:
    """A timestamp in the future counts as fresh."""
    if updated_at is None:
        return False
    return (now - updated_at).total_seconds() > timeout_seconds


def classify(obs: Observation, now: datetime, stall_timeout_seconds: float) -> Verdict | None:
    """Classify one agent; ``None`` means its record could not be read."""
    if obs.record is None:
        return None
    if not obs.record.assigned_work:
        return Verdict.HEALTHY
    if not obs.has_session:
        return Verdict.CRASHED
    if obs.assistant_alive:
        if is_stalled(obs.record.updated_at, now, stall_timeout_seconds):
            return Verdict.STALLED
        return Verdict.HEALTHY
    return Verdict.ORPHANED


@dataclass(slots=True)
class DetectorReport:
    crashed: list[AgentIdentity] = field(default_factory=list)
    restarted: list[AgentIdentity] = field(default_factory=list)
    stalled: list[AgentIdentity] = field(default_factory=list)
    orphaned: list[AgentIdentity] = field(default_factory=list)
    skipped: list[AgentIdentity] = field(default_factory=list)


class Watchdog:
    """Runs the three detectors over every named agent of every group.

    All agents are observed before any action is taken, then crashes are
    handled, then stalls, then orphans.
    """

    def __init__(
        self,
        *,
        layout: WorkspaceLayout,
        groups: GroupRegistry,
        issues: IssueStoreAPI,
        tmux: MultiplexerAPI,
        mail: MailboxAPI,
        restart: RestartProtocol,
        alarm: MassDeathAlarm,
        stall_timeout_seconds: float = 1800.0,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.layout = layout
        self.groups = groups
        self.issues = issues
        self.tmux = tmux
        self.mail = mail
        self.restart = restart
        self.alarm = alarm
        self.stall_timeout_seconds = stall_timeout_seconds
        self.bus = bus
        self.clock = clock

    async def run(self) -> DetectorReport:
        report = DetectorReport()
        listed = await self._list_agent_records()
        observations: list[Observation] = []
        for group in self.groups.known_groups():
            for identity in list_named_agents(self.layout.root, group):
                obs = await self.observe(identity, listed)
                if obs is None:
                    report.skipped.append(identity)
                    continue
                observations.append(obs)

        now = self.clock()
        verdicts = [(obs, classify(obs, now, self.stall_timeout_seconds)) for obs in observations]
        for obs, verdict in verdicts:
            if verdict is None:
                report.skipped.append(obs.identity)
            elif verdict is Verdict.CRASHED:
                report.crashed.append(obs.identity)
                if await self.handle_crash(obs):
                    report.restarted.append(obs.identity)
        for obs, verdict in verdicts:
            if verdict is Verdict.STALLED:
                report.stalled.append(obs.identity)
                await self.handle_stall(obs, now)
        for obs, verdict in verdicts:
            if verdict is Verdict.ORPHANED:
                report.orphaned.append(obs.identity)
                await self.handle_orphan(obs)
        return report

    async def observe(
        self, identity: AgentIdentity, listed: dict[str, AgentRecord] | None = None
    ) -> Observation | None:
        prefixes = self.groups.prefixes(identity)
        name = session_name(identity, prefixes)
        rid = record_id(identity, prefixes)
        try:
            if listed and rid in listed:
                record, exists = listed[rid], True
            else:
                record, exists = await self.issues.show(rid)
            if not exists:
                return Observation(identity, name, None, False, False)
            has_session = await self.tmux.has_session(name)
            alive = await self.tmux.is_assistant_alive(name) if has_session else False
        except WardenError as exc:
            log.warning("observe_failed", identity=identity.address, session=name, error=str(exc))
            return None
        return Observation(identity, name, record, has_session, alive)

    async def _list_agent_records(self) -> dict[str, AgentRecord]:
        try:
            records = await self.issues.list_by_type("agent")
        except WardenError as exc:
            log.warning("agent_list_failed", error=str(exc))
            return {}
        return {r.record_id: r for r in records}

    async def handle_crash(self, obs: Observation) -> bool:
        record = obs.record
        if record is None:
            return False
        log.warning(
            "crash_detected",
            identity=obs.identity.address,
            session=obs.session,
            assigned_work=record.assigned_work,
        )
        self.alarm.record(obs.session)
        self._emit(CRASH_DETECTED, obs, {"assigned_work": record.assigned_work})
        try:
            await self.restart.restart(obs.identity, topic="crash-restart")
        except RestartInProgress as exc:
            log.info("crash_restart_skipped", identity=obs.identity.address, reason=str(exc))
            return False
        except NonOperational as exc:
            log.info("crash_restart_refused", identity=obs.identity.address, reason=str(exc))
            await self._notify_crash(obs, record, exc)
            return False
        except WardenError as exc:
            log.warning("crash_restart_failed", identity=obs.identity.address, error=str(exc))
            await self._notify_crash(obs, record, exc)
            return False
        return True

    async def _notify_crash(self, obs: Observation, record: AgentRecord, exc: WardenError) -> None:
        await self.notify_observer(
            obs.identity,
            f"CRASHED_WORKER: {obs.identity.group}/{obs.identity.name} restart failed",
            f"Agent {obs.identity.name} crashed and automatic restart failed.\n\n"
            f"assigned_work: {record.assigned_work}\n"
            f"restart_error: {exc}\n\n"
            "Manual intervention may be required.",
        )

    async def handle_stall(self, obs: Observation, now: datetime) -> None:
        if obs.record is None or obs.record.updated_at is None:
            return
        minutes = int((now - obs.record.updated_at).total_seconds() // 60)
        log.warning(
            "stall_detected",
            identity=obs.identity.address,
            record=obs.record.record_id,
            assigned_work=obs.record.assigned_work,
            minutes=minutes,
        )
        self._emit(STALL_DETECTED, obs, {"assigned_work": obs.record.assigned_work, "minutes": minutes})
        await self.notify_observer(
            obs.identity,
            f"STALLED_AGENT: {obs.record.record_id} stuck for {minutes}m",
            f"Agent {obs.record.record_id} has work assigned but is not progressing.\n\n"
            f"assigned_work: {obs.record.assigned_work}\n"
            f"stuck_duration: {minutes}m\n\n"
            "Action needed: check whether the agent is responsive; restart it if stuck.",
        )

    async def handle_orphan(self, obs: Observation) -> None:
        if obs.record is None:
            return
        log.warning(
            "orphan_detected",
            identity=obs.identity.address,
            record=obs.record.record_id,
            assigned_work=obs.record.assigned_work,
            cleanup_state=obs.record.cleanup_state,
        )
        self._emit(
            ORPHAN_DETECTED,
            obs,
            {"assigned_work": obs.record.assigned_work, "cleanup_state": obs.record.cleanup_state},
        )
        await self.notify_observer(
            obs.identity,
            f"ORPHANED_WORK: {obs.record.record_id} has assigned work but is dead",
            f"Agent {obs.record.record_id} is dead but has work assigned.\n\n"
            f"assigned_work: {obs.record.assigned_work}\n"
            f"cleanup_state: {obs.record.cleanup_state}\n\n"
            "Action needed: restart the agent or reassign the work.",
        )

    async def notify_observer(self, identity: AgentIdentity, subject: str, body: str) -> None:
        if identity.group is None:
            return
        observer = AgentIdentity.observer(identity.group)
        try:
            await self.mail.send(observer.address, subject, body)
        except WardenError as exc:
            log.warning("observer_notify_failed", observer=observer.address, subject=subject, error=str(exc))
            return
        log.info("observer_notified", observer=observer.address, subject=subject)

    def _emit(self, event_type: str, obs: Observation, payload: dict) -> None:
        if self.bus is None:
            return
        self.bus.emit(
            SupervisorEvent(
                type=event_type,
                actor=obs.identity.address,
                payload={"session": obs.session, **payload},
                timestamp=self.clock(),
            )
        )
