"""Session restart protocol.

Given an identity, bring up a clean multiplexer session running the
assistant, then deliver the two startup nudges. Every step after the
operational check is safe to repeat: a session whose assistant is already
running is not relaunched, it only has its environment, theme and nudges
reapplied.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from warden.adapters.base import GitAPI, MultiplexerAPI
from warden.adapters.git import is_git_worktree
from warden.config.schema import DaemonConfig
from warden.errors import (
    ExternalAdapterError,
    NonOperational,
    NotFound,
    RestartInProgress,
    StaleCodeRefused,
)
from warden.events import SESSION_RESTARTED, EventBus, SupervisorEvent
from warden.identity import (
    PERSISTENT_CLONE_ROLES,
    AgentIdentity,
    Prefixes,
    record_id,
    session_name,
    work_dir,
)
from warden.logger import get_logger
from warden.protocol.models import utc_now
from warden.session.env import agent_env, build_startup_command
from warden.session.nudges import format_startup_nudge, propulsion_nudge
from warden.session.theme import theme_for
from warden.workspace.groups import GroupRegistry
from warden.workspace.layout import WorkspaceLayout

log = get_logger(__name__)


@dataclass(slots=True)
class SessionPlan:
    identity: AgentIdentity
    session: str
    work_dir: Path
    record_id: str
    prefixes: Prefixes
    env: dict[str, str] = field(default_factory=dict)

    @property
    def role_tag(self) -> str:
        return self.identity.role.value


@dataclass(slots=True)
class RestartOutcome:
    identity: AgentIdentity
    session: str
    created: bool
    nudges_sent: int = 0


class RestartProtocol:
    """Rebuilds agent sessions; at most one run per identity at a time."""

    def __init__(
        self,
        *,
        layout: WorkspaceLayout,
        groups: GroupRegistry,
        tmux: MultiplexerAPI,
        git: GitAPI,
        config: DaemonConfig,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        sender: str = "coordinator",
    ) -> None:
        self.layout = layout
        self.groups = groups
        self.tmux = tmux
        self.git = git
        self.config = config
        self.bus = bus
        self.clock = clock
        self.sender = sender
        self._in_flight: set[AgentIdentity] = set()

    def plan(self, identity: AgentIdentity) -> SessionPlan:
        prefixes = self.groups.prefixes(identity)
        return SessionPlan(
            identity=identity,
            session=session_name(identity, prefixes),
            work_dir=work_dir(identity, self.layout.root),
            record_id=record_id(identity, prefixes),
            prefixes=prefixes,
            env=agent_env(
                identity,
                self.layout.root,
                session_id_env=self.config.commands.session_id_env,
            ),
        )

    def check_operational(self, identity: AgentIdentity) -> None:
        if identity.group is None:
            return
        operational, reason = self.groups.operational(identity.group)
        if not operational:
            raise NonOperational(identity.group, reason)

    def in_flight(self, identity: AgentIdentity) -> bool:
        return identity in self._in_flight

    async def restart(self, identity: AgentIdentity, *, topic: str = "restart") -> RestartOutcome:
        if identity in self._in_flight:
            raise RestartInProgress(identity.address)
        self._in_flight.add(identity)
        try:
            return await self._restart(identity, topic)
        finally:
            self._in_flight.discard(identity)

    async def _restart(self, identity: AgentIdentity, topic: str) -> RestartOutcome:
        plan = self.plan(identity)
        self.check_operational(identity)
        if not plan.work_dir.is_dir():
            raise NotFound(str(plan.work_dir))

        if identity.role in PERSISTENT_CLONE_ROLES and is_git_worktree(plan.work_dir):
            await self.presync(plan)

        created = await self.tmux.ensure_session_fresh(plan.session, plan.work_dir)

        for key, value in plan.env.items():
            try:
                await self.tmux.set_env(plan.session, key, value)
            except ExternalAdapterError as exc:
                log.warning("set_env_failed", session=plan.session, key=key, error=str(exc))

        theme, title = theme_for(identity)
        try:
            await self.tmux.apply_theme(plan.session, theme, title)
        except ExternalAdapterError as exc:
            log.debug("theme_failed", session=plan.session, error=str(exc))

        timing = self.config.timing
        if created:
            await self.tmux.wait_for_shell_ready(plan.session, timing.shell_ready_timeout_seconds)
            command = build_startup_command(plan.env, self.config.commands.assistant)
            await self.tmux.send_keys(plan.session, command)
            started = await self.tmux.wait_for_assistant(
                plan.session, timing.assistant_start_timeout_seconds
            )
            if not started:
                log.warning("assistant_start_timeout", session=plan.session)
            try:
                await self.tmux.accept_permissions_dialog(plan.session)
            except ExternalAdapterError as exc:
                log.debug("permissions_dialog_failed", session=plan.session, error=str(exc))
            await asyncio.sleep(timing.settle_delay_seconds)

        sent = await self._nudge(plan, topic)
        log.info(
            "session_restarted",
            identity=identity.address,
            session=plan.session,
            created=created,
            topic=topic,
        )
        if self.bus is not None:
            self.bus.emit(
                SupervisorEvent(
                    type=SESSION_RESTARTED,
                    actor=identity.address,
                    payload={"session": plan.session, "created": created, "topic": topic},
                    timestamp=self.clock(),
                )
            )
        return RestartOutcome(identity=identity, session=plan.session, created=created, nudges_sent=sent)

    async def presync(self, plan: SessionPlan) -> None:
        """Fetch and rebase the agent's clone before it starts.

        A failed fetch aborts the restart; a failed rebase is left for the
        agent to resolve.
        """
        remote = self.config.supervision.remote
        try:
            await self.git.fetch(plan.work_dir, remote)
        except ExternalAdapterError as exc:
            stderr = getattr(exc, "stderr", "") or str(exc)
            log.error("git_fetch_failed", work_dir=str(plan.work_dir), error=stderr.strip())
            raise StaleCodeRefused(str(plan.work_dir), stderr.strip()) from exc

        branch = "main"
        if plan.identity.group is not None:
            branch = self.groups.settings(plan.identity.group).default_branch
        try:
            await self.git.pull_rebase(plan.work_dir, remote, branch)
        except ExternalAdapterError as exc:
            log.warning(
                "git_pull_failed",
                work_dir=str(plan.work_dir),
                branch=branch,
                error=str(exc),
            )

    async def _nudge(self, plan: SessionPlan, topic: str) -> int:
        sent = 0
        first = format_startup_nudge(plan.identity.address, self.sender, topic, self.clock())
        try:
            await self.tmux.signal(plan.session, first)
            sent += 1
        except ExternalAdapterError as exc:
            log.warning("startup_nudge_failed", session=plan.session, error=str(exc))

        await asyncio.sleep(self.config.timing.nudge_gap_seconds)

        second = propulsion_nudge(plan.identity.role, plan.work_dir)
        try:
            await self.tmux.signal(plan.session, second)
            sent += 1
        except ExternalAdapterError as exc:
            log.warning("propulsion_nudge_failed", session=plan.session, error=str(exc))
        return sent
