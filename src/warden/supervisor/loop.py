"""The supervisor process: lock, heartbeat loop, signals and shutdown."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
from collections.abc import Awaitable, Callable, Coroutine
from datetime import datetime
from typing import Any

from warden.adapters.base import CommandRunner, GitAPI, IssueStoreAPI, MailboxAPI, MultiplexerAPI
from warden.adapters.git import Git
from warden.adapters.issues import IssueStore
from warden.adapters.mail import Mailbox
from warden.adapters.tmux import Tmux
from warden.config.schema import DaemonConfig
from warden.errors import (
    AlreadyRunning,
    ErrorCategory,
    NonOperational,
    RestartInProgress,
    WardenError,
)
from warden.events import EventBus
from warden.identity import AgentIdentity, Role, parse_address, session_name
from warden.logger import get_logger
from warden.protocol.locks import ExclusiveLock
from warden.protocol.models import HeartbeatState, utc_now
from warden.session.restart import RestartProtocol
from warden.supervisor.activity import ActivityWatcher
from warden.supervisor.lifecycle import LifecycleProcessor
from warden.supervisor.mass_death import MassDeathAlarm
from warden.supervisor.state_writer import remove_pid, write_pid, write_state
from warden.supervisor.watchdog import Watchdog
from warden.workspace.groups import GroupRegistry
from warden.workspace.layout import WorkspaceLayout

log = get_logger(__name__)

LIFECYCLE_SIGNAL = signal.SIGUSR1
STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class Supervisor:
    """Keeps the agent fleet alive.

    Each heartbeat ensures the configured singleton and per-group agents are
    running, drains the lifecycle mailbox and runs the detectors, in that
    order. The activity watcher runs alongside as its own task. A lifecycle
    kick runs only the lifecycle processor and does not move the next
    heartbeat.
    """

    def __init__(
        self,
        layout: WorkspaceLayout,
        config: DaemonConfig,
        *,
        issues: IssueStoreAPI,
        mail: MailboxAPI,
        tmux: MultiplexerAPI,
        git: GitAPI,
        runner: Any,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.layout = layout
        self.config = config
        self.issues = issues
        self.mail = mail
        self.tmux = tmux
        self.git = git
        self.clock = clock
        self.bus = bus if bus is not None else EventBus(layout.events_file)
        self.groups = GroupRegistry(layout, config.supervision)

        timing = config.timing
        self.lifecycle_identity = parse_address(config.supervision.lifecycle_identity)
        self.alarm = MassDeathAlarm(
            window_seconds=timing.mass_death_window_seconds,
            threshold=timing.mass_death_threshold,
            bus=self.bus,
            clock=clock,
        )
        self.restart = RestartProtocol(
            layout=layout,
            groups=self.groups,
            tmux=tmux,
            git=git,
            config=config,
            bus=self.bus,
            clock=clock,
            sender=self.lifecycle_identity.address,
        )
        self.lifecycle = LifecycleProcessor(
            identity=self.lifecycle_identity,
            mail=mail,
            tmux=tmux,
            restart=self.restart,
            max_age_seconds=timing.lifecycle_max_age_seconds,
            settle_delay_seconds=timing.settle_delay_seconds,
            bus=self.bus,
            clock=clock,
        )
        self.watchdog = Watchdog(
            layout=layout,
            groups=self.groups,
            issues=issues,
            tmux=tmux,
            mail=mail,
            restart=self.restart,
            alarm=self.alarm,
            stall_timeout_seconds=timing.stall_timeout_seconds,
            bus=self.bus,
            clock=clock,
        )
        self.watcher = ActivityWatcher(
            issues=issues,
            runner=runner,
            completion_command=config.commands.completion_check,
            root=layout.root,
            retry_seconds=timing.watcher_retry_seconds,
        )

        self.state = HeartbeatState()
        self._lock = ExclusiveLock(layout.lock_file)
        self._stop = asyncio.Event()
        self._kick = asyncio.Event()
        self._watcher_task: asyncio.Task[None] | None = None
        self._signals_installed: list[signal.Signals] = []

    # -- startup ----------------------------------------------------------

    def start(self) -> None:
        """Take the lock, write the PID file and the initial heartbeat record.

        Raises ``AlreadyRunning`` before touching any file another daemon owns.
        """
        self.layout.daemon_dir.mkdir(parents=True, exist_ok=True)
        if not self._lock.try_acquire():
            log.error("already_running", lock=str(self.layout.lock_file))
            raise AlreadyRunning(str(self.layout.lock_file))
        try:
            write_pid(self.layout)
        except OSError as exc:
            self._lock.release()
            raise WardenError(
                f"writing PID file {self.layout.pid_file}: {exc}",
                category=ErrorCategory.LIFECYCLE,
            ) from exc

        now = self.clock()
        self.state = HeartbeatState(running=True, pid=os.getpid(), started_at=now)
        self._persist_state()
        log.info("daemon_started", pid=self.state.pid, root=str(self.layout.root))

    @property
    def lock_held(self) -> bool:
        return self._lock.held

    def request_stop(self) -> None:
        self._stop.set()

    def kick(self) -> None:
        self._kick.set()

    def _install_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in STOP_SIGNALS:
            loop.add_signal_handler(sig, self.request_stop)
            self._signals_installed.append(sig)
        loop.add_signal_handler(LIFECYCLE_SIGNAL, self.kick)
        self._signals_installed.append(LIFECYCLE_SIGNAL)

    def _remove_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()

    # -- main loop --------------------------------------------------------

    async def run(self, *, install_signals: bool = True) -> None:
        self.start()
        try:
            if install_signals:
                self._install_signals()
            self._watcher_task = asyncio.create_task(self.watcher.run(), name="activity-watcher")
            if await self._until_stopped(self.heartbeat(), "heartbeat"):
                await self._serve()
        finally:
            await self.shutdown()

    async def _serve(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.timing.heartbeat_interval_seconds
        deadline = loop.time() + interval
        log.info("daemon_running", heartbeat_interval=interval)
        while not self._stop.is_set():
            stop_wait = asyncio.create_task(self._stop.wait())
            kick_wait = asyncio.create_task(self._kick.wait())
            try:
                await asyncio.wait(
                    {stop_wait, kick_wait},
                    timeout=max(0.0, deadline - loop.time()),
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                stop_wait.cancel()
                kick_wait.cancel()

            if self._stop.is_set():
                log.info("stop_requested")
                return
            if self._kick.is_set():
                self._kick.clear()
                log.info("lifecycle_kick")
                await self._until_stopped(self._guard("lifecycle", self.lifecycle.process), "lifecycle_kick")
                continue
            await self._until_stopped(self.heartbeat(), "heartbeat")
            deadline = loop.time() + interval

    async def _until_stopped(self, work: Coroutine[Any, Any, Any], name: str) -> bool:
        """Run *work* until it finishes or a stop is requested.

        A stop cancels the work, which unwinds every wait inside it. Returns
        ``False`` when the work was cancelled.
        """
        task = asyncio.create_task(work, name=name)
        stop_wait = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({task, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            stop_wait.cancel()
        if task.done():
            task.result()
            return True
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        log.info("stop_interrupted", step=name)
        return False

    async def heartbeat(self) -> HeartbeatState:
        count = self.state.heartbeat_count + 1
        log.info("heartbeat_started", heartbeat=count)
        await self._guard("ensure_agents", self.ensure_agents)
        await self._guard("lifecycle", self.lifecycle.process)
        await self._guard("detectors", self.watchdog.run)

        self.state.last_heartbeat = self.clock()
        self.state.heartbeat_count = count
        self._persist_state()
        log.info("heartbeat_complete", heartbeat=count)
        return self.state

    async def _guard(self, step: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await fn()
        except Exception as exc:
            log.error("heartbeat_step_failed", step=step, error=f"{type(exc).__name__}: {exc}")
            return None

    # -- agents -----------------------------------------------------------

    def ensured_identities(self) -> list[AgentIdentity]:
        roles: list[Role] = []
        for raw in self.config.supervision.ensure_roles:
            try:
                roles.append(Role(raw))
            except ValueError:
                log.warning("unknown_ensure_role", role=raw)
        identities: list[AgentIdentity] = []
        if Role.OVERSEER in roles:
            identities.append(AgentIdentity.overseer())
        if Role.COORDINATOR in roles:
            identities.append(AgentIdentity.coordinator())
        for group in self.groups.known_groups():
            if Role.OBSERVER in roles:
                identities.append(AgentIdentity.observer(group))
            if Role.MERGER in roles:
                identities.append(AgentIdentity.merger(group))
        return identities

    async def ensure_agents(self) -> None:
        for identity in self.ensured_identities():
            await self.ensure_agent(identity)

    async def ensure_agent(self, identity: AgentIdentity) -> bool:
        """Start the agent unless its assistant is already running."""
        name = session_name(identity, self.groups.prefixes(identity))
        try:
            if await self.tmux.is_assistant_alive(name):
                return False
            await self.restart.restart(identity, topic="cold-start")
        except (NonOperational, RestartInProgress) as exc:
            log.info("ensure_skipped", identity=identity.address, reason=str(exc))
            return False
        except WardenError as exc:
            log.warning("ensure_failed", identity=identity.address, session=name, error=str(exc))
            return False
        return True

    # -- shutdown ---------------------------------------------------------

    def _persist_state(self) -> None:
        try:
            write_state(self.layout, self.state)
        except OSError as exc:
            log.warning("state_write_failed", error=str(exc))

    async def shutdown(self) -> None:
        log.info("daemon_stopping")
        if self._watcher_task is not None:
            self._watcher_task.cancel()
            try:
                await self._watcher_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                log.warning("watcher_exit_error", error=str(exc))
            self._watcher_task = None

        try:
            self._remove_signals()
        except (RuntimeError, ValueError) as exc:
            log.warning("signal_restore_failed", error=str(exc))

        self.state.running = False
        self._persist_state()

        try:
            self._lock.release()
        except OSError as exc:
            log.warning("lock_release_failed", error=str(exc))
        with contextlib.suppress(OSError):
            remove_pid(self.layout)
        log.info("daemon_stopped", heartbeats=self.state.heartbeat_count)


def build_supervisor(layout: WorkspaceLayout, config: DaemonConfig, **kwargs: Any) -> Supervisor:
    """Wire the real CLI adapters for *layout*."""
    timing = config.timing
    commands = config.commands
    runner = CommandRunner(cwd=layout.root, timeout=timing.command_timeout_seconds)
    return Supervisor(
        layout,
        config,
        issues=IssueStore(runner, commands.issue_store),
        mail=Mailbox(runner, commands.mail),
        tmux=Tmux(
            runner,
            commands.tmux,
            poll_interval=timing.poll_interval_seconds,
            settle_delay=timing.settle_delay_seconds,
        ),
        git=Git(runner, commands.git),
        runner=runner,
        **kwargs,
    )
