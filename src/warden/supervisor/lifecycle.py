"""Lifecycle requests read from the supervisor's mailbox.

Requests are claimed by deleting the message before the action runs. A
failed action is not retried; the sender has to ask again.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from warden.adapters.base import MailboxAPI, MultiplexerAPI
from warden.errors import NonOperational, WardenError
from warden.events import LIFECYCLE_EXECUTED, EventBus, SupervisorEvent
from warden.identity import AgentIdentity, parse_address, session_name
from warden.logger import get_logger
from warden.protocol.models import LifecycleAction, LifecycleRequest, MailMessage, utc_now
from warden.session.restart import RestartProtocol

log = get_logger(__name__)

SUBJECT_PREFIX = "lifecycle:"

_LITERAL_ACTIONS = {
    "restart": LifecycleAction.RESTART,
    "action: restart": LifecycleAction.RESTART,
    "shutdown": LifecycleAction.SHUTDOWN,
    "action: shutdown": LifecycleAction.SHUTDOWN,
    "stop": LifecycleAction.SHUTDOWN,
    "cycle": LifecycleAction.CYCLE,
    "action: cycle": LifecycleAction.CYCLE,
}

_ACTION_NAMES = {
    "restart": LifecycleAction.RESTART,
    "shutdown": LifecycleAction.SHUTDOWN,
    "stop": LifecycleAction.SHUTDOWN,
    "cycle": LifecycleAction.CYCLE,
}


def is_lifecycle_subject(subject: str) -> bool:
    return subject.strip().lower().startswith(SUBJECT_PREFIX)


def parse_action(body: str) -> LifecycleAction | None:
    """Structured ``{"action": ...}`` body first, then a literal word."""
    text = body.strip()
    try:
        raw = json.loads(text)
    except json.JSONDecodeError:
        return _LITERAL_ACTIONS.get(text.lower())
    if not isinstance(raw, dict):
        return None
    action = raw.get("action")
    if not isinstance(action, str):
        return None
    return _ACTION_NAMES.get(action.strip().lower())


def parse_request(msg: MailMessage, now: datetime) -> LifecycleRequest | None:
    if not is_lifecycle_subject(msg.subject):
        return None
    action = parse_action(msg.body)
    if action is None:
        log.warning("lifecycle_body_unparseable", message=msg.message_id, body=msg.body[:200])
        return None
    return LifecycleRequest(message_id=msg.message_id, sender=msg.sender, action=action, received_at=now)


@dataclass(slots=True)
class LifecycleReport:
    executed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)


class LifecycleProcessor:
    def __init__(
        self,
        *,
        identity: AgentIdentity,
        mail: MailboxAPI,
        tmux: MultiplexerAPI,
        restart: RestartProtocol,
        max_age_seconds: float = 6 * 3600.0,
        settle_delay_seconds: float = 0.5,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.identity = identity
        self.mail = mail
        self.tmux = tmux
        self.restart = restart
        self.max_age = timedelta(seconds=max_age_seconds)
        self.settle_delay_seconds = settle_delay_seconds
        self.bus = bus
        self.clock = clock

    async def process(self) -> LifecycleReport:
        report = LifecycleReport()
        try:
            messages = await self.mail.inbox(self.identity)
        except WardenError as exc:
            log.warning("inbox_fetch_failed", identity=self.identity.address, error=str(exc))
            return report

        for msg in messages:
            if msg.read:
                continue
            now = self.clock()
            request = parse_request(msg, now)
            if request is None:
                continue

            if msg.timestamp is not None and now - msg.timestamp > self.max_age:
                log.info(
                    "lifecycle_stale",
                    message=msg.message_id,
                    sender=msg.sender,
                    age_minutes=int((now - msg.timestamp).total_seconds() // 60),
                )
                await self._claim(msg.message_id)
                report.stale.append(msg.message_id)
                continue

            log.info("lifecycle_request", message=msg.message_id, sender=msg.sender, action=request.action.value)
            await self._claim(msg.message_id)
            try:
                await self.execute(request)
            except NonOperational as exc:
                log.info("lifecycle_refused", sender=request.sender, reason=str(exc))
                report.failed.append(msg.message_id)
            except WardenError as exc:
                log.warning(
                    "lifecycle_failed",
                    sender=request.sender,
                    action=request.action.value,
                    error=str(exc),
                )
                report.failed.append(msg.message_id)
            else:
                report.executed.append(msg.message_id)
        return report

    async def _claim(self, message_id: str) -> None:
        try:
            await self.mail.delete(message_id)
        except WardenError as exc:
            log.warning("lifecycle_claim_failed", message=message_id, error=str(exc))

    async def execute(self, request: LifecycleRequest) -> None:
        identity = parse_address(request.sender)
        prefixes = self.restart.groups.prefixes(identity)
        name = session_name(identity, prefixes)
        running = await self.tmux.has_session(name)

        if request.action is LifecycleAction.SHUTDOWN:
            if running:
                await self.tmux.kill_session(name)
                log.info("session_killed", identity=identity.address, session=name)
        else:
            if running:
                await self.tmux.kill_session(name)
                log.info("session_killed_for_restart", identity=identity.address, session=name)
                await asyncio.sleep(self.settle_delay_seconds)
            await self.restart.restart(identity, topic="lifecycle-restart")

        if self.bus is not None:
            self.bus.emit(
                SupervisorEvent(
                    type=LIFECYCLE_EXECUTED,
                    actor=identity.address,
                    payload={"action": request.action.value, "session": name},
                    timestamp=self.clock(),
                )
            )
