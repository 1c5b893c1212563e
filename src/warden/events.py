"""Event bus for supervisor events.

Events are emitted by the detectors, the restart protocol and the
mass-death alarm. Subscribers receive every event and each one is also
appended to the workspace event feed as one JSON line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from warden.protocol.io import append_jsonl
from warden.protocol.models import utc_now

logger = logging.getLogger(__name__)

MASS_DEATH = "mass_death"
CRASH_DETECTED = "crash_detected"
SESSION_RESTARTED = "session_restarted"
STALL_DETECTED = "stall_detected"
ORPHAN_DETECTED = "orphan_detected"
LIFECYCLE_EXECUTED = "lifecycle_executed"


@dataclass(slots=True)
class SupervisorEvent:
    """A single supervisor event."""

    type: str
    actor: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    source: str = "daemon"
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "type": self.type,
            "actor": self.actor,
            "payload": self.payload,
        }


class EventBus:
    """In-process pub/sub for supervisor events, optionally persisted."""

    def __init__(self, persist_path: str | Path | None = None) -> None:
        self._subscribers: list[Callable[[SupervisorEvent], Any]] = []
        self._persist_path = Path(persist_path) if persist_path else None
        self._history: list[SupervisorEvent] = []

    def emit(self, event: SupervisorEvent) -> None:
        self._history.append(event)

        for cb in self._subscribers:
            try:
                cb(event)
            except Exception as exc:
                logger.warning("event subscriber error: %s", exc)

        if self._persist_path is not None:
            try:
                append_jsonl(self._persist_path, event.to_dict())
            except OSError as exc:
                logger.warning("event feed write failed: %s", exc)

    def subscribe(self, callback: Callable[[SupervisorEvent], Any]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[SupervisorEvent], Any]) -> None:
        self._subscribers = [cb for cb in self._subscribers if cb is not callback]

    @property
    def history(self) -> list[SupervisorEvent]:
        return list(self._history)

    def of_type(self, event_type: str) -> list[SupervisorEvent]:
        return [e for e in self._history if e.type == event_type]
