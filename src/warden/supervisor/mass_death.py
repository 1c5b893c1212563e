"""Mass-death alarm over recent session deaths."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from warden.events import MASS_DEATH, EventBus, SupervisorEvent
from warden.logger import get_logger
from warden.protocol.models import SessionDeathRecord, utc_now

log = get_logger(__name__)


class MassDeathAlarm:
    """Sliding-window counter of session deaths.

    Each insert trims the list to the window; once it holds ``threshold``
    records a single ``mass_death`` event is emitted and the list is
    cleared, so the same burst never alarms twice. The lock covers only the
    insert-trim-check section.
    """

    def __init__(
        self,
        *,
        window_seconds: float = 30.0,
        threshold: int = 3,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.window = timedelta(seconds=window_seconds)
        self.threshold = threshold
        self.bus = bus
        self.clock = clock
        self._lock = threading.Lock()
        self._deaths: list[SessionDeathRecord] = []

    @property
    def deaths(self) -> list[SessionDeathRecord]:
        with self._lock:
            return list(self._deaths)

    def record(self, session_name: str, at: datetime | None = None) -> SupervisorEvent | None:
        now = at or self.clock()
        with self._lock:
            self._deaths.append(SessionDeathRecord(session_name, now))
            cutoff = now - self.window
            self._deaths = [d for d in self._deaths if d.timestamp > cutoff]
            if len(self._deaths) < self.threshold:
                return None
            burst = self._deaths
            self._deaths = []

        sessions = [d.session_name for d in burst]
        window = f"{int(self.window.total_seconds())}s"
        log.error("mass_death_detected", count=len(sessions), window=window, sessions=sessions)
        event = SupervisorEvent(
            type=MASS_DEATH,
            payload={"count": len(sessions), "window": window, "sessions": sessions},
            timestamp=now,
        )
        if self.bus is not None:
            self.bus.emit(event)
        return event

    def clear(self) -> None:
        with self._lock:
            self._deaths.clear()
