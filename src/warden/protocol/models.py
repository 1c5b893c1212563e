"""Typed records exchanged with the external stores and the state directory."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from warden.errors import MalformedEvent

CleanupState = Literal["clean", "has_uncommitted", "has_stash", "has_unpushed", "unknown"]
CLEANUP_STATES: frozenset[str] = frozenset({"clean", "has_uncommitted", "has_stash", "has_unpushed"})


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_iso(ts: Any) -> datetime | None:
    """Parse an ISO-8601 / RFC 3339 timestamp; naive values are taken as UTC.

    Anything that is not a non-empty string yields ``None``.
    """
    if not ts or not isinstance(ts, str):
        return None
    try:
        dt = datetime.fromisoformat(ts.strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


@dataclass(slots=True)
class HeartbeatState:
    running: bool = False
    pid: int = 0
    started_at: datetime | None = None
    last_heartbeat: datetime | None = None
    heartbeat_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "pid": self.pid,
            "started_at": _iso(self.started_at),
            "last_heartbeat": _iso(self.last_heartbeat),
            "heartbeat_count": self.heartbeat_count,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> HeartbeatState:
        if not isinstance(raw, dict):
            return cls()
        try:
            count = int(raw.get("heartbeat_count", 0))
            pid = int(raw.get("pid", 0))
        except (TypeError, ValueError):
            count, pid = 0, 0
        return cls(
            running=bool(raw.get("running", False)),
            pid=pid,
            started_at=parse_iso(raw.get("started_at")),
            last_heartbeat=parse_iso(raw.get("last_heartbeat")),
            heartbeat_count=count,
        )


def parse_cleanup_state(description: str) -> CleanupState:
    for line in description.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        if key.strip().lower() in {"cleanup_state", "cleanup_status", "cleanup-state"}:
            value = value.strip().lower()
            return value if value in CLEANUP_STATES else "unknown"  # type: ignore[return-value]
    return "unknown"


@dataclass(slots=True)
class AgentRecord:
    """An agent entity in the issue store. Written by the agent, read-only here."""

    record_id: str
    issue_type: str = "agent"
    status: str = ""
    assigned_work: str = ""
    updated_at: datetime | None = None
    description: str = ""
    cleanup_state: CleanupState = "unknown"

    @classmethod
    def from_raw(cls, raw: Any) -> AgentRecord | None:
        """Build from one ``show``/``list`` JSON object; ``None`` if unusable."""
        if not isinstance(raw, dict):
            return None
        record_id = raw.get("id")
        if not isinstance(record_id, str) or not record_id:
            return None
        description = raw.get("description") or ""
        if not isinstance(description, str):
            description = str(description)
        # The dedicated column is authoritative; the description may be stale.
        assigned = raw.get("assigned_work")
        if assigned is None:
            assigned = raw.get("hook_bead")
        return cls(
            record_id=record_id,
            issue_type=str(raw.get("issue_type", raw.get("type", "")) or ""),
            status=str(raw.get("status", "") or ""),
            assigned_work=str(assigned or "").strip(),
            updated_at=parse_iso(raw.get("updated_at")),
            description=description,
            cleanup_state=parse_cleanup_state(description),
        )


@dataclass(slots=True)
class MailMessage:
    message_id: str
    sender: str = ""
    to: str = ""
    subject: str = ""
    body: str = ""
    timestamp: datetime | None = None
    read: bool = False
    priority: str = "normal"

    @classmethod
    def from_raw(cls, raw: Any) -> MailMessage | None:
        if not isinstance(raw, dict):
            return None
        message_id = raw.get("id")
        if not isinstance(message_id, str) or not message_id:
            return None
        return cls(
            message_id=message_id,
            sender=str(raw.get("from", "") or ""),
            to=str(raw.get("to", "") or ""),
            subject=str(raw.get("subject", "") or ""),
            body=str(raw.get("body", "") or ""),
            timestamp=parse_iso(raw.get("timestamp")),
            read=bool(raw.get("read", False)),
            priority=str(raw.get("priority", "normal") or "normal"),
        )


@dataclass(slots=True)
class ActivityEvent:
    """One line of the issue-store activity stream."""

    type: str
    issue_id: str = ""
    new_status: str = ""
    old_status: str = ""
    timestamp: str = ""

    @property
    def is_close(self) -> bool:
        return self.type == "status" and self.new_status == "closed"

    @classmethod
    def from_line(cls, line: str) -> ActivityEvent:
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as exc:
            raise MalformedEvent(line, f"invalid json: {exc.msg}") from exc
        if not isinstance(raw, dict):
            raise MalformedEvent(line, "not an object")
        ev_type = raw.get("type")
        if not isinstance(ev_type, str) or not ev_type:
            raise MalformedEvent(line, "missing type")
        event = cls(
            type=ev_type,
            issue_id=str(raw.get("issue_id", "") or ""),
            new_status=str(raw.get("new_status", "") or ""),
            old_status=str(raw.get("old_status", "") or ""),
            timestamp=str(raw.get("timestamp", "") or ""),
        )
        if event.is_close and not event.issue_id:
            raise MalformedEvent(line, "close event without issue_id")
        return event


class LifecycleAction(StrEnum):
    RESTART = "restart"
    SHUTDOWN = "shutdown"
    CYCLE = "cycle"


@dataclass(slots=True)
class LifecycleRequest:
    message_id: str
    sender: str
    action: LifecycleAction
    received_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True, frozen=True)
class SessionDeathRecord:
    session_name: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        raw = asdict(self)
        raw["timestamp"] = self.timestamp.isoformat()
        return raw
