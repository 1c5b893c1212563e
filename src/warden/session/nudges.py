"""Startup nudges sent to a freshly started assistant."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from warden.identity import Role

NUDGE_TAG = "[WARDEN]"

_TOPIC_SUFFIX = {
    "restart": "Run `gt prime` now for full context, then check your hook and mail.",
    "cold-start": "Check your hook and mail, then act on the hook if present.",
}

_PROPULSION = {
    Role.WORKER: "Run `gt hook` to check your hook and begin work.",
    Role.CREW: "Run `gt hook` to check your hook and begin work.",
    Role.OBSERVER: "Run `gt prime` to check patrol status and begin work.",
    Role.MERGER: "Run `gt prime` to check merge queue status and begin patrol.",
    Role.COORDINATOR: "Run `gt prime` to check patrol status and begin heartbeat cycle.",
    Role.OVERSEER: "Run `gt prime` to check mail and begin coordination.",
}


def format_startup_nudge(recipient: str, sender: str, topic: str, now: datetime) -> str:
    """``[WARDEN] <recipient> <- <sender> • <YYYY-MM-DDTHH:MM> • <topic>``

    The line becomes the session title in the assistant's history picker,
    which is how a successor finds its predecessor.
    """
    stamp = now.strftime("%Y-%m-%dT%H:%M")
    line = f"{NUDGE_TAG} {recipient} <- {sender} • {stamp} • {topic or 'ready'}"
    suffix = _TOPIC_SUFFIX.get(topic)
    if suffix:
        line = f"{line} {suffix}"
    return line


def read_session_id(work_dir: Path) -> str:
    try:
        return (work_dir / ".runtime" / "session_id").read_text(encoding="utf-8").strip()
    except OSError:
        return ""


def propulsion_nudge(role: Role, work_dir: Path) -> str:
    msg = _PROPULSION[role]
    session_id = read_session_id(work_dir)
    if session_id:
        msg = f"{msg} [session:{session_id}]"
    return msg
