"""Agent identities and every handle derived from them.

An :class:`AgentIdentity` is the only key the supervisor passes around.
Mailbox addresses are parsed into identities once, at the boundary, and
session names, work directories, record ids and author names are derived
from an identity by the pure functions below.

Address forms::

    overseer
    coordinator
    <group>/observer
    <group>/merger
    <group>/crew/<name>
    <group>/workers/<name>      (alias: <group>/raiders/<name>)

Parsing splits on ``/`` only, so group and agent names may contain hyphens
without ambiguity.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from warden.errors import UnknownIdentity


class Role(StrEnum):
    OVERSEER = "overseer"
    COORDINATOR = "coordinator"
    OBSERVER = "observer"
    MERGER = "merger"
    CREW = "crew"
    WORKER = "worker"


SINGLETON_ROLES: frozenset[Role] = frozenset({Role.OVERSEER, Role.COORDINATOR})
GROUP_ROLES: frozenset[Role] = frozenset({Role.OBSERVER, Role.MERGER})
NAMED_ROLES: frozenset[Role] = frozenset({Role.CREW, Role.WORKER})
# Roles whose work directory is a persistent git clone that is synced before start.
PERSISTENT_CLONE_ROLES: frozenset[Role] = frozenset({Role.MERGER, Role.CREW, Role.WORKER})

WORKERS_DIR = "workers"
RAIDERS_DIR = "raiders"
# Worker worktrees may live under either directory; both are scanned.
WORKER_DIRS = (WORKERS_DIR, RAIDERS_DIR)
CREW_DIR = "crew"
MERGER_DIR = "merger"
MERGER_CLONE_DIR = "clone"

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_WORKER_SEGMENTS = set(WORKER_DIRS)


def _valid_segment(value: str | None) -> bool:
    return bool(value) and _SEGMENT_RE.match(value) is not None  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class AgentIdentity:
    role: Role
    group: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if self.role in SINGLETON_ROLES:
            ok = self.group is None and self.name is None
        elif self.role in GROUP_ROLES:
            ok = _valid_segment(self.group) and self.name is None
        else:
            ok = _valid_segment(self.group) and _valid_segment(self.name)
        if not ok:
            raise UnknownIdentity(f"{self.role}:{self.group or ''}:{self.name or ''}")

    @classmethod
    def overseer(cls) -> AgentIdentity:
        return cls(Role.OVERSEER)

    @classmethod
    def coordinator(cls) -> AgentIdentity:
        return cls(Role.COORDINATOR)

    @classmethod
    def observer(cls, group: str) -> AgentIdentity:
        return cls(Role.OBSERVER, group)

    @classmethod
    def merger(cls, group: str) -> AgentIdentity:
        return cls(Role.MERGER, group)

    @classmethod
    def crew(cls, group: str, name: str) -> AgentIdentity:
        return cls(Role.CREW, group, name)

    @classmethod
    def worker(cls, group: str, name: str) -> AgentIdentity:
        return cls(Role.WORKER, group, name)

    @property
    def is_singleton(self) -> bool:
        return self.role in SINGLETON_ROLES

    @property
    def is_named(self) -> bool:
        return self.role in NAMED_ROLES

    @property
    def address(self) -> str:
        if self.role in SINGLETON_ROLES:
            return self.role.value
        if self.role in GROUP_ROLES:
            return f"{self.group}/{self.role.value}"
        if self.role is Role.CREW:
            return f"{self.group}/{CREW_DIR}/{self.name}"
        return f"{self.group}/{WORKERS_DIR}/{self.name}"

    @property
    def author_name(self) -> str:
        """Name used for git authorship and the ``GIT_AUTHOR_NAME`` variable."""
        if self.is_named:
            return str(self.name)
        return self.address

    def __str__(self) -> str:
        return self.address


def parse_address(value: str) -> AgentIdentity:
    """Parse a mailbox address into an identity; never guesses."""
    text = value.strip().strip("/")
    if not text:
        raise UnknownIdentity(value)
    parts = text.split("/")
    if len(parts) == 1:
        if parts[0] == Role.OVERSEER.value:
            return AgentIdentity.overseer()
        if parts[0] == Role.COORDINATOR.value:
            return AgentIdentity.coordinator()
        raise UnknownIdentity(value)
    if len(parts) == 2:
        group, role = parts
        if role == Role.OBSERVER.value:
            return _build(value, Role.OBSERVER, group)
        if role == Role.MERGER.value:
            return _build(value, Role.MERGER, group)
        raise UnknownIdentity(value)
    if len(parts) == 3:
        group, kind, name = parts
        if kind == CREW_DIR:
            return _build(value, Role.CREW, group, name)
        if kind in _WORKER_SEGMENTS:
            return _build(value, Role.WORKER, group, name)
    raise UnknownIdentity(value)


def _build(original: str, role: Role, group: str, name: str | None = None) -> AgentIdentity:
    try:
        return AgentIdentity(role, group, name)
    except UnknownIdentity:
        raise UnknownIdentity(original) from None


@dataclass(frozen=True, slots=True)
class Prefixes:
    """Name prefixes in effect for one group (or for the singletons)."""

    hq: str = "hq-"
    session: str = ""
    record: str = "gt"


def session_name(identity: AgentIdentity, prefixes: Prefixes) -> str:
    if identity.is_singleton:
        return f"{prefixes.hq}{identity.role.value}"
    if identity.role in GROUP_ROLES:
        return f"{prefixes.session}{identity.group}-{identity.role.value}"
    if identity.role is Role.CREW:
        return f"{prefixes.session}{identity.group}-crew-{identity.name}"
    return f"{prefixes.session}{identity.group}-{identity.name}"


def record_id(identity: AgentIdentity, prefixes: Prefixes) -> str:
    if identity.is_singleton:
        return f"{prefixes.hq}{identity.role.value}"
    if identity.role in GROUP_ROLES:
        return f"{prefixes.record}-{identity.group}-{identity.role.value}"
    return f"{prefixes.record}-{identity.group}-{identity.role.value}-{identity.name}"


def work_dir(identity: AgentIdentity, root: Path) -> Path:
    if identity.is_singleton:
        return root
    group_dir = root / str(identity.group)
    if identity.role is Role.OBSERVER:
        return group_dir
    if identity.role is Role.MERGER:
        return group_dir / MERGER_DIR / MERGER_CLONE_DIR
    if identity.role is Role.CREW:
        return group_dir / CREW_DIR / str(identity.name)
    candidates = [group_dir / sub / str(identity.name) for sub in WORKER_DIRS]
    base = next((c for c in candidates if c.is_dir()), candidates[0])
    nested = base / str(identity.group)
    return nested if nested.is_dir() else base


def _scan_names(parent: Path) -> list[str]:
    try:
        entries = sorted(os.scandir(parent), key=lambda e: e.name)
    except OSError:
        return []
    return [
        e.name
        for e in entries
        if e.is_dir() and not e.name.startswith(".") and _valid_segment(e.name)
    ]


def list_named_agents(root: Path, group: str) -> list[AgentIdentity]:
    """Discover crew and worker identities from their directories.

    Workers are read from both ``workers/`` and ``raiders/``; a name present
    in both yields one identity.
    """
    found = [AgentIdentity(Role.CREW, group, n) for n in _scan_names(root / group / CREW_DIR)]
    seen: set[str] = set()
    for sub in WORKER_DIRS:
        for name in _scan_names(root / group / sub):
            if name in seen:
                continue
            seen.add(name)
            found.append(AgentIdentity(Role.WORKER, group, name))
    return found
