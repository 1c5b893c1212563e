"""Group registry and per-group settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from warden.config.schema import SupervisionConfig
from warden.identity import AgentIdentity, Prefixes
from warden.protocol.io import read_json
from warden.workspace.layout import WorkspaceLayout

log = logging.getLogger(__name__)

_MISSING = object()
NON_OPERATIONAL_STATUSES = {"parked", "docked"}


@dataclass(slots=True)
class GroupSettings:
    name: str
    default_branch: str = "main"
    session_prefix: str = ""
    record_prefix: str = "gt"
    status: str = "operational"
    auto_restart: bool = True
    auto_restart_blocked: bool = False
    config_found: bool = True


def parse_group_settings(name: str, raw: Any, default_record_prefix: str = "gt") -> GroupSettings:
    if not isinstance(raw, dict):
        raw = {}
    auto_raw = raw.get("auto_restart", _MISSING)
    return GroupSettings(
        name=name,
        default_branch=str(raw.get("default_branch") or "main"),
        session_prefix=str(raw.get("session_prefix") or ""),
        record_prefix=str(raw.get("record_prefix") or default_record_prefix),
        status=str(raw.get("status") or "operational").lower(),
        auto_restart=auto_raw is not False,
        # An explicit null blocks auto-restart, as opposed to an absent key.
        auto_restart_blocked=auto_raw is None,
    )


class GroupRegistry:
    """Reads the group list and group settings fresh on every call."""

    def __init__(self, layout: WorkspaceLayout, supervision: SupervisionConfig) -> None:
        self.layout = layout
        self.supervision = supervision

    def known_groups(self) -> list[str]:
        raw = read_json(self.layout.group_registry, default={})
        groups = raw.get("groups") if isinstance(raw, dict) else None
        if not isinstance(groups, dict):
            return []
        return sorted(name for name in groups if isinstance(name, str) and name)

    def settings(self, group: str) -> GroupSettings:
        path = self.layout.group_config(group)
        raw = read_json(path, default=None)
        settings = parse_group_settings(group, raw, self.supervision.default_record_prefix)
        if raw is None:
            settings.config_found = False
        return settings

    def prefixes_for(self, group: str | None) -> Prefixes:
        """The single place session and record prefixes are resolved."""
        if group is None:
            return Prefixes(hq=self.supervision.hq_prefix, record=self.supervision.default_record_prefix)
        s = self.settings(group)
        return Prefixes(hq=self.supervision.hq_prefix, session=s.session_prefix, record=s.record_prefix)

    def prefixes(self, identity: AgentIdentity) -> Prefixes:
        return self.prefixes_for(identity.group)

    def operational(self, group: str) -> tuple[bool, str]:
        s = self.settings(group)
        if not s.config_found:
            log.warning("no config for group %s - parked state may have been lost", group)
        if s.status in NON_OPERATIONAL_STATUSES:
            return False, f"group is {s.status}"
        if s.auto_restart_blocked:
            return False, "auto_restart is blocked"
        if not s.auto_restart:
            return False, "auto_restart is disabled"
        return True, ""
