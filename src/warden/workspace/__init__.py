"""Workspace paths and group settings."""

from warden.workspace.groups import GroupRegistry, GroupSettings, parse_group_settings
from warden.workspace.layout import ROOT_ENV_VAR, WorkspaceLayout, resolve_root

__all__ = [
    "ROOT_ENV_VAR",
    "GroupRegistry",
    "GroupSettings",
    "WorkspaceLayout",
    "parse_group_settings",
    "resolve_root",
]
