"""Per-group status-bar colours."""

from __future__ import annotations

import zlib

from warden.adapters.tmux import SessionTheme
from warden.identity import AgentIdentity

HQ_THEME = SessionTheme("hq", bg="colour130")

PALETTE: tuple[SessionTheme, ...] = (
    SessionTheme("ocean", bg="colour24"),
    SessionTheme("forest", bg="colour22"),
    SessionTheme("plum", bg="colour54"),
    SessionTheme("rust", bg="colour88"),
    SessionTheme("slate", bg="colour238"),
    SessionTheme("teal", bg="colour30"),
    SessionTheme("olive", bg="colour58"),
    SessionTheme("navy", bg="colour17"),
)


def assign_theme(group: str) -> SessionTheme:
    """Stable across processes, unlike ``hash()``."""
    return PALETTE[zlib.crc32(group.encode("utf-8")) % len(PALETTE)]


def theme_for(identity: AgentIdentity) -> tuple[SessionTheme, str]:
    if identity.group is None:
        return HQ_THEME, identity.role.value
    return assign_theme(identity.group), identity.address
