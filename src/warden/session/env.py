"""Environment injected into agent sessions and the startup command."""

from __future__ import annotations

import shlex
from pathlib import Path

from warden.identity import AgentIdentity


def agent_env(identity: AgentIdentity, root: Path, *, session_id_env: str = "") -> dict[str, str]:
    env = {
        "ROLE_TAG": identity.role.value,
        "ACTOR_ADDRESS": identity.address,
        "WORKSPACE_ROOT": str(root),
        "GIT_AUTHOR_NAME": identity.author_name,
    }
    if identity.group:
        env["GROUP"] = identity.group
    if identity.is_named:
        env["AGENT_NAME"] = str(identity.name)
        # Named agents never start ancillary helpers.
        env["NO_BACKGROUND_DAEMON"] = "1"
    if session_id_env:
        env["SESSION_ID_VAR_NAME"] = session_id_env
    return env


def export_prefix(env: dict[str, str]) -> str:
    if not env:
        return ""
    pairs = " ".join(f"{key}={shlex.quote(env[key])}" for key in sorted(env))
    return f"export {pairs}"


def build_startup_command(env: dict[str, str], assistant: str) -> str:
    """``export K=V ... && exec <assistant>``, typed into the session shell."""
    prefix = export_prefix(env)
    launch = f"exec {assistant}"
    return f"{prefix} && {launch}" if prefix else launch
