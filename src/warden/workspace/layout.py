"""Well-known paths under the workspace root."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DAEMON_DIR = "daemon"
ROOT_ENV_VAR = "WARDEN_ROOT"


@dataclass(frozen=True, slots=True)
class WorkspaceLayout:
    root: Path

    @property
    def daemon_dir(self) -> Path:
        return self.root / DAEMON_DIR

    @property
    def lock_file(self) -> Path:
        return self.daemon_dir / "daemon.lock"

    @property
    def pid_file(self) -> Path:
        return self.daemon_dir / "daemon.pid"

    @property
    def log_file(self) -> Path:
        return self.daemon_dir / "daemon.log"

    @property
    def state_file(self) -> Path:
        return self.daemon_dir / "state.json"

    @property
    def config_file(self) -> Path:
        return self.daemon_dir / "config.yaml"

    @property
    def events_file(self) -> Path:
        return self.root / ".events.jsonl"

    @property
    def group_registry(self) -> Path:
        return self.root / "overseer" / "groups.json"

    def group_dir(self, group: str) -> Path:
        return self.root / group

    def group_config(self, group: str) -> Path:
        return self.group_dir(group) / "config.json"


def resolve_root(root: str | Path | None = None) -> Path:
    """Workspace root from the argument, ``$WARDEN_ROOT`` or the cwd."""
    if root:
        return Path(root).expanduser().resolve()
    env = os.environ.get(ROOT_ENV_VAR)
    if env:
        return Path(env).expanduser().resolve()
    return Path.cwd().resolve()
