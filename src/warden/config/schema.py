"""Configuration schema for the warden daemon YAML file."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class TimingConfig:
    heartbeat_interval_seconds: float = 180.0  # recovery safety net, no activity backoff
    stall_timeout_seconds: float = 1800.0
    lifecycle_max_age_seconds: float = 6 * 3600.0
    watcher_retry_seconds: float = 5.0
    mass_death_window_seconds: float = 30.0
    mass_death_threshold: int = 3
    assistant_start_timeout_seconds: float = 60.0
    shell_ready_timeout_seconds: float = 5.0
    settle_delay_seconds: float = 0.5
    nudge_gap_seconds: float = 2.0
    command_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 0.1


@dataclass(slots=True)
class CommandsConfig:
    issue_store: list[str] = field(default_factory=lambda: ["bd"])
    mail: list[str] = field(default_factory=lambda: ["gt", "mail"])
    completion_check: list[str] = field(default_factory=lambda: ["gt", "convoy", "check"])
    tmux: str = "tmux"
    git: str = "git"
    assistant: str = "claude --dangerously-skip-permissions"
    session_id_env: str = "CLAUDE_SESSION_ID"


@dataclass(slots=True)
class SupervisionConfig:
    lifecycle_identity: str = "coordinator"
    ensure_roles: list[str] = field(
        default_factory=lambda: ["overseer", "coordinator", "observer", "merger"]
    )
    hq_prefix: str = "hq-"
    default_record_prefix: str = "gt"
    remote: str = "origin"


@dataclass(slots=True)
class DaemonConfig:
    version: int = 1
    timing: TimingConfig = field(default_factory=TimingConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    supervision: SupervisionConfig = field(default_factory=SupervisionConfig)
