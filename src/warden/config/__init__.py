"""Daemon configuration."""

from warden.config.loader import load_daemon_yaml
from warden.config.schema import CommandsConfig, DaemonConfig, SupervisionConfig, TimingConfig

__all__ = [
    "CommandsConfig",
    "DaemonConfig",
    "SupervisionConfig",
    "TimingConfig",
    "load_daemon_yaml",
]
