"""YAML config loader for the warden daemon."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from warden.config.schema import CommandsConfig, DaemonConfig, SupervisionConfig, TimingConfig
from warden.errors import ErrorCategory, WardenError


def load_daemon_yaml(path: str | Path) -> DaemonConfig:
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) if p.exists() else {}
    except yaml.YAMLError as exc:
        raise WardenError(f"invalid config {p}: {exc}", category=ErrorCategory.CONFIGURATION) from exc
    if not isinstance(raw, dict):
        raw = {}

    timing_raw = raw.get("timing", {}) if isinstance(raw.get("timing"), dict) else {}
    commands_raw = raw.get("commands", {}) if isinstance(raw.get("commands"), dict) else {}
    supervision_raw = (
        raw.get("supervision", {}) if isinstance(raw.get("supervision"), dict) else {}
    )

    commands = _pick(commands_raw, CommandsConfig)
    for key in ("issue_store", "mail", "completion_check"):
        if isinstance(commands.get(key), str):
            commands[key] = commands[key].split()

    return DaemonConfig(
        version=int(raw.get("version", 1)),
        timing=TimingConfig(**_pick(timing_raw, TimingConfig)),
        commands=CommandsConfig(**commands),
        supervision=SupervisionConfig(**_pick(supervision_raw, SupervisionConfig)),
    )


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
