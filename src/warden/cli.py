"""CLI entrypoint for the warden daemon."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from warden.config.loader import load_daemon_yaml
from warden.config.schema import DaemonConfig
from warden.errors import AlreadyRunning, WardenError
from warden.logger import get_logger, setup_logging
from warden.supervisor.loop import build_supervisor
from warden.supervisor.state_writer import is_running, read_state, send_lifecycle_kick, stop_daemon
from warden.workspace.layout import WorkspaceLayout, resolve_root

log = get_logger(__name__)

root_option = click.option(
    "--root",
    "root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Workspace root (default: $WARDEN_ROOT or the current directory)",
)


@click.group()
def main() -> None:
    """Supervision daemon for long-lived assistant sessions."""


def _layout(root: Path | None) -> WorkspaceLayout:
    return WorkspaceLayout(resolve_root(root))


def _load_config(layout: WorkspaceLayout, config_path: Path | None) -> DaemonConfig:
    try:
        return load_daemon_yaml(config_path or layout.config_file)
    except WardenError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command("run")
@root_option
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), default=None)
@click.option("--debug", "debug_flag", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Write JSON log lines instead of console format")
def run_command(root: Path | None, config_path: Path | None, debug_flag: bool, json_logs: bool) -> None:
    """Run the supervisor in the foreground."""
    layout = _layout(root)
    cfg = _load_config(layout, config_path)
    try:
        setup_logging(log_file=layout.log_file, debug=debug_flag, json_output=json_logs)
    except OSError as exc:
        click.echo(f"cannot open log file {layout.log_file}: {exc}", err=True)
        raise SystemExit(1) from exc

    supervisor = build_supervisor(layout, cfg)
    try:
        asyncio.run(supervisor.run())
    except AlreadyRunning as exc:
        click.echo(str(exc), err=True)
        raise SystemExit(1) from exc
    except WardenError as exc:
        log.error("startup_failed", error=str(exc))
        click.echo(str(exc), err=True)
        raise SystemExit(1) from exc
    raise SystemExit(0)


@main.command("status")
@root_option
def status_command(root: Path | None) -> None:
    """Show whether the daemon runs and its last heartbeat."""
    layout = _layout(root)
    running, pid = is_running(layout)
    state = read_state(layout)
    console = Console()
    table = Table(title=f"warden @ {layout.root}", show_header=False)
    table.add_column("key", style="bold")
    table.add_column("value")
    table.add_row("running", f"yes (pid {pid})" if running else "no")
    table.add_row("started_at", state.started_at.isoformat() if state.started_at else "-")
    table.add_row("last_heartbeat", state.last_heartbeat.isoformat() if state.last_heartbeat else "-")
    table.add_row("heartbeat_count", str(state.heartbeat_count))
    console.print(table)


@main.command("stop")
@root_option
def stop_command(root: Path | None) -> None:
    """Stop the running daemon."""
    layout = _layout(root)
    try:
        pid = stop_daemon(layout)
    except WardenError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"stopped daemon (pid {pid})")


@main.command("kick")
@root_option
def kick_command(root: Path | None) -> None:
    """Ask the running daemon to process lifecycle requests now."""
    layout = _layout(root)
    try:
        pid = send_lifecycle_kick(layout)
    except WardenError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"lifecycle kick sent (pid {pid})")


def _doctor_rows(cfg: DaemonConfig) -> list[dict[str, Any]]:
    commands = cfg.commands
    checks = [
        ("issue store", commands.issue_store[0] if commands.issue_store else ""),
        ("mail", commands.mail[0] if commands.mail else ""),
        ("completion check", commands.completion_check[0] if commands.completion_check else ""),
        ("multiplexer", commands.tmux),
        ("git", commands.git),
        ("assistant", commands.assistant.split()[0] if commands.assistant.strip() else ""),
    ]
    rows: list[dict[str, Any]] = []
    for purpose, binary in checks:
        found = bool(binary) and shutil.which(binary) is not None
        rows.append(
            {
                "purpose": purpose,
                "binary": binary or "-",
                "ok": found,
                "details": "ok" if found else f"missing binary `{binary}`",
            }
        )
    return rows


def _print_doctor(rows: list[dict[str, Any]]) -> bool:
    click.echo("External tools:")
    all_ok = True
    for row in rows:
        icon = "OK" if row["ok"] else "FAIL"
        click.echo(f"  [{icon}] {row['purpose']}: {row['binary']} - {row['details']}")
        all_ok = all_ok and bool(row["ok"])
    return all_ok


@main.command("doctor")
@root_option
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), default=None)
def doctor_command(root: Path | None, config_path: Path | None) -> None:
    """Check that the external CLIs the daemon shells out to are installed."""
    layout = _layout(root)
    cfg = _load_config(layout, config_path)
    ok = _print_doctor(_doctor_rows(cfg))
    raise SystemExit(0 if ok else 1)


if __name__ == "__main__":
    main()
