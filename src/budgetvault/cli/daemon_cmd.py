"""CLI commands for the backup daemon: bv daemon start/logs."""

from __future__ import annotations

import logging
import signal
import time
from pathlib import Path

import click

from budgetvault.core.config import load_config, resolve_home

# How often the daemon re-reads the backup preference written by 'bv backup enable/disable'
_SETTINGS_POLL_SECONDS = 30


@click.group("daemon")
def daemon_group() -> None:
    """Run the scheduled backup daemon."""


@daemon_group.command("start")
@click.option(
    "--home",
    type=click.Path(path_type=Path),
    default=None,
    help="Override BV_HOME path.",
)
def daemon_start(home: Path | None) -> None:
    """Start the daemon (foreground)."""
    home_path = home or resolve_home()
    config = load_config(home_path / ".bv" / "config.yaml")
    daemon_cfg = config.get("daemon", {})

    # Setup logging
    log_path = home_path / ".bv" / "daemon.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, daemon_cfg.get("log_level", "info").upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(str(log_path), encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )

    log = logging.getLogger("budgetvault.daemon")
    log.info("Daemon starting (home=%s)", home_path)

    from budgetvault.backup.context import build_context
    from budgetvault.backup.scheduler import BackupScheduler, SchedulePolicy
    from budgetvault.backup.transfer import BackupTransferService
    from budgetvault.daemon.scheduler import TaskScheduler
    from budgetvault.providers.registry import ProviderConfigError

    try:
        context = build_context(home_path, config)
    except ProviderConfigError as e:
        log.error("Cannot start: %s", e)
        raise click.ClickException(str(e)) from e
    service = BackupTransferService(context)
    runner = TaskScheduler(home_path, config)
    scheduler = BackupScheduler(runner, service, SchedulePolicy.from_config(config))

    def wanted() -> bool:
        return context.settings.is_backup_enabled(default=bool(config["backup"].get("enabled")))

    scheduled = False
    if wanted():
        scheduler.schedule()
        scheduled = True
    runner.start()

    click.echo(f"Daemon started (home={home_path})")
    click.echo(f"  Automatic backup: {'scheduled' if scheduled else 'off'}")
    click.echo("Press Ctrl+C to stop.")

    # Main loop: wait for shutdown signal
    _shutdown = False

    def signal_handler(sig, frame):
        nonlocal _shutdown
        _shutdown = True

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    elapsed = 0
    try:
        while not _shutdown:
            time.sleep(1)
            elapsed += 1
            if elapsed % _SETTINGS_POLL_SECONDS:
                continue
            if wanted() and not scheduled:
                log.info("Backup enabled, scheduling")
                scheduler.schedule()
                scheduled = True
            elif not wanted() and scheduled:
                log.info("Backup disabled, unscheduling")
                scheduler.unschedule()
                scheduled = False
    except KeyboardInterrupt:
        pass

    # Cleanup
    click.echo("\nShutting down...")
    runner.stop()
    context.scratch.close()
    click.echo("Daemon stopped.")


@daemon_group.command("logs")
@click.option(
    "--home",
    type=click.Path(path_type=Path),
    default=None,
    help="Override BV_HOME path.",
)
@click.option("-n", "--lines", default=50, help="Number of lines to show.")
def daemon_logs(home: Path | None, lines: int) -> None:
    """Show daemon log (last N lines)."""
    home_path = home or resolve_home()
    log_path = home_path / ".bv" / "daemon.log"

    if not log_path.exists():
        click.echo("No daemon log found.")
        return

    content = log_path.read_text(encoding="utf-8")
    log_lines = content.splitlines()
    for line in log_lines[-lines:]:
        click.echo(line)
