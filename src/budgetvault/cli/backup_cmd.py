"""CLI commands for cloud backup: bv backup now/restore/delete/status/enable/disable/jobs."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from budgetvault.backup.context import BackupContext, build_context
from budgetvault.backup.controller import BackupSettingsController
from budgetvault.backup.scheduler import BackupScheduler, SchedulePolicy
from budgetvault.backup.state import (
    Activated,
    Authenticating,
    BackupInProgress,
    DeletionInProgress,
    NotActivated,
    NotAuthenticated,
    RestorationInProgress,
    SyncState,
)
from budgetvault.backup.transfer import BackupTransferService
from budgetvault.core.config import load_config, resolve_home
from budgetvault.core.models import Identity
from budgetvault.providers.registry import ProviderConfigError

home_option = click.option(
    "--home",
    type=click.Path(path_type=Path),
    default=None,
    help="Override BV_HOME path.",
)


def _build_controller(home: Path | None) -> tuple[BackupContext, BackupSettingsController]:
    from budgetvault.daemon.scheduler import TaskScheduler

    home_path = home or resolve_home()
    config = load_config(home_path / ".bv" / "config.yaml")
    try:
        context = build_context(home_path, config)
    except ProviderConfigError as e:
        raise click.ClickException(str(e)) from e
    service = BackupTransferService(context)
    runner = TaskScheduler(home_path, config)
    scheduler = BackupScheduler(runner, service, SchedulePolicy.from_config(config))
    return context, BackupSettingsController(context, service, scheduler)


def _raise_on_error(controller: BackupSettingsController) -> None:
    signal = controller.errors.value
    if signal is not None:
        hint = " (temporary, try again later)" if signal.retryable else ""
        raise click.ClickException(f"{signal.operation.value} failed: {signal.error}{hint}")


def describe_state(state: SyncState) -> str:
    """One-paragraph human description of a sync state."""
    if isinstance(state, NotAuthenticated):
        return "Not signed in. Run 'bv auth login' to enable cloud backup."
    if isinstance(state, Authenticating):
        return "Signing in..."
    if isinstance(state, NotActivated):
        return f"Signed in as {state.identity.email or state.identity.id}. Cloud backup requires premium."
    if isinstance(state, BackupInProgress):
        return f"Signed in as {state.identity.email or state.identity.id}. Backup in progress..."
    if isinstance(state, RestorationInProgress):
        return f"Signed in as {state.identity.email or state.identity.id}. Restore in progress..."
    if isinstance(state, DeletionInProgress):
        return f"Signed in as {state.identity.email or state.identity.id}. Deleting backup..."
    if isinstance(state, Activated):
        last = state.last_backup_date.isoformat() if state.last_backup_date else "never"
        lines = [
            f"Signed in as {state.identity.email or state.identity.id}. Cloud backup available.",
            f"  Last backup: {last}",
            f"  Remote backup: {'yes' if state.restore_available else 'none'}",
        ]
        return "\n".join(lines)
    raise TypeError(f"Unknown sync state: {state!r}")


@click.group("backup")
def backup_group() -> None:
    """Back up the budget database to cloud storage."""


@backup_group.command("now")
@home_option
def backup_now(home: Path | None) -> None:
    """Run a backup now."""
    _, controller = _build_controller(home)
    result = asyncio.run(controller.backup_now())
    _raise_on_error(controller)
    click.echo(
        f"OK: uploaded {result.bytes_transferred} bytes to {result.remote_path} "
        f"({result.duration_seconds:.1f}s)"
    )


@backup_group.command("restore")
@home_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def backup_restore(home: Path | None, yes: bool) -> None:
    """Replace the local database with the cloud backup."""
    _, controller = _build_controller(home)
    state = asyncio.run(controller.refresh())
    if isinstance(state, Activated) and not state.restore_available:
        click.echo("No cloud backup to restore.")
        return
    if not yes:
        click.confirm("This replaces all local data with the backup. Continue?", abort=True)

    result = asyncio.run(controller.restore())
    _raise_on_error(controller)
    click.echo(
        f"Restored {result.bytes_transferred} bytes from {result.remote_path} "
        f"(archive version {result.archive_version}). Restart the app to load it."
    )


@backup_group.command("delete")
@home_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def backup_delete(home: Path | None, yes: bool) -> None:
    """Delete the cloud backup."""
    _, controller = _build_controller(home)
    if not yes:
        click.confirm("Delete your cloud backup?", abort=True)

    deleted = asyncio.run(controller.delete())
    _raise_on_error(controller)
    click.echo("Cloud backup deleted." if deleted else "No cloud backup to delete.")


@backup_group.command("status")
@home_option
def backup_status(home: Path | None) -> None:
    """Show the cloud backup status."""
    context, controller = _build_controller(home)
    state = asyncio.run(controller.refresh())
    click.echo(describe_state(state))
    enabled = context.settings.is_backup_enabled(default=bool(context.config["backup"].get("enabled")))
    click.echo(f"  Automatic backup: {'on' if enabled else 'off'}")


@backup_group.command("enable")
@home_option
def backup_enable(home: Path | None) -> None:
    """Turn on the weekly automatic backup (run by 'bv daemon start')."""
    _, controller = _build_controller(home)
    previous = asyncio.run(controller.on_backup_activated())
    click.echo("Automatic backup enabled.")
    if previous is not None:
        click.echo(
            f"A backup from {previous.last_modified.isoformat()} already exists. "
            "Run 'bv backup restore' to restore it."
        )


@backup_group.command("disable")
@home_option
def backup_disable(home: Path | None) -> None:
    """Turn off the automatic backup."""
    _, controller = _build_controller(home)
    asyncio.run(controller.on_backup_deactivated())
    click.echo("Automatic backup disabled.")


@backup_group.command("jobs")
@home_option
@click.option("-n", "lines", default=20, help="Number of log lines.")
def backup_jobs(home: Path | None, lines: int) -> None:
    """Show recent scheduled backup runs."""
    from budgetvault.daemon.scheduler import TaskScheduler

    home_path = home or resolve_home()
    entries = TaskScheduler(home_path).get_log_lines(lines)
    if not entries:
        click.echo("No scheduled backup runs yet.")
        return
    for line in entries:
        click.echo(line)


@click.group("auth")
def auth_group() -> None:
    """Sign in to the backup account."""


@auth_group.command("login")
@home_option
@click.option("--id", "user_id", required=True, help="Account id from the identity provider.")
@click.option("--email", default="", help="Account email.")
def auth_login(home: Path | None, user_id: str, email: str) -> None:
    """Record the signed-in account."""
    context, controller = _build_controller(home)
    context.auth.complete_sign_in(Identity(id=user_id, email=email))
    state = asyncio.run(controller.refresh())
    click.echo(describe_state(state))


@auth_group.command("logout")
@home_option
def auth_logout(home: Path | None) -> None:
    """Sign out and stop automatic backups."""
    _, controller = _build_controller(home)
    asyncio.run(controller.on_logout())
    click.echo("Signed out.")
