"""Presentation-facing backup settings logic.

Backs the backup settings screen: the enable switch, the backup / restore /
delete buttons, and the prompts the screen shows (errors, "a previous
backup exists, restore it?").
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from budgetvault.backup.context import BackupContext
from budgetvault.backup.errors import BackupError, OperationInProgress
from budgetvault.backup.scheduler import BackupScheduler
from budgetvault.backup.state import SyncState, SyncStateMachine
from budgetvault.backup.transfer import BackupResult, BackupTransferService
from budgetvault.core.models import Operation, RemoteBackupDescriptor
from budgetvault.core.signals import ObservableValue

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorSignal:
    """An operation failure the screen should report."""

    operation: Operation
    error: BackupError

    @property
    def retryable(self) -> bool:
        return self.error.retryable


class BackupSettingsController:
    def __init__(
        self,
        context: BackupContext,
        service: BackupTransferService,
        scheduler: BackupScheduler,
    ) -> None:
        self._ctx = context
        self._service = service
        self._scheduler = scheduler
        self.state_machine = SyncStateMachine(context, service.operation_flag, service)
        self.errors: ObservableValue[ErrorSignal | None] = ObservableValue(None)
        self.previous_backup_available: ObservableValue[RemoteBackupDescriptor | None] = (
            ObservableValue(None)
        )

    @property
    def state(self) -> ObservableValue[SyncState]:
        return self.state_machine.state

    async def refresh(self) -> SyncState:
        return await self.state_machine.refresh()

    # --- Switch ---

    async def on_backup_activated(self) -> RemoteBackupDescriptor | None:
        """Turn on the recurring backup.

        When this device never backed up but the account already has a
        remote backup, the descriptor is published (and returned) so the
        screen can offer to restore it first.
        """
        self._ctx.settings.set_backup_enabled(True)
        self._scheduler.schedule()

        previous = None
        if self._ctx.settings.get_last_backup_date() is None:
            try:
                previous = await self._service.has_previous_backup()
            except BackupError as e:
                log.warning("Could not check for a previous backup: %s", e)
        self.previous_backup_available.set(previous)
        await self.refresh()
        return previous

    async def on_backup_deactivated(self) -> None:
        self._ctx.settings.set_backup_enabled(False)
        self._scheduler.unschedule()
        await self.refresh()

    def on_ignore_previous_backup(self) -> None:
        self.previous_backup_available.set(None)

    # --- Buttons ---

    def _busy(self) -> OperationInProgress | None:
        current = self._service.operation_flag.value
        if current is not None:
            return OperationInProgress(f"{current.value} already in progress")
        if self._scheduler.is_backup_running():
            return OperationInProgress("scheduled backup is running")
        return None

    async def _run(self, operation: Operation, call):
        busy = self._busy()
        if busy is not None:
            self.errors.set(ErrorSignal(operation, busy))
            return None
        try:
            return await call()
        except BackupError as e:
            log.warning("%s failed: %s", operation.value.capitalize(), e)
            self.errors.set(ErrorSignal(operation, e))
            return None
        finally:
            await self.refresh()

    async def backup_now(self) -> BackupResult | None:
        return await self._run(Operation.BACKUP, self._service.backup)

    async def restore(self) -> BackupResult | None:
        self.previous_backup_available.set(None)
        return await self._run(Operation.RESTORE, self._service.restore)

    async def delete(self) -> bool:
        return bool(await self._run(Operation.DELETE, self._service.delete))

    def dismiss_error(self) -> None:
        self.errors.set(None)

    # --- Account ---

    async def on_logout(self) -> None:
        self._scheduler.unschedule()
        self._ctx.settings.set_backup_enabled(False)
        self._ctx.auth.sign_out()
        await self.refresh()

    def close(self) -> None:
        self.state_machine.close()
