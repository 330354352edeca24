"""Tests for budgetvault.backup.controller: BackupSettingsController."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from budgetvault.backup.controller import BackupSettingsController
from budgetvault.backup.errors import OperationInProgress, SnapshotCopyFailed, TransferFailed
from budgetvault.backup.state import Activated, NotAuthenticated
from budgetvault.backup.transfer import BackupTransferService
from budgetvault.core.models import Operation
from budgetvault.providers.storage.base import StorageError


def _controller(ctx, running: bool = False):
    scheduler = MagicMock()
    scheduler.is_backup_running.return_value = running
    service = BackupTransferService(ctx)
    return BackupSettingsController(ctx, service, scheduler), service, scheduler


class TestSwitch:
    @pytest.mark.asyncio
    async def test_activate_schedules_and_enables(self, make_context):
        ctx = make_context()
        controller, _, scheduler = _controller(ctx)

        assert await controller.on_backup_activated() is None

        scheduler.schedule.assert_called_once()
        assert ctx.settings.is_backup_enabled() is True
        assert controller.previous_backup_available.value is None

    @pytest.mark.asyncio
    async def test_activate_offers_previous_backup(self, make_context, tmp_path: Path):
        # A backup made from another device: remote object exists, no local date
        ctx = make_context()
        await BackupTransferService(ctx).backup()
        (tmp_path / ".bv" / "settings.json").unlink()
        controller, _, _ = _controller(ctx)

        previous = await controller.on_backup_activated()

        assert previous is not None
        assert previous.path == "user/U1/backup.zip"
        assert controller.previous_backup_available.value == previous

        controller.on_ignore_previous_backup()
        assert controller.previous_backup_available.value is None

    @pytest.mark.asyncio
    async def test_activate_skips_check_after_local_backup(self, make_context):
        ctx = make_context()
        controller, service, _ = _controller(ctx)
        await service.backup()
        service.has_previous_backup = AsyncMock()

        await controller.on_backup_activated()

        service.has_previous_backup.assert_not_called()

    @pytest.mark.asyncio
    async def test_deactivate(self, make_context):
        ctx = make_context()
        controller, _, scheduler = _controller(ctx)
        await controller.on_backup_activated()

        await controller.on_backup_deactivated()

        scheduler.unschedule.assert_called_once()
        assert ctx.settings.is_backup_enabled() is False


class TestButtons:
    @pytest.mark.asyncio
    async def test_backup_now(self, make_context):
        ctx = make_context()
        controller, _, _ = _controller(ctx)

        result = await controller.backup_now()

        assert result.remote_path == "user/U1/backup.zip"
        assert controller.errors.value is None
        state = controller.state.value
        assert isinstance(state, Activated)
        assert state.restore_available is True

    @pytest.mark.asyncio
    async def test_refused_while_scheduled_backup_runs(self, make_context):
        storage = MagicMock()
        ctx = make_context(storage=storage)
        controller, _, _ = _controller(ctx, running=True)

        assert await controller.backup_now() is None

        storage.upload.assert_not_called()
        signal = controller.errors.value
        assert signal.operation == Operation.BACKUP
        assert isinstance(signal.error, OperationInProgress)

    @pytest.mark.asyncio
    async def test_refused_while_flag_set(self, make_context):
        ctx = make_context(storage=MagicMock())
        controller, service, _ = _controller(ctx)
        service.operation_flag.set(Operation.DELETE)

        assert await controller.restore() is None
        assert isinstance(controller.errors.value.error, OperationInProgress)

    @pytest.mark.asyncio
    async def test_failure_published_as_error(self, make_context):
        storage = MagicMock()
        storage.upload.side_effect = StorageError("offline")
        storage.stat.return_value = None
        ctx = make_context(storage=storage)
        controller, _, _ = _controller(ctx)

        assert await controller.backup_now() is None

        signal = controller.errors.value
        assert isinstance(signal.error, TransferFailed)
        assert signal.retryable is True

        controller.dismiss_error()
        assert controller.errors.value is None

    @pytest.mark.asyncio
    async def test_missing_scratch_space_published_as_error(self, make_context, tmp_path: Path):
        (tmp_path / "cache").write_text("not a directory", encoding="utf-8")
        ctx = make_context()
        controller, _, _ = _controller(ctx)

        assert await controller.backup_now() is None

        signal = controller.errors.value
        assert signal.operation == Operation.BACKUP
        assert isinstance(signal.error, SnapshotCopyFailed)

    @pytest.mark.asyncio
    async def test_restore_clears_previous_prompt(self, make_context):
        ctx = make_context()
        controller, service, _ = _controller(ctx)
        await service.backup()
        controller.previous_backup_available.set(await service.has_previous_backup())

        result = await controller.restore()

        assert result is not None
        assert controller.previous_backup_available.value is None

    @pytest.mark.asyncio
    async def test_delete(self, make_context):
        ctx = make_context()
        controller, service, _ = _controller(ctx)
        await service.backup()

        assert await controller.delete() is True
        assert controller.state.value.restore_available is False
        assert await controller.delete() is False


class TestAccount:
    @pytest.mark.asyncio
    async def test_logout(self, make_context):
        ctx = make_context()
        controller, _, scheduler = _controller(ctx)
        await controller.on_backup_activated()

        await controller.on_logout()

        scheduler.unschedule.assert_called()
        assert ctx.settings.is_backup_enabled() is False
        assert controller.state.value == NotAuthenticated()

    def test_close(self, make_context):
        ctx = make_context()
        controller, service, _ = _controller(ctx)
        controller.close()
        assert service.operation_flag.subscriber_count == 0
