"""BackupTransferService: backup, restore and delete against remote storage.

Every operation checks auth, then entitlement, before any I/O. The
operation flag is raised once both gates pass and lowered only after the
scratch resources of the call are gone, so observers never see I/O
running under an idle flag.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from budgetvault.backup import archive
from budgetvault.backup.context import BackupContext
from budgetvault.backup.errors import (
    ArchiveFailed,
    AuthRequired,
    BackupNotFound,
    CorruptArchive,
    FlushFailed,
    NotEntitled,
    OperationInProgress,
    RestoreFailed,
    SettingsWriteFailed,
    SnapshotCopyFailed,
    TransferFailed,
    UnsupportedArchiveVersion,
)
from budgetvault.core.models import Identity, Operation, RemoteBackupDescriptor, remote_backup_path
from budgetvault.core.signals import ObservableValue
from budgetvault.providers.storage.base import ObjectNotFound, StorageError

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ObjectNotFound):
        return False
    return isinstance(exc, (StorageError, asyncio.TimeoutError, OSError))


@dataclass
class BackupResult:
    """Result of a successful backup or restore."""

    operation: Operation
    remote_path: str
    bytes_transferred: int
    duration_seconds: float
    archive_version: int = archive.BACKUP_VERSION
    timestamp: datetime = field(default_factory=_now)


class BackupTransferService:
    """Orchestrates backup / restore / delete for the signed-in user."""

    def __init__(
        self,
        context: BackupContext,
        operation_flag: ObservableValue[Operation | None] | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._ctx = context
        self.operation_flag: ObservableValue[Operation | None] = (
            operation_flag if operation_flag is not None else ObservableValue(None)
        )
        self._clock = clock
        transfer_cfg = context.config.get("backup", {}).get("transfer", {})
        self._timeout = float(transfer_cfg.get("timeout_seconds", 10))
        self._attempts = max(1, int(transfer_cfg.get("attempts", 3)))
        self._wait_min = float(transfer_cfg.get("wait_min_seconds", 1))
        self._wait_max = float(transfer_cfg.get("wait_max_seconds", 10))

    # --- Gates ---

    def _require_identity(self) -> Identity:
        identity = self._ctx.auth.current_identity()
        if identity is None:
            raise AuthRequired("Not authenticated")
        return identity

    def _require_entitlement(self) -> None:
        if not self._ctx.entitlement.is_entitled():
            raise NotEntitled("Cloud backup requires a premium subscription")

    def _gate(self) -> Identity:
        identity = self._require_identity()
        self._require_entitlement()
        return identity

    @contextmanager
    def _in_flight(self, operation: Operation) -> Iterator[None]:
        current = self.operation_flag.value
        if current is not None:
            raise OperationInProgress(f"Cannot start {operation.value}: {current.value} in progress")
        self.operation_flag.set(operation)
        try:
            yield
        finally:
            self.operation_flag.set(None)

    # --- Remote storage envelope ---

    async def _storage_call(self, what: str, func: Callable, *args):
        """Run a blocking storage call with a per-attempt timeout and retries.

        ObjectNotFound is passed through untouched; any other storage
        failure surfaces as TransferFailed once the attempts are used up.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=1, min=self._wait_min, max=self._wait_max),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(func, *args)
        except ObjectNotFound:
            raise
        except asyncio.TimeoutError as e:
            raise TransferFailed(f"{what} timed out after {self._timeout:.0f}s") from e
        except (StorageError, OSError) as e:
            raise TransferFailed(f"{what} failed: {e}") from e

    async def _attempt(self, func: Callable, *args):
        """One storage call bounded by the per-attempt timeout.

        A worker thread cannot be interrupted, so on timeout the call is
        awaited to completion before the timeout propagates. No retry starts
        and no scratch block exits while a previous attempt still runs.
        """
        worker = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=self._timeout)
        except asyncio.TimeoutError:
            log.warning("Storage call %s timed out after %.1fs, waiting for it to finish",
                        getattr(func, "__name__", func), self._timeout)
            try:
                await worker
            except Exception as e:
                log.debug("Timed-out storage call ended with: %s", e)
            raise

    # --- Operations ---

    async def backup(self) -> BackupResult:
        """Snapshot the datastore and upload it as the user's backup."""
        identity = self._gate()
        remote_path = remote_backup_path(identity.id)
        start = time.monotonic()

        with self._in_flight(Operation.BACKUP):
            try:
                await asyncio.to_thread(self._ctx.datastore.force_flush)
            except Exception as e:
                raise FlushFailed(f"Error writing datastore to disk: {e}") from e

            scratch = self._ctx.scratch
            with ExitStack() as stack:
                try:
                    db_copy = stack.enter_context(scratch.scratch_file(archive.SNAPSHOT_ENTRY))
                    archive_file = stack.enter_context(scratch.scratch_file("backup.zip"))
                except OSError as e:
                    raise SnapshotCopyFailed(f"Error allocating scratch space: {e}") from e

                try:
                    await asyncio.to_thread(
                        shutil.copyfile, self._ctx.datastore.snapshot_path, db_copy,
                    )
                except OSError as e:
                    raise SnapshotCopyFailed(f"Error copying datastore: {e}") from e

                try:
                    size = await asyncio.to_thread(
                        archive.write_archive, db_copy, archive_file, archive.BACKUP_VERSION,
                    )
                except (OSError, ValueError) as e:
                    raise ArchiveFailed(f"Error building backup archive: {e}") from e

                try:
                    await self._storage_call(
                        f"Upload of {remote_path}",
                        self._ctx.storage.upload, archive_file, remote_path,
                    )
                except ObjectNotFound as e:
                    raise TransferFailed(f"Upload of {remote_path} failed: {e}") from e

                finished = self._clock()
                try:
                    self._ctx.settings.set_last_backup_date(finished)
                except OSError as e:
                    raise SettingsWriteFailed(
                        f"Backup uploaded to {remote_path} but its date was not recorded: {e}"
                    ) from e

        log.info("Backup uploaded to %s (%d bytes)", remote_path, size)
        return BackupResult(
            operation=Operation.BACKUP,
            remote_path=remote_path,
            bytes_transferred=size,
            duration_seconds=time.monotonic() - start,
            timestamp=finished,
        )

    async def restore(self) -> BackupResult:
        """Download the user's backup and swap it in as the datastore."""
        identity = self._gate()
        remote_path = remote_backup_path(identity.id)
        start = time.monotonic()

        with self._in_flight(Operation.RESTORE):
            scratch = self._ctx.scratch
            with ExitStack() as stack:
                try:
                    archive_file = stack.enter_context(scratch.scratch_file("backup_download.zip"))
                    extract_dir = stack.enter_context(scratch.scratch_dir("backup_download"))
                except OSError as e:
                    raise RestoreFailed(f"Error allocating scratch space: {e}") from e

                try:
                    await self._storage_call(
                        f"Download of {remote_path}",
                        self._ctx.storage.download, remote_path, archive_file,
                    )
                except ObjectNotFound as e:
                    raise BackupNotFound(f"No backup found at {remote_path}") from e
                size = archive_file.stat().st_size

                try:
                    version, snapshot = await asyncio.to_thread(
                        archive.extract_archive, archive_file, extract_dir,
                    )
                except OSError as e:
                    raise CorruptArchive(f"Error extracting backup archive: {e}") from e
                if version != archive.BACKUP_VERSION:
                    raise UnsupportedArchiveVersion(version)

                try:
                    await asyncio.to_thread(self._ctx.datastore.replace_from_snapshot, snapshot)
                except Exception as e:
                    raise RestoreFailed(f"Error replacing datastore: {e}") from e

                try:
                    self._ctx.settings.set_force_reinit_flag()
                except OSError as e:
                    raise SettingsWriteFailed(
                        f"Datastore restored but the re-init flag was not recorded: {e}"
                    ) from e

        log.info("Restored backup from %s (version %d)", remote_path, version)
        return BackupResult(
            operation=Operation.RESTORE,
            remote_path=remote_path,
            bytes_transferred=size,
            duration_seconds=time.monotonic() - start,
            archive_version=version,
        )

    async def delete(self) -> bool:
        """Remove the user's remote backup. Returns False if there was none."""
        identity = self._gate()
        remote_path = remote_backup_path(identity.id)

        with self._in_flight(Operation.DELETE):
            try:
                deleted = await self._storage_call(
                    f"Delete of {remote_path}", self._ctx.storage.delete, remote_path,
                )
            except ObjectNotFound:
                deleted = False

        log.info("Delete of %s: %s", remote_path, "removed" if deleted else "nothing to remove")
        return bool(deleted)

    async def query_remote_backup_descriptor(self) -> RemoteBackupDescriptor | None:
        """Metadata of the user's remote backup, or None if there is none."""
        identity = self._gate()
        return await self._fetch_descriptor(identity)

    async def has_previous_backup(self) -> RemoteBackupDescriptor | None:
        """Descriptor of an existing remote backup; only needs a signed-in user."""
        return await self._fetch_descriptor(self._require_identity())

    async def _fetch_descriptor(self, identity: Identity) -> RemoteBackupDescriptor | None:
        remote_path = remote_backup_path(identity.id)
        try:
            return await self._storage_call(
                f"Stat of {remote_path}", self._ctx.storage.stat, remote_path,
            )
        except ObjectNotFound:
            return None
