"""Backup error kinds.

``retryable`` tells the recurring job whether a later attempt may succeed.
"""

from __future__ import annotations


class BackupError(Exception):
    """Base class for backup, restore and delete failures."""

    retryable = False


class AuthRequired(BackupError):
    """No authenticated identity."""


class NotEntitled(BackupError):
    """The user does not hold the backup entitlement."""


class OperationInProgress(BackupError):
    """Another backup, restore or delete is already running."""

    retryable = True


class FlushFailed(BackupError):
    """The datastore could not flush pending writes to disk."""


class SnapshotCopyFailed(BackupError):
    """The durable snapshot could not be copied to scratch."""


class ArchiveFailed(BackupError):
    """The backup archive could not be built."""

    retryable = True


class TransferFailed(BackupError):
    """Upload or download failed (network or remote storage error)."""

    retryable = True


class BackupNotFound(BackupError):
    """There is no remote backup for this user."""


class CorruptArchive(BackupError):
    """The archive is malformed or misses one of its entries."""


class UnsupportedArchiveVersion(CorruptArchive):
    """The archive was written with a version this build cannot restore."""

    def __init__(self, version: int) -> None:
        super().__init__(f"Unsupported backup archive version: {version}")
        self.version = version


class RestoreFailed(BackupError):
    """The datastore could not be replaced with the restored snapshot."""


class SettingsWriteFailed(BackupError):
    """The operation finished remotely but its local record could not be written."""
