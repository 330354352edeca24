"""RemoteStorage Protocol and types."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from budgetvault.core.models import RemoteBackupDescriptor


class StorageError(Exception):
    """Network or remote-side failure of a storage call."""


class ObjectNotFound(StorageError):
    """The remote object does not exist."""


@dataclass
class StorageInfo:
    """Metadata about a remote storage provider."""

    display_name: str
    version: str
    requires_auth: bool


@runtime_checkable
class RemoteStorage(Protocol):
    """Contract for remote object storage addressed by slash-separated paths."""

    @property
    def name(self) -> str:
        """Unique provider ID: 'local', 'gdrive', etc."""
        ...

    @property
    def info(self) -> StorageInfo:
        """Provider metadata."""
        ...

    def upload(self, local_path: Path, remote_path: str) -> None:
        """Store local_path at remote_path, replacing any existing object."""
        ...

    def download(self, remote_path: str, local_path: Path) -> None:
        """Fetch remote_path into local_path. Raises ObjectNotFound."""
        ...

    def delete(self, remote_path: str) -> bool:
        """Remove the object. Returns False when there was nothing to remove."""
        ...

    def stat(self, remote_path: str) -> RemoteBackupDescriptor | None:
        """Object metadata, or None when it does not exist."""
        ...
