"""Local object storage: a directory standing in for a cloud bucket."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from budgetvault.core.fileutil import atomic_copy
from budgetvault.core.models import RemoteBackupDescriptor
from budgetvault.providers.storage.base import ObjectNotFound, StorageError, StorageInfo

log = logging.getLogger(__name__)


class LocalObjectStorage:
    """Store objects as files under a root directory (NAS mount, synced folder)."""

    def __init__(self, config: dict | None = None) -> None:
        config = config or {}
        self._root = Path(config.get("path", "")).expanduser()

    @property
    def name(self) -> str:
        return "local"

    @property
    def info(self) -> StorageInfo:
        return StorageInfo(
            display_name="Local directory",
            version="1.0.0",
            requires_auth=False,
        )

    def _resolve(self, remote_path: str) -> Path:
        parts = PurePosixPath(remote_path).parts
        if not parts or any(p in ("..", "/") for p in parts):
            raise StorageError(f"Invalid remote path: {remote_path!r}")
        return self._root.joinpath(*parts)

    def upload(self, local_path: Path, remote_path: str) -> None:
        target = self._resolve(remote_path)
        try:
            size = atomic_copy(local_path, target)
        except OSError as e:
            raise StorageError(f"Upload to {remote_path} failed: {e}") from e
        log.info("Uploaded %s (%d bytes)", remote_path, size)

    def download(self, remote_path: str, local_path: Path) -> None:
        source = self._resolve(remote_path)
        if not source.is_file():
            raise ObjectNotFound(f"No object at {remote_path}")
        try:
            shutil.copyfile(source, local_path)
        except OSError as e:
            raise StorageError(f"Download of {remote_path} failed: {e}") from e

    def delete(self, remote_path: str) -> bool:
        target = self._resolve(remote_path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Delete of {remote_path} failed: {e}") from e
        return True

    def stat(self, remote_path: str) -> RemoteBackupDescriptor | None:
        target = self._resolve(remote_path)
        try:
            st = target.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Stat of {remote_path} failed: {e}") from e
        return RemoteBackupDescriptor(
            path=remote_path,
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            size=st.st_size,
        )
