"""Scoped scratch files and directories with guaranteed cleanup."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
import threading
from collections import deque
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from budgetvault.core.fileutil import ensure_dir

log = logging.getLogger(__name__)

_MAX_RECORDED_FAILURES = 100


@dataclass
class CleanupFailed:
    """A scratch resource that could not be deleted."""

    path: Path
    error: str

    def __str__(self) -> str:
        return f"Failed to delete scratch resource {self.path}: {self.error}"


class TempResourceManager:
    """Hand out scratch files and directories under a process-private cache dir.

    Every resource is unique to the acquisition that created it and is
    deleted when its ``with`` block exits, whatever the exit path. Deletion
    errors are logged and the most recent ones kept in ``cleanup_failures``;
    they are never raised.
    """

    def __init__(self, cache_root: Path | None = None) -> None:
        self._cache_root = cache_root
        self._root: Path | None = None
        self._lock = threading.Lock()
        self.cleanup_failures: deque[CleanupFailed] = deque(maxlen=_MAX_RECORDED_FAILURES)

    @property
    def root(self) -> Path:
        """The private directory, created on first use."""
        with self._lock:
            if self._root is None or not self._root.exists():
                parent = self._cache_root
                if parent is not None:
                    ensure_dir(parent)
                self._root = Path(tempfile.mkdtemp(
                    prefix=f"budgetvault-{os.getpid()}-",
                    dir=str(parent) if parent is not None else None,
                ))
            return self._root

    @contextmanager
    def scratch_file(self, name: str) -> Generator[Path, None, None]:
        """Yield the path of an empty scratch file named after ``name``."""
        fd, raw_path = tempfile.mkstemp(prefix=f"{name}-", dir=str(self.root))
        os.close(fd)
        path = Path(raw_path)
        try:
            yield path
        finally:
            self._delete(path)

    @contextmanager
    def scratch_dir(self, name: str) -> Generator[Path, None, None]:
        """Yield the path of an empty scratch directory named after ``name``."""
        path = Path(tempfile.mkdtemp(prefix=f"{name}-", dir=str(self.root)))
        try:
            yield path
        finally:
            self._delete(path)

    def _delete(self, path: Path) -> None:
        try:
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
        except OSError as e:
            failure = CleanupFailed(path=path, error=str(e))
            self.cleanup_failures.append(failure)
            log.warning("%s", failure)

    def close(self) -> None:
        """Remove the private cache directory."""
        with self._lock:
            if self._root is not None:
                with contextlib.suppress(OSError):
                    shutil.rmtree(self._root)
                self._root = None
