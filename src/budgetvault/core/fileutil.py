"""File system utilities: atomic writes and copies, secure directories."""

from __future__ import annotations

import contextlib
import logging
import os
import platform
import shutil
import tempfile
from pathlib import Path

log = logging.getLogger(__name__)

FILE_MODE = 0o600
DIR_MODE = 0o700

_IS_WINDOWS = platform.system() == "Windows"


def ensure_dir(path: Path) -> Path:
    """Create directory with secure permissions if it doesn't exist."""
    path.mkdir(parents=True, exist_ok=True)
    if not _IS_WINDOWS:
        path.chmod(DIR_MODE)
    return path


def ensure_file_permissions(path: Path) -> None:
    """Set file permissions to owner-only read/write."""
    if not _IS_WINDOWS and path.exists():
        path.chmod(FILE_MODE)


def atomic_write(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write content to file atomically via temp file + rename.

    Ensures the file is never partially written on crash.
    """
    ensure_dir(path.parent)

    # Temp file in the same directory so the rename stays on one file system
    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".tmp_",
        suffix=path.suffix,
    )
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise

    ensure_file_permissions(path)


def atomic_copy(src: Path, dst: Path) -> int:
    """Copy src over dst atomically. Returns the number of bytes copied.

    The copy is flushed to disk before it replaces dst, so dst is always
    either the old file or the complete new one.
    """
    dst.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=dst.parent, prefix=".tmp_", suffix=dst.suffix)
    try:
        with os.fdopen(fd, "wb") as out, open(src, "rb") as inp:
            shutil.copyfileobj(inp, out)
            out.flush()
            os.fsync(out.fileno())
        os.replace(tmp_path, dst)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise

    return dst.stat().st_size
