"""Versioned backup archive: a ZIP container with two named entries.

- ``version``: ASCII decimal integer
- ``db_backup``: raw datastore snapshot bytes
"""

from __future__ import annotations

import io
import logging
import shutil
import zipfile
import zlib
from pathlib import Path

from budgetvault.backup.errors import CorruptArchive
from budgetvault.core.models import BackupArchive

log = logging.getLogger(__name__)

BACKUP_VERSION = 1
VERSION_ENTRY = "version"
SNAPSHOT_ENTRY = "db_backup"


def _check_version(version: int) -> None:
    if isinstance(version, bool) or not isinstance(version, int):
        raise TypeError(f"Archive version must be an int, got {type(version).__name__}")


def _parse_version(raw: bytes) -> int:
    try:
        return int(raw.decode("ascii").strip())
    except (UnicodeDecodeError, ValueError) as e:
        raise CorruptArchive(f"Archive version entry is not an integer: {raw[:32]!r}") from e


def _require_entries(zf: zipfile.ZipFile) -> None:
    names = set(zf.namelist())
    for entry in (VERSION_ENTRY, SNAPSHOT_ENTRY):
        if entry not in names:
            raise CorruptArchive(f"Archive is missing the {entry!r} entry")


def pack(snapshot: bytes, version: int = BACKUP_VERSION) -> bytes:
    """Build an archive in memory."""
    _check_version(version)
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(VERSION_ENTRY, str(version))
        zf.writestr(SNAPSHOT_ENTRY, snapshot)
    return buf.getvalue()


def unpack(data: bytes) -> BackupArchive:
    """Decode an in-memory archive. Raises CorruptArchive."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            _require_entries(zf)
            version = _parse_version(zf.read(VERSION_ENTRY))
            payload = zf.read(SNAPSHOT_ENTRY)
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise CorruptArchive(f"Not a backup archive: {e}") from e
    return BackupArchive(version=version, payload=payload)


def write_archive(snapshot_path: Path, archive_path: Path, version: int = BACKUP_VERSION) -> int:
    """Write an archive holding the snapshot file. Returns the archive size."""
    _check_version(version)
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(VERSION_ENTRY, str(version))
        zf.write(snapshot_path, arcname=SNAPSHOT_ENTRY)
    return archive_path.stat().st_size


def extract_archive(archive_path: Path, dest_dir: Path) -> tuple[int, Path]:
    """Extract the archive into dest_dir. Returns (version, snapshot_path).

    Only the two known entries are written, whatever else the container
    holds.
    """
    try:
        with zipfile.ZipFile(archive_path) as zf:
            _require_entries(zf)
            version = _parse_version(zf.read(VERSION_ENTRY))
            snapshot_path = dest_dir / SNAPSHOT_ENTRY
            with zf.open(SNAPSHOT_ENTRY) as src, open(snapshot_path, "wb") as dst:
                shutil.copyfileobj(src, dst)
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise CorruptArchive(f"Not a backup archive: {e}") from e

    log.debug("Extracted archive version %d to %s", version, dest_dir)
    return version, snapshot_path
