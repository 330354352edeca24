"""Core data models for the backup subsystem."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import NamedTuple


# --- Enums ---


class Operation(str, Enum):
    """A remote operation that can be in flight."""

    BACKUP = "backup"
    RESTORE = "restore"
    DELETE = "delete"


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobOutcome(str, Enum):
    """What a recurring task body reports back to the runner."""

    SUCCESS = "success"
    RETRY = "retry"
    FAILURE = "failure"


# --- Models ---


@dataclass(frozen=True)
class Identity:
    """The signed-in user, as reported by the auth provider."""

    id: str
    email: str = ""


class BackupArchive(NamedTuple):
    """Decoded archive contents."""

    version: int
    payload: bytes


@dataclass(frozen=True)
class RemoteBackupDescriptor:
    """Metadata of the remote backup object."""

    path: str
    last_modified: datetime
    size: int


@dataclass(frozen=True)
class JobStatus:
    """Status record of one recurring job registration."""

    tag: str
    job_id: str
    state: JobState
    attempt: int = 0
    next_run_time: datetime | None = None
    message: str = ""


def remote_backup_path(user_id: str) -> str:
    """Remote object path holding the backup of a user.

    Ids containing path separators are rejected so that two users can never
    map to the same object.
    """
    if not user_id or "/" in user_id or "\\" in user_id or user_id in (".", ".."):
        raise ValueError(f"Invalid user id for backup path: {user_id!r}")
    return f"user/{user_id}/backup.zip"
