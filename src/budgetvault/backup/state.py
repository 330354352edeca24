"""Cloud backup status shown to the user, derived from independent signals."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from budgetvault.backup.context import BackupContext
from budgetvault.core.models import Identity, Operation, RemoteBackupDescriptor
from budgetvault.core.signals import ObservableValue, Subscription
from budgetvault.providers.auth import AuthState, SignedIn, SigningIn

log = logging.getLogger(__name__)


# --- States ---


@dataclass(frozen=True)
class NotAuthenticated:
    pass


@dataclass(frozen=True)
class Authenticating:
    pass


@dataclass(frozen=True)
class NotActivated:
    identity: Identity


@dataclass(frozen=True)
class Activated:
    identity: Identity
    last_backup_date: datetime | None
    restore_available: bool
    delete_available: bool
    backup_now_available: bool


@dataclass(frozen=True)
class BackupInProgress:
    identity: Identity


@dataclass(frozen=True)
class RestorationInProgress:
    identity: Identity


@dataclass(frozen=True)
class DeletionInProgress:
    identity: Identity


SyncState = Union[
    NotAuthenticated,
    Authenticating,
    NotActivated,
    Activated,
    BackupInProgress,
    RestorationInProgress,
    DeletionInProgress,
]

_IN_PROGRESS = {
    Operation.BACKUP: BackupInProgress,
    Operation.RESTORE: RestorationInProgress,
    Operation.DELETE: DeletionInProgress,
}


def derive_state(
    auth_state: AuthState,
    entitled: bool,
    remote_descriptor: RemoteBackupDescriptor | None,
    last_backup_date: datetime | None,
    operation: Operation | None,
) -> SyncState:
    """Map the five input signals to exactly one state."""
    if isinstance(auth_state, SigningIn):
        return Authenticating()
    if not isinstance(auth_state, SignedIn):
        return NotAuthenticated()

    identity = auth_state.identity
    if not entitled:
        return NotActivated(identity)

    if operation is not None:
        return _IN_PROGRESS[operation](identity)

    has_remote = remote_descriptor is not None
    return Activated(
        identity=identity,
        last_backup_date=last_backup_date,
        restore_available=has_remote,
        delete_available=has_remote,
        backup_now_available=True,
    )


class SyncStateMachine:
    """Recomputes ``state`` whenever auth or the operation flag changes.

    Entitlement and the remote descriptor are fetched by ``refresh()``,
    which callers run after sign-in and after every finished operation.
    """

    def __init__(
        self,
        context: BackupContext,
        operation_flag: ObservableValue[Operation | None],
        service=None,
    ) -> None:
        self._ctx = context
        self._operation_flag = operation_flag
        self._service = service
        self._entitled = False
        self._remote_descriptor: RemoteBackupDescriptor | None = None
        self.state: ObservableValue[SyncState] = ObservableValue(NotAuthenticated())
        self._subscriptions: list[Subscription] = [
            context.auth.state.subscribe(lambda _value: self._recompute()),
            operation_flag.subscribe(lambda _value: self._recompute()),
        ]

    def _recompute(self) -> None:
        self.state.set(derive_state(
            self._ctx.auth.state.value,
            self._entitled,
            self._remote_descriptor,
            self._ctx.settings.get_last_backup_date(),
            self._operation_flag.value,
        ))

    async def refresh(self) -> SyncState:
        """Re-fetch entitlement and the remote descriptor, then recompute."""
        if self._ctx.auth.current_identity() is None:
            self._entitled = False
            self._remote_descriptor = None
        else:
            self._entitled = self._ctx.entitlement.is_entitled()
            self._remote_descriptor = None
            if self._entitled and self._service is not None:
                try:
                    self._remote_descriptor = await self._service.query_remote_backup_descriptor()
                except Exception as e:
                    log.warning("Could not fetch remote backup metadata: %s", e)
        self._recompute()
        return self.state.value

    @property
    def remote_descriptor(self) -> RemoteBackupDescriptor | None:
        return self._remote_descriptor

    def close(self) -> None:
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions.clear()
