"""Auth session: observable sign-in state with the identity kept in keyring."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Protocol, Union, runtime_checkable

from budgetvault.core.models import Identity
from budgetvault.core.signals import ObservableValue

log = logging.getLogger(__name__)

_KEYRING_SERVICE = "budgetvault"
_KEYRING_KEY = "identity"


@dataclass(frozen=True)
class SignedOut:
    pass


@dataclass(frozen=True)
class SigningIn:
    pass


@dataclass(frozen=True)
class SignedIn:
    identity: Identity


AuthState = Union[SignedOut, SigningIn, SignedIn]


@runtime_checkable
class AuthProvider(Protocol):
    """What the backup subsystem needs from authentication."""

    @property
    def state(self) -> ObservableValue[AuthState]:
        ...

    def current_identity(self) -> Identity | None:
        ...

    def sign_out(self) -> None:
        ...


class SessionAuth:
    """Holds the auth state; the sign-in flow itself lives in the host app.

    The host calls ``begin_sign_in`` when the user starts authenticating and
    ``complete_sign_in`` with the identity the identity provider returned.
    """

    def __init__(self, persist: bool = True) -> None:
        self._persist = persist
        self.state: ObservableValue[AuthState] = ObservableValue(SignedOut())
        if persist:
            identity = self._load_identity()
            if identity is not None:
                self.state.set(SignedIn(identity))

    def current_identity(self) -> Identity | None:
        current = self.state.value
        if isinstance(current, SignedIn):
            return current.identity
        return None

    def begin_sign_in(self) -> None:
        self.state.set(SigningIn())

    def complete_sign_in(self, identity: Identity) -> None:
        self._store_identity(identity)
        self.state.set(SignedIn(identity))
        log.info("Signed in as %s", identity.email or identity.id)

    def sign_out(self) -> None:
        self._store_identity(None)
        self.state.set(SignedOut())
        log.info("Signed out")

    # --- Keyring persistence ---

    def _load_identity(self) -> Identity | None:
        try:
            import keyring

            raw = keyring.get_password(_KEYRING_SERVICE, _KEYRING_KEY)
        except Exception:
            log.warning("Keyring unavailable, starting signed out", exc_info=True)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return Identity(id=str(data["id"]), email=str(data.get("email", "")))
        except (json.JSONDecodeError, KeyError, TypeError):
            log.warning("Ignoring malformed identity in keyring")
            return None

    def _store_identity(self, identity: Identity | None) -> None:
        if not self._persist:
            return
        try:
            import keyring

            if identity is None:
                if keyring.get_password(_KEYRING_SERVICE, _KEYRING_KEY) is not None:
                    keyring.delete_password(_KEYRING_SERVICE, _KEYRING_KEY)
            else:
                keyring.set_password(
                    _KEYRING_SERVICE, _KEYRING_KEY,
                    json.dumps({"id": identity.id, "email": identity.email}),
                )
        except Exception:
            log.warning("Failed to persist identity to keyring", exc_info=True)
