"""Tests for budgetvault.providers.auth and entitlement."""

import json

from budgetvault.core.models import Identity
from budgetvault.providers.auth import AuthProvider, SessionAuth, SignedIn, SignedOut, SigningIn
from budgetvault.providers.entitlement import ConfigEntitlement, EntitlementCheck


class TestSessionAuth:
    def test_starts_signed_out(self):
        auth = SessionAuth(persist=False)
        assert auth.state.value == SignedOut()
        assert auth.current_identity() is None
        assert isinstance(auth, AuthProvider)

    def test_sign_in_flow(self):
        auth = SessionAuth(persist=False)
        seen = []
        auth.state.subscribe(seen.append)

        auth.begin_sign_in()
        auth.complete_sign_in(Identity("U1", "u1@example.com"))

        assert seen == [SignedOut(), SigningIn(), SignedIn(Identity("U1", "u1@example.com"))]
        assert auth.current_identity() == Identity("U1", "u1@example.com")

    def test_sign_out(self):
        auth = SessionAuth(persist=False)
        auth.complete_sign_in(Identity("U1"))
        auth.sign_out()
        assert auth.current_identity() is None


class TestKeyringPersistence:
    def test_identity_survives_restart(self, memory_keyring):
        SessionAuth().complete_sign_in(Identity("U7", "seven@example.com"))

        assert json.loads(memory_keyring[("budgetvault", "identity")])["id"] == "U7"
        assert SessionAuth().current_identity() == Identity("U7", "seven@example.com")

    def test_sign_out_forgets_identity(self, memory_keyring):
        SessionAuth().complete_sign_in(Identity("U7"))
        SessionAuth().sign_out()

        assert memory_keyring == {}
        assert SessionAuth().current_identity() is None

    def test_malformed_entry_ignored(self, memory_keyring):
        memory_keyring[("budgetvault", "identity")] = "{not json"
        assert SessionAuth().current_identity() is None


class TestConfigEntitlement:
    def test_default_not_entitled(self):
        check = ConfigEntitlement({})
        assert check.is_entitled() is False
        assert isinstance(check, EntitlementCheck)

    def test_premium(self):
        assert ConfigEntitlement({"entitlement": {"premium": True}}).is_entitled() is True
