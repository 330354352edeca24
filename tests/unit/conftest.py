"""Shared fixtures: a wired BackupContext over temp directories."""

import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest

from budgetvault.backup.context import BackupContext
from budgetvault.core.config import DEFAULTS, _deep_merge
from budgetvault.core.datastore import BudgetDB
from budgetvault.core.models import Identity
from budgetvault.core.scratch import TempResourceManager
from budgetvault.core.settings import LocalSettings
from budgetvault.providers.auth import SessionAuth
from budgetvault.providers.storage.local import LocalObjectStorage

FAST_TRANSFER = {
    "backup": {
        "transfer": {
            "timeout_seconds": 5,
            "attempts": 1,
            "wait_min_seconds": 0,
            "wait_max_seconds": 0,
        },
    },
}


class StaticEntitlement:
    def __init__(self, entitled: bool = True) -> None:
        self.entitled = entitled

    def is_entitled(self) -> bool:
        return self.entitled


def create_budget_db(path: Path, amounts=(12.5,)) -> None:
    """Create a small SQLite budget database outside BudgetDB."""
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE IF NOT EXISTS txn (id INTEGER PRIMARY KEY, amount REAL)")
    conn.executemany("INSERT INTO txn (amount) VALUES (?)", [(a,) for a in amounts])
    conn.commit()
    conn.close()


@pytest.fixture
def make_context(tmp_path: Path):
    """Factory for a BackupContext backed by tmp_path.

    Defaults: signed in as U1, entitled, local storage under tmp_path/cloud,
    a one-row budget.db, single-attempt transfers.
    """

    def _make(
        signed_in: bool = True,
        entitled: bool = True,
        storage=None,
        datastore=None,
        config: dict | None = None,
    ) -> BackupContext:
        auth = SessionAuth(persist=False)
        if signed_in:
            auth.complete_sign_in(Identity(id="U1", email="u1@example.com"))

        if datastore is None:
            db_path = tmp_path / "budget.db"
            if not db_path.exists():
                create_budget_db(db_path)
            datastore = BudgetDB(db_path)

        if storage is None:
            storage = LocalObjectStorage({"path": str(tmp_path / "cloud")})

        return BackupContext(
            datastore=datastore,
            auth=auth,
            entitlement=StaticEntitlement(entitled),
            storage=storage,
            settings=LocalSettings(tmp_path / ".bv" / "settings.json"),
            scratch=TempResourceManager(tmp_path / "cache"),
            config=_deep_merge(DEFAULTS, config if config is not None else FAST_TRANSFER),
        )

    return _make


@pytest.fixture
def memory_keyring():
    """Replace the keyring backend with a dict."""
    store: dict = {}
    with patch("keyring.get_password", side_effect=lambda s, k: store.get((s, k))), \
            patch("keyring.set_password", side_effect=lambda s, k, v: store.__setitem__((s, k), v)), \
            patch("keyring.delete_password", side_effect=lambda s, k: store.pop((s, k), None)):
        yield store
