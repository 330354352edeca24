"""Collaborators of the backup subsystem, built once and passed around."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from budgetvault.core.config import load_config
from budgetvault.core.datastore import BudgetDB, Datastore
from budgetvault.core.scratch import TempResourceManager
from budgetvault.core.settings import LocalSettings
from budgetvault.providers.auth import AuthProvider, SessionAuth
from budgetvault.providers.entitlement import ConfigEntitlement, EntitlementCheck
from budgetvault.providers.registry import ProviderRegistry, build_registry
from budgetvault.providers.storage.base import RemoteStorage

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupContext:
    datastore: Datastore
    auth: AuthProvider
    entitlement: EntitlementCheck
    storage: RemoteStorage
    settings: LocalSettings
    scratch: TempResourceManager
    config: dict = field(default_factory=dict)


def build_context(
    home: Path,
    config: dict | None = None,
    registry: ProviderRegistry | None = None,
) -> BackupContext:
    """Wire the concrete adapters for a budgetvault home directory."""
    if config is None:
        config = load_config(home / ".bv" / "config.yaml")
    registry = registry or build_registry()

    storage_cfg = config.get("backup", {}).get("storage", {})
    provider_name = storage_cfg.get("provider", "local")
    storage = registry.create(provider_name, dict(storage_cfg.get(provider_name, {})))

    db_path = Path(config.get("datastore", {}).get("path", "budget.db")).expanduser()
    if not db_path.is_absolute():
        db_path = home / db_path

    log.debug("Backup context: storage=%s datastore=%s", provider_name, db_path)
    return BackupContext(
        datastore=BudgetDB(db_path),
        auth=SessionAuth(),
        entitlement=ConfigEntitlement(config),
        storage=storage,
        settings=LocalSettings(home / ".bv" / "settings.json"),
        scratch=TempResourceManager(home / ".bv" / "cache"),
        config=config,
    )
