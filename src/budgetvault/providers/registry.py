"""Storage providers selectable through ``backup.storage.provider``."""

from __future__ import annotations

import importlib.util
import logging
from dataclasses import dataclass

from budgetvault.providers.storage.base import RemoteStorage

log = logging.getLogger(__name__)


class ProviderConfigError(ValueError):
    """The configured storage provider is unknown or its extra is not installed."""


@dataclass(frozen=True)
class StorageProvider:
    name: str
    cls: type
    requires: tuple[str, ...] = ()  # top-level import names
    extra: str | None = None  # pip extra that installs ``requires``

    def missing_modules(self) -> list[str]:
        return [m for m in self.requires if importlib.util.find_spec(m) is None]


class ProviderRegistry:
    """Name -> storage provider, checked for installability before use."""

    def __init__(self) -> None:
        self._providers: dict[str, StorageProvider] = {}

    def register(self, provider: StorageProvider) -> None:
        self._providers[provider.name] = provider

    def names(self) -> list[str]:
        return sorted(self._providers)

    def create(self, name: str, config: dict | None = None) -> RemoteStorage:
        """Instantiate the named provider with its config section.

        Raises ProviderConfigError naming the alternatives, or the pip extra
        to install, instead of failing later on first use.
        """
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderConfigError(
                f"Unknown storage provider {name!r} (available: {', '.join(self.names())})"
            )
        missing = provider.missing_modules()
        if missing:
            hint = f"; install with: pip install 'budgetvault[{provider.extra}]'" if provider.extra else ""
            raise ProviderConfigError(
                f"Storage provider {name!r} needs {', '.join(missing)}{hint}"
            )
        log.debug("Using storage provider %s", name)
        return provider.cls(config or {})


def build_registry() -> ProviderRegistry:
    """Registry with the built-in storage providers."""
    from budgetvault.providers.storage.gdrive import GDriveObjectStorage
    from budgetvault.providers.storage.local import LocalObjectStorage

    reg = ProviderRegistry()
    reg.register(StorageProvider("local", LocalObjectStorage))
    reg.register(StorageProvider(
        "gdrive", GDriveObjectStorage, requires=("googleapiclient", "google"), extra="gdrive",
    ))
    return reg
