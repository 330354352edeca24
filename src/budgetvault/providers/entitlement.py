"""Entitlement check: is the user allowed to use cloud backup."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class EntitlementCheck(Protocol):
    def is_entitled(self) -> bool:
        ...


class ConfigEntitlement:
    """Reads the premium flag from config (entitlement.premium)."""

    def __init__(self, config: dict | None = None) -> None:
        config = config or {}
        self._premium = bool(config.get("entitlement", {}).get("premium", False))

    def is_entitled(self) -> bool:
        return self._premium
