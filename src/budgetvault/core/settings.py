"""Local settings store: last backup date, restore flag, backup preference."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

from budgetvault.core.fileutil import atomic_write

log = logging.getLogger(__name__)

_LAST_BACKUP_KEY = "last_backup_date"
_FORCE_REINIT_KEY = "should_reset_init_date"
_BACKUP_ENABLED_KEY = "backup_enabled"


class LocalSettings:
    """Small JSON key/value store at .bv/settings.json.

    Every write rewrites the whole document atomically.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            log.warning("Failed to load settings at %s, starting fresh", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _update(self, key: str, value: object) -> None:
        with self._lock:
            data = self._load()
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
            atomic_write(self.path, json.dumps(data, indent=2))

    # --- Last backup record ---

    def get_last_backup_date(self) -> datetime | None:
        raw = self._load().get(_LAST_BACKUP_KEY)
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw)
        except (ValueError, TypeError):
            log.warning("Ignoring malformed last backup date: %r", raw)
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def set_last_backup_date(self, when: datetime) -> None:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        self._update(_LAST_BACKUP_KEY, when.astimezone(timezone.utc).isoformat())

    # --- Restore flag ---

    def set_force_reinit_flag(self) -> None:
        """Ask the rest of the app to re-derive its initial tracking date."""
        self._update(_FORCE_REINIT_KEY, True)

    def should_reset_init_date(self) -> bool:
        return bool(self._load().get(_FORCE_REINIT_KEY, False))

    def clear_force_reinit_flag(self) -> None:
        self._update(_FORCE_REINIT_KEY, None)

    # --- Backup preference ---

    def is_backup_enabled(self, default: bool = False) -> bool:
        """The stored switch position, or ``default`` if never set."""
        return bool(self._load().get(_BACKUP_ENABLED_KEY, default))

    def set_backup_enabled(self, enabled: bool) -> None:
        self._update(_BACKUP_ENABLED_KEY, bool(enabled))
