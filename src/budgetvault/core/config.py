"""Configuration loader for budgetvault."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

log = logging.getLogger(__name__)

DEFAULTS: dict = {
    "datastore": {
        "path": "budget.db",
    },
    "backup": {
        "enabled": False,
        "storage": {
            "provider": "local",
            "local": {"path": "~/budgetvault-cloud"},
            "gdrive": {"folder_id": "", "credential": "keyring"},
        },
        # Per-call envelope around every remote storage call
        "transfer": {
            "timeout_seconds": 10,
            "attempts": 3,
            "wait_min_seconds": 1,
            "wait_max_seconds": 10,
        },
        "schedule": {
            "period_days": 7,
            "initial_delay_days": 1,
            "requires_charging": True,
            "requires_network": True,
            "backoff_initial_minutes": 5,
            "backoff_max_minutes": 300,
            "max_retries": 5,
            "constraint_recheck_minutes": 15,
        },
    },
    "entitlement": {
        "premium": False,
    },
    "daemon": {
        "log_level": "info",
    },
}


def resolve_home() -> Path:
    """Resolve BV_HOME: env var > default ~/budgetvault."""
    env_home = os.environ.get("BV_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path("~/budgetvault").expanduser().resolve()


def config_path(home: Path | None = None) -> Path:
    """Return the path to config.yaml."""
    if home is None:
        home = resolve_home()
    return home / ".bv" / "config.yaml"


def load_config(path: Path | None = None) -> dict:
    """Load config.yaml and merge with defaults.

    Args:
        path: Explicit path to config.yaml. If None, uses default location.

    Returns:
        Merged configuration dict.
    """
    if path is None:
        path = config_path()

    user_config: dict = {}
    if path.exists():
        try:
            raw = path.read_text(encoding="utf-8")
            user_config = yaml.safe_load(raw) or {}
        except Exception:
            log.warning("Failed to read config at %s, using defaults", path, exc_info=True)

    return _deep_merge(DEFAULTS, user_config)


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
