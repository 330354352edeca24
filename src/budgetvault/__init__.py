"""budgetvault: cloud backup and restore for a local-first budget tracker."""

__version__ = "0.4.0"
