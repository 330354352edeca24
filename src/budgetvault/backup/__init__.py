"""Backup subsystem: archive codec, transfer service, scheduling policy, sync state."""
