"""Collaborator adapters: remote storage, auth session, entitlement."""
