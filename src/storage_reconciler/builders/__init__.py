"""Builders for desired-state records and remote clients."""
