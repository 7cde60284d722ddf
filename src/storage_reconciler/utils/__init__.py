"""Utility modules for the storage reconciler."""
