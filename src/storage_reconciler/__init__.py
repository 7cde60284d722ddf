"""Reconcile object storage and account resources toward a desired state."""

__version__ = "0.1.0"
