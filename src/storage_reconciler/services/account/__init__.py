"""Account management API layer."""

from .client import AccountAPIClient

__all__ = ["AccountAPIClient"]
