"""Object storage service layer."""

from .base import ObjectStorage
from .client import ObjectStorageClient

__all__ = ["ObjectStorage", "ObjectStorageClient"]
