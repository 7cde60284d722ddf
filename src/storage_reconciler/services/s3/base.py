"""Object storage capability interface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from ...models import VersionPage


class ObjectStorage(Protocol):
    """Protocol defining the object storage operations the reconcilers use.

    Implementations raise ``botocore.exceptions.ClientError`` (or any error
    the classifier understands) so callers can read the error code and HTTP
    status.
    """

    def create_bucket(self, name: str, object_lock_enabled: bool = False) -> None:
        """Create a bucket."""
        ...

    def head_bucket(self, name: str) -> None:
        """Check that a bucket exists; raises a not-found error otherwise."""
        ...

    def get_bucket_region(self, name: str) -> str:
        ...

    def get_object_lock_enabled(self, name: str) -> bool:
        """Return whether object lock is enabled on the bucket."""
        ...

    def delete_bucket(self, name: str) -> None:
        ...

    def get_bucket_tags(self, name: str) -> dict[str, str]:
        """Get bucket tags; a bucket without tags yields an empty mapping."""
        ...

    def put_bucket_tags(self, name: str, tags: dict[str, str]) -> None:
        """Replace all bucket tags."""
        ...

    def delete_bucket_tags(self, name: str) -> None:
        ...

    def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        content_disposition: str | None = None,
        content_encoding: str | None = None,
        metadata: dict[str, str] | None = None,
        tagging: str | None = None,
        lock_mode: str | None = None,
        lock_until: datetime | None = None,
    ) -> dict[str, Any]:
        """Upload an object; returns the raw response (ETag, VersionId)."""
        ...

    def copy_object(
        self,
        bucket: str,
        key: str,
        source: str,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        content_disposition: str | None = None,
        content_encoding: str | None = None,
        content_language: str | None = None,
        metadata: dict[str, str] | None = None,
        metadata_directive: str | None = None,
        tagging: str | None = None,
        tagging_directive: str | None = None,
        copy_if_match: str | None = None,
        copy_if_none_match: str | None = None,
        copy_if_modified_since: datetime | None = None,
        copy_if_unmodified_since: datetime | None = None,
    ) -> dict[str, Any]:
        """Copy ``source`` ("<bucket>/<key>[?versionId=<id>]") to bucket/key.

        Returns the raw response (CopyObjectResult, VersionId, CopySourceVersionId).
        """
        ...

    def head_object(self, bucket: str, key: str, version_id: str | None = None) -> dict[str, Any]:
        """Return the raw object metadata."""
        ...

    def get_object(self, bucket: str, key: str, version_id: str | None = None) -> bytes:
        """Return the object content."""
        ...

    def delete_object(
        self,
        bucket: str,
        key: str,
        version_id: str | None = None,
        bypass_governance: bool = False,
    ) -> None:
        """Delete an object or one of its versions."""
        ...

    def list_object_versions(
        self,
        bucket: str,
        prefix: str = "",
        key_marker: str | None = None,
        version_id_marker: str | None = None,
    ) -> VersionPage:
        """Return one page of versions and delete markers."""
        ...

    def get_object_tags(self, bucket: str, key: str) -> dict[str, str]:
        ...

    def put_object_tags(self, bucket: str, key: str, tags: dict[str, str]) -> None:
        """Replace all object tags."""
        ...

    def delete_object_tags(self, bucket: str, key: str) -> None:
        ...

    def put_object_retention(
        self,
        bucket: str,
        key: str,
        mode: str | None,
        until: datetime | None,
        bypass_governance: bool = False,
    ) -> None:
        """Set or clear object lock retention."""
        ...

    def get_object_legal_hold(self, bucket: str, key: str, version_id: str | None = None) -> str | None:
        """Return the legal hold status ("ON"/"OFF"), or None if unset."""
        ...

    def put_object_legal_hold(
        self, bucket: str, key: str, status: str, version_id: str | None = None
    ) -> None:
        ...
