"""Read-only lookups of buckets and objects that are not managed here."""

from __future__ import annotations

import re
import threading

from ..constants import KIND_BUCKET, KIND_OBJECT
from ..errors import ReconcileError
from ..models import BucketState, ObjectInfo
from ..services.s3.base import ObjectStorage
from .base import BaseReconciler
from .object import object_state_from_head

# Bodies are only fetched for content meant to be read as text
_READABLE_CONTENT_TYPES = (re.compile(r"^text/.+"), re.compile(r"^application/json$"))


def is_readable_content_type(content_type: str | None) -> bool:
    return bool(content_type) and any(p.match(content_type) for p in _READABLE_CONTENT_TYPES)


class BucketLookup(BaseReconciler):
    """Looks up an existing bucket by name."""

    def __init__(self, storage: ObjectStorage, cancel: threading.Event | None = None):
        super().__init__(KIND_BUCKET, cancel)
        self.storage = storage

    def get(self, name: str) -> BucketState:
        """Return the bucket name and region.

        Raises:
            ReconcileError: If the bucket does not exist or cannot be read
        """

        def lookup() -> BucketState:
            self.storage.head_bucket(name)
            return BucketState(name=name, region=self.storage.get_bucket_region(name))

        return self.reconcile_with_metrics("lookup", name, lookup)


class ObjectLookup(BaseReconciler):
    """Looks up an existing object, optionally a specific version of it."""

    def __init__(self, storage: ObjectStorage, cancel: threading.Event | None = None):
        super().__init__(KIND_OBJECT, cancel)
        self.storage = storage

    def get(self, bucket: str, key: str, version_id: str | None = None) -> ObjectInfo:
        """Return the object's metadata, tags and, for text content, its body.

        Raises:
            ReconcileError: If the object does not exist, is a delete marker
                or cannot be read
        """
        ref = f"{bucket}/{key}"
        return self.reconcile_with_metrics("lookup", ref, lambda: self._get(bucket, key, version_id, ref))

    def _get(self, bucket: str, key: str, version_id: str | None, ref: str) -> ObjectInfo:
        head = self.storage.head_object(bucket, key, version_id=version_id)
        if head.get("DeleteMarker"):
            raise ReconcileError(self.kind, ref, "looking up", "the requested version is a delete marker")

        body = None
        if is_readable_content_type(head.get("ContentType")):
            body = self.storage.get_object(bucket, key, version_id=version_id).decode("utf-8", errors="replace")
        else:
            self.logger.debug(f"Not fetching body of {ref} with content type {head.get('ContentType')}")

        tags = self.storage.get_object_tags(bucket, key)
        return object_state_from_head(
            bucket, key, head, tags, cls=ObjectInfo, body=body, content_length=head.get("ContentLength")
        )
