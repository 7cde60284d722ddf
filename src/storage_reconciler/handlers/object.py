"""Object reconciler."""

from __future__ import annotations

import hashlib
import re
import threading
from typing import Any, TypeVar

from botocore.exceptions import ClientError

from .. import metrics
from ..constants import KIND_OBJECT, TAG_TIMEOUT_SECONDS
from ..errors import DesiredStateError, ImmutableFieldError, ObjectDeletionError, ReconcileError
from ..models import ObjectSpec, ObjectState
from ..reconcile.destroy import delete_all_object_versions, delete_object_version
from ..reconcile.tags import normalize_tags, update_object_tags, url_encode_tags
from ..services.s3.base import ObjectStorage
from ..utils.dates import to_utc
from .base import BaseReconciler

IMMUTABLE_FIELDS = ("bucket", "key")

# Fields whose change requires uploading the object again
CONTENT_FIELDS = ("content_type", "cache_control", "content_disposition", "content_encoding")

_SLASHES = re.compile(r"/+")

S = TypeVar("S", bound=ObjectState)


def normalize_key(key: str) -> str:
    """Strip leading slashes and collapse repeated ones, as the backend does."""
    return _SLASHES.sub("/", key.lstrip("/"))


def parse_object_id(object_id: str) -> tuple[str, str]:
    """Split "<bucket>/<key>" or "s3://<bucket>/<key>" into bucket and key."""
    parts = object_id.removeprefix("s3://").split("/", 1)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise DesiredStateError(f"id {object_id} should be in format <bucket>/<key> or s3://<bucket>/<key>")
    return parts[0], parts[1]


def object_state_from_head(
    bucket: str, key: str, head: dict[str, Any], tags: dict[str, str], cls: type[S] = ObjectState, **extra: Any
) -> S:
    """Build an observed object state from a head response and its tags."""
    return cls(
        bucket=bucket,
        key=key,
        etag=(head.get("ETag") or "").strip('"'),
        version_id=head.get("VersionId"),
        content_type=head.get("ContentType"),
        cache_control=head.get("CacheControl"),
        content_disposition=head.get("ContentDisposition"),
        content_encoding=head.get("ContentEncoding"),
        content_language=head.get("ContentLanguage"),
        # Some backends capitalize metadata keys
        metadata={k.lower(): v for k, v in (head.get("Metadata") or {}).items()},
        tags=tags,
        lock_mode=head.get("ObjectLockMode"),
        lock_until=to_utc(head.get("ObjectLockRetainUntilDate")),
        last_modified=head.get("LastModified"),
        **extra,
    )


def load_body(spec: ObjectSpec) -> bytes:
    """Return the object content from ``body`` or the ``source`` file."""
    if spec.body is not None:
        return spec.body
    if spec.source:
        try:
            with open(spec.source, "rb") as f:
                return f.read()
        except OSError as e:
            raise ReconcileError(KIND_OBJECT, f"{spec.bucket}/{spec.key}", "opening source of", e) from e
    return b""


class ObjectReconciler(BaseReconciler):
    """Drives an object through create, read, update and delete."""

    def __init__(self, storage: ObjectStorage, cancel: threading.Event | None = None):
        super().__init__(KIND_OBJECT, cancel)
        self.storage = storage

    def create(self, spec: ObjectSpec) -> ObjectState:
        return self.reconcile_with_metrics("create", _ref(spec), lambda: self._upload(spec, is_new=True))

    def read(self, bucket: str, key: str, is_new: bool = False) -> ObjectState:
        return self.reconcile_with_metrics("read", f"{bucket}/{key}", lambda: self._read(bucket, key, is_new))

    def update(self, current: ObjectState, desired: ObjectSpec) -> ObjectState:
        """Converge an existing object.

        Content changes re-upload the object; otherwise tags and retention
        are updated in place.
        """
        return self.reconcile_with_metrics("update", _ref(desired), lambda: self._update(current, desired))

    def delete(self, current: ObjectState, force_destroy: bool = False) -> None:
        """Delete the object; every version of it when the bucket is versioned."""
        self.reconcile_with_metrics(
            "delete", f"{current.bucket}/{current.key}", lambda: self._delete(current, force_destroy)
        )

    def _upload(self, spec: ObjectSpec, is_new: bool) -> ObjectState:
        ref = _ref(spec)
        self.log_info(ref, "Uploading object", event="create" if is_new else "update", reason="Uploading")
        body = load_body(spec)

        def upload() -> dict:
            return self.storage.put_object(
                spec.bucket,
                spec.key,
                body,
                content_type=spec.content_type,
                cache_control=spec.cache_control,
                content_disposition=spec.content_disposition,
                content_encoding=spec.content_encoding,
                metadata=dict(spec.metadata),
                tagging=url_encode_tags(spec.tags),
                lock_mode=spec.lock_mode,
                lock_until=to_utc(spec.lock_until),
            )

        if is_new:
            self.create_with_retry(upload)
        else:
            upload()
        return self._read(spec.bucket, spec.key, is_new=is_new)

    def _read(self, bucket: str, key: str, is_new: bool) -> ObjectState:
        head = self.observe(f"{bucket}/{key}", lambda: self.storage.head_object(bucket, key), is_new)

        tags = self.follow_up(
            f"{bucket}/{key}",
            lambda: self.storage.get_object_tags(bucket, key),
            is_new,
            "object_tags",
            timeout=TAG_TIMEOUT_SECONDS,
        )
        return object_state_from_head(bucket, key, head, tags)

    def _content_changed(self, current: ObjectState, desired: ObjectSpec) -> bool:
        if any(getattr(desired, f) is not None and getattr(desired, f) != getattr(current, f) for f in CONTENT_FIELDS):
            return True
        if dict(desired.metadata) != current.metadata:
            return True
        # Single-part uploads carry the MD5 of their content as ETag
        return hashlib.md5(load_body(desired)).hexdigest() != current.etag

    def _update(self, current: ObjectState, desired: ObjectSpec) -> ObjectState:
        ref = _ref(desired)
        changed = [f for f in IMMUTABLE_FIELDS if getattr(current, f) != getattr(desired, f)]
        if changed:
            raise ImmutableFieldError(self.kind, ref, changed)

        if self._content_changed(current, desired):
            metrics.drift_detected_total.labels(kind=self.kind, resource_type="content").inc()
            return self._upload(desired, is_new=False)

        if normalize_tags(current.tags) != normalize_tags(desired.tags):
            metrics.drift_detected_total.labels(kind=self.kind, resource_type="tags").inc()
            update_object_tags(
                self.storage, desired.bucket, desired.key, current.tags, desired.tags, cancel=self.cancel
            )

        current_until, desired_until = to_utc(current.lock_until), to_utc(desired.lock_until)
        if (current.lock_mode, current_until) != (desired.lock_mode, desired_until):
            metrics.drift_detected_total.labels(kind=self.kind, resource_type="retention").inc()
            # Shortening or removing governance retention needs the bypass
            shortening = current_until is not None and (desired_until is None or desired_until < current_until)
            self.log_info(ref, "Updating object retention", event="update", reason="RetentionChanged")
            try:
                self.storage.put_object_retention(
                    desired.bucket,
                    desired.key,
                    desired.lock_mode,
                    desired_until,
                    bypass_governance=shortening,
                )
            except ClientError as e:
                raise ReconcileError(self.kind, ref, "updating retention of", e) from e

        return self._read(desired.bucket, desired.key, is_new=False)

    def _delete(self, current: ObjectState, force_destroy: bool) -> None:
        key = normalize_key(current.key)
        ref = f"{current.bucket}/{key}"
        try:
            if current.version_id:
                deleted = delete_all_object_versions(self.storage, current.bucket, key, force=force_destroy)
                self.log_info(ref, "Object versions deleted", event="delete", reason="Deleted", deleted=deleted)
            else:
                delete_object_version(self.storage, current.bucket, key, None, False)
                self.log_info(ref, "Object deleted", event="delete", reason="Deleted")
        except (ClientError, ObjectDeletionError) as e:
            raise ReconcileError(self.kind, ref, "deleting", e) from e


def _ref(spec: ObjectSpec) -> str:
    return f"{spec.bucket}/{spec.key}"
