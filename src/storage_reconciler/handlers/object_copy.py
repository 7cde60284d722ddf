"""Object copy reconciler."""

from __future__ import annotations

import threading

from botocore.exceptions import ClientError

from .. import metrics
from ..constants import DIRECTIVE_REPLACE, KIND_OBJECT_COPY, TAG_TIMEOUT_SECONDS
from ..errors import ImmutableFieldError, ReconcileError
from ..models import ObjectCopySpec, ObjectCopyState
from ..reconcile.destroy import delete_object_version
from ..reconcile.tags import normalize_tags, update_object_tags, url_encode_tags
from ..services.s3.base import ObjectStorage
from ..utils.dates import to_utc
from .base import BaseReconciler
from .object import CONTENT_FIELDS, normalize_key, object_state_from_head

# A copy keeps pointing at the object it was made from
IMMUTABLE_FIELDS = ("bucket", "key", "source")


class ObjectCopyReconciler(BaseReconciler):
    """Maintains an object that is a server-side copy of another object.

    Content fields and metadata are only compared when the metadata
    directive is REPLACE, and tags only when the tagging directive is
    REPLACE; under COPY they follow the source object.
    """

    def __init__(self, storage: ObjectStorage, cancel: threading.Event | None = None):
        super().__init__(KIND_OBJECT_COPY, cancel)
        self.storage = storage

    def create(self, spec: ObjectCopySpec) -> ObjectCopyState:
        return self.reconcile_with_metrics("create", _ref(spec), lambda: self._copy(spec, is_new=True))

    def read(self, current: ObjectCopyState, is_new: bool = False) -> ObjectCopyState:
        """Refresh the observed state of a copy.

        Raises:
            ResourceGoneError: If the copy disappeared since it was last observed
        """
        return self.reconcile_with_metrics(
            "read",
            f"{current.bucket}/{current.key}",
            lambda: self._read(current.bucket, current.key, current.source, current.source_version_id, is_new),
        )

    def update(self, current: ObjectCopyState, desired: ObjectCopySpec) -> ObjectCopyState:
        """Converge an existing copy.

        A copy with any precondition is copied again on every update, as is
        one whose replaced content fields or metadata drifted. Tag drift
        alone is fixed in place.
        """
        return self.reconcile_with_metrics("update", _ref(desired), lambda: self._update(current, desired))

    def delete(self, current: ObjectCopyState) -> None:
        """Delete the current version of the copy."""
        key = normalize_key(current.key)
        ref = f"{current.bucket}/{key}"

        def delete() -> None:
            try:
                delete_object_version(self.storage, current.bucket, key, None, False)
            except ClientError as e:
                raise ReconcileError(self.kind, ref, "deleting", e) from e
            self.log_info(ref, "Object copy deleted", event="delete", reason="Deleted")

        self.reconcile_with_metrics("delete", ref, delete)

    def _copy(self, spec: ObjectCopySpec, is_new: bool) -> ObjectCopyState:
        ref = _ref(spec)
        self.log_info(
            ref, f"Copying object from {spec.source}", event="create" if is_new else "update", reason="Copying"
        )

        def copy() -> dict:
            return self.storage.copy_object(
                spec.bucket,
                spec.key,
                spec.source,
                content_type=spec.content_type,
                cache_control=spec.cache_control,
                content_disposition=spec.content_disposition,
                content_encoding=spec.content_encoding,
                content_language=spec.content_language,
                metadata=dict(spec.metadata),
                metadata_directive=spec.metadata_directive,
                tagging=url_encode_tags(spec.tags),
                tagging_directive=spec.tagging_directive,
                copy_if_match=spec.copy_if_match,
                copy_if_none_match=spec.copy_if_none_match,
                copy_if_modified_since=to_utc(spec.copy_if_modified_since),
                copy_if_unmodified_since=to_utc(spec.copy_if_unmodified_since),
            )

        if is_new:
            response = self.create_with_retry(copy)
        else:
            try:
                response = copy()
            except ClientError as e:
                raise ReconcileError(self.kind, ref, "copying", e) from e
        return self._read(spec.bucket, spec.key, spec.source, response.get("CopySourceVersionId"), is_new)

    def _read(
        self, bucket: str, key: str, source: str, source_version_id: str | None, is_new: bool
    ) -> ObjectCopyState:
        ref = f"{bucket}/{key}"
        head = self.observe(ref, lambda: self.storage.head_object(bucket, key), is_new)
        tags = self.follow_up(
            ref, lambda: self.storage.get_object_tags(bucket, key), is_new, "object_tags", timeout=TAG_TIMEOUT_SECONDS
        )
        return object_state_from_head(
            bucket, key, head, tags, cls=ObjectCopyState, source=source, source_version_id=source_version_id
        )

    def _replaced_content_changed(self, current: ObjectCopyState, desired: ObjectCopySpec) -> bool:
        if desired.metadata_directive != DIRECTIVE_REPLACE:
            return False
        fields = CONTENT_FIELDS + ("content_language",)
        if any(getattr(desired, f) is not None and getattr(desired, f) != getattr(current, f) for f in fields):
            return True
        return dict(desired.metadata) != current.metadata

    def _update(self, current: ObjectCopyState, desired: ObjectCopySpec) -> ObjectCopyState:
        ref = _ref(desired)
        changed = [f for f in IMMUTABLE_FIELDS if getattr(current, f) != getattr(desired, f)]
        if changed:
            raise ImmutableFieldError(self.kind, ref, changed)

        if desired.conditional:
            self.log_info(ref, "Copy preconditions set, copying again", event="update", reason="Conditional")
            return self._copy(desired, is_new=False)

        if self._replaced_content_changed(current, desired):
            metrics.drift_detected_total.labels(kind=self.kind, resource_type="content").inc()
            return self._copy(desired, is_new=False)

        if desired.tagging_directive == DIRECTIVE_REPLACE and normalize_tags(current.tags) != normalize_tags(
            desired.tags
        ):
            metrics.drift_detected_total.labels(kind=self.kind, resource_type="tags").inc()
            update_object_tags(
                self.storage, desired.bucket, desired.key, current.tags, desired.tags, cancel=self.cancel
            )

        return self._read(desired.bucket, desired.key, desired.source, current.source_version_id, is_new=False)


def _ref(spec: ObjectCopySpec) -> str:
    return f"{spec.bucket}/{spec.key}"
