"""Bucket reconciler."""

from __future__ import annotations

import threading

from botocore.exceptions import ClientError

from .. import metrics
from ..constants import (
    DELETE_MAX_ITERATIONS,
    ERR_BUCKET_NOT_EMPTY,
    ERR_NO_SUCH_BUCKET,
    KIND_BUCKET,
    PROPAGATION_TIMEOUT_SECONDS,
    TAG_TIMEOUT_SECONDS,
)
from ..errors import ImmutableFieldError, ObjectDeletionError, ReconcileError
from ..models import BucketSpec, BucketState
from ..reconcile.destroy import empty_bucket
from ..reconcile.tags import normalize_tags, update_bucket_tags
from ..services.s3.base import ObjectStorage
from ..utils.classify import error_code_equals
from ..utils.retry import retry_until_not_found
from .base import BaseReconciler

# Fields that identify a bucket and can only be set at creation
IMMUTABLE_FIELDS = ("name", "object_lock_enabled")


class BucketReconciler(BaseReconciler):
    """Drives a bucket through create, read, update and delete."""

    def __init__(self, storage: ObjectStorage, cancel: threading.Event | None = None):
        super().__init__(KIND_BUCKET, cancel)
        self.storage = storage

    def create(self, spec: BucketSpec) -> BucketState:
        """Create the bucket, apply its tags and return the observed state."""
        return self.reconcile_with_metrics("create", spec.name, lambda: self._create(spec))

    def read(self, name: str, is_new: bool = False) -> BucketState:
        """Read the bucket.

        Raises:
            ResourceGoneError: If the bucket disappeared since it was last observed
        """
        return self.reconcile_with_metrics("read", name, lambda: self._read(name, is_new))

    def update(self, current: BucketState, desired: BucketSpec) -> BucketState:
        """Converge an existing bucket; only tags can change in place."""
        return self.reconcile_with_metrics("update", current.name, lambda: self._update(current, desired))

    def delete(self, current: BucketState, force_destroy: bool = False) -> None:
        """Delete the bucket, emptying it first when ``force_destroy`` is set."""
        self.reconcile_with_metrics("delete", current.name, lambda: self._delete(current, force_destroy))

    def _create(self, spec: BucketSpec) -> BucketState:
        self.log_info(spec.name, "Creating bucket", event="create", reason="Creating")
        self.create_with_retry(lambda: self.storage.create_bucket(spec.name, spec.object_lock_enabled))
        update_bucket_tags(self.storage, spec.name, {}, spec.tags, cancel=self.cancel)
        self.log_info(spec.name, "Bucket created", event="create", reason="Created")
        return self._read(spec.name, is_new=True)

    def _read(self, name: str, is_new: bool) -> BucketState:
        self.observe(name, lambda: self.storage.head_bucket(name), is_new)

        # The bucket can still be propagating right after a create, or be
        # deleted out of band between the head and these reads.
        tags = self.follow_up(
            name, lambda: self.storage.get_bucket_tags(name), is_new, "bucket_tags", timeout=TAG_TIMEOUT_SECONDS
        )
        region = self.follow_up(name, lambda: self.storage.get_bucket_region(name), is_new, "bucket_region")
        object_lock_enabled = self.follow_up(
            name, lambda: self.storage.get_object_lock_enabled(name), is_new, "bucket_object_lock"
        )
        return BucketState(name=name, region=region, object_lock_enabled=object_lock_enabled, tags=tags)

    def _update(self, current: BucketState, desired: BucketSpec) -> BucketState:
        changed = [f for f in IMMUTABLE_FIELDS if getattr(current, f) != getattr(desired, f)]
        if changed:
            raise ImmutableFieldError(self.kind, current.name, changed)

        if normalize_tags(current.tags) != normalize_tags(desired.tags):
            metrics.drift_detected_total.labels(kind=self.kind, resource_type="tags").inc()
            self.log_info(current.name, "Updating bucket tags", event="update", reason="TagsChanged")
            update_bucket_tags(self.storage, current.name, current.tags, desired.tags, cancel=self.cancel)

        return self._read(current.name, is_new=False)

    def _delete(self, current: BucketState, force_destroy: bool) -> None:
        name = current.name
        last_error: ClientError | None = None

        # A concurrent writer can refill the bucket between the sweep and the
        # delete call, so delete and empty alternate until the bucket is gone.
        for iteration in range(1, DELETE_MAX_ITERATIONS + 1):
            try:
                self.storage.delete_bucket(name)
            except ClientError as e:
                if error_code_equals(e, ERR_NO_SUCH_BUCKET):
                    self.log_info(name, "Bucket already deleted", event="delete", reason="NotFound")
                    return
                if not (force_destroy and error_code_equals(e, ERR_BUCKET_NOT_EMPTY)):
                    raise ReconcileError(self.kind, name, "deleting", e) from e

                last_error = e
                self.log_info(
                    name,
                    "Bucket not empty, deleting all object versions",
                    event="delete",
                    reason="Emptying",
                    iteration=iteration,
                )
                try:
                    empty_bucket(self.storage, name, force=current.object_lock_enabled)
                except (ClientError, ObjectDeletionError) as ee:
                    raise ReconcileError(self.kind, name, "emptying", ee) from ee
                continue

            retry_until_not_found(
                PROPAGATION_TIMEOUT_SECONDS,
                lambda: self.storage.head_bucket(name),
                cancel=self.cancel,
                operation="delete_bucket",
            )
            self.log_info(name, "Bucket deleted", event="delete", reason="Deleted", iterations=iteration)
            return

        raise ReconcileError(
            self.kind,
            name,
            "deleting",
            f"bucket still not empty after {DELETE_MAX_ITERATIONS} attempts, last error: {last_error}",
        )
