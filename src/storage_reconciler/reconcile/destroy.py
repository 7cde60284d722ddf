"""Recursive deletion of every object version inside a bucket."""

from __future__ import annotations

import logging
from typing import Callable, Iterator

from botocore.exceptions import ClientError

from .. import metrics
from ..constants import ERR_ACCESS_DENIED, ERR_NO_SUCH_BUCKET, ERR_NO_SUCH_KEY, LEGAL_HOLD_OFF, LEGAL_HOLD_ON
from ..errors import ObjectDeletionError
from ..models import ObjectVersion, VersionPage
from ..services.s3.base import ObjectStorage
from ..utils.classify import error_code_equals
from ..tracing import add_span_attribute
from ..utils.errors import sanitize_exception

logger = logging.getLogger(__name__)


def _pages(storage: ObjectStorage, bucket: str, prefix: str) -> Iterator[VersionPage]:
    """Yield version pages until the listing reports no more data.

    An empty page does not end the listing; only ``is_truncated`` does. A
    bucket that no longer exists has nothing left to list.
    """
    key_marker: str | None = None
    version_id_marker: str | None = None
    while True:
        try:
            page = storage.list_object_versions(
                bucket, prefix=prefix, key_marker=key_marker, version_id_marker=version_id_marker
            )
        except ClientError as e:
            if error_code_equals(e, ERR_NO_SUCH_BUCKET):
                logger.info(f"Bucket {bucket} no longer exists, nothing left to list")
                return
            raise
        yield page
        if not page.is_truncated:
            return
        key_marker = page.next_key_marker
        version_id_marker = page.next_version_id_marker


def delete_object_version(
    storage: ObjectStorage, bucket: str, key: str, version_id: str | None, force: bool
) -> None:
    """Delete one object version; an already-absent version counts as deleted.

    With ``force`` the deletion bypasses governance-mode retention.
    """
    logger.info(f"Deleting object {key} (version {version_id}) in bucket {bucket}")
    try:
        storage.delete_object(bucket, key, version_id=version_id, bypass_governance=force)
    except ClientError as e:
        if error_code_equals(e, ERR_NO_SUCH_BUCKET, ERR_NO_SUCH_KEY):
            return
        logger.warning(f"Failed to delete object {key} (version {version_id}) in bucket {bucket}: {e}")
        raise


def _release_and_delete(storage: ObjectStorage, bucket: str, version: ObjectVersion) -> None:
    """Lift a legal hold on a version that refused deletion, then delete it once more.

    A hold status already carried by the listing is trusted; otherwise it is
    looked up.
    """
    status = version.lock_status or storage.get_object_legal_hold(bucket, version.key, version_id=version.version_id)
    if status != LEGAL_HOLD_ON:
        raise ObjectDeletionError(
            bucket, 0, f"AccessDenied deleting object {version.key} (version {version.version_id})"
        )

    storage.put_object_legal_hold(bucket, version.key, LEGAL_HOLD_OFF, version_id=version.version_id)
    metrics.legal_holds_released_total.labels(bucket=bucket).inc()
    logger.info(f"Removed legal hold from object {version.key} (version {version.version_id}) in bucket {bucket}")
    delete_object_version(storage, bucket, version.key, version.version_id, True)


def _sweep(
    storage: ObjectStorage,
    bucket: str,
    key: str,
    select: Callable[[VersionPage], list[ObjectVersion]],
    delete: Callable[[ObjectVersion], None],
) -> tuple[int, BaseException | None]:
    deleted = 0
    last_error: BaseException | None = None
    for page in _pages(storage, bucket, key):
        for version in select(page):
            # A prefix listing also returns longer keys
            if key and version.key != key:
                continue
            try:
                delete(version)
            except (ClientError, ObjectDeletionError) as e:
                last_error = e
                continue
            deleted += 1
    return deleted, last_error


def delete_all_object_versions(
    storage: ObjectStorage,
    bucket: str,
    key: str = "",
    force: bool = False,
    ignore_errors: bool = False,
) -> int:
    """Delete every version and delete marker of an object, or of all objects.

    Live versions are swept first. A version that fails to delete does not
    stop the sweep; the last failure is reported once the pass is over.
    When ``force`` is set and a deletion is refused with AccessDenied, a
    legal hold on that version is lifted and the deletion retried once.
    Delete markers are removed in a second pass, without any lock handling.

    Args:
        storage: Object storage client
        bucket: Bucket name
        key: Restrict deletion to this key; empty means every object
        force: Override object lock protections
        ignore_errors: Report only the count, never per-version failures

    Returns:
        Number of versions and delete markers deleted; 0 if the bucket is gone

    Raises:
        ObjectDeletionError: If a version could not be deleted and errors are not ignored
        ClientError: If the listing itself failed
    """

    def delete_version(version: ObjectVersion) -> None:
        try:
            delete_object_version(storage, bucket, version.key, version.version_id, force)
        except ClientError as e:
            if not (force and error_code_equals(e, ERR_ACCESS_DENIED)):
                raise
            _release_and_delete(storage, bucket, version)

    def delete_marker(version: ObjectVersion) -> None:
        delete_object_version(storage, bucket, version.key, version.version_id, False)

    total = 0
    passes = (
        ("object version", lambda page: page.versions, delete_version),
        ("object delete marker", lambda page: page.delete_markers, delete_marker),
    )
    for what, select, delete in passes:
        deleted, last_error = _sweep(storage, bucket, key, select, delete)
        total += deleted
        metrics.object_versions_deleted_total.labels(bucket=bucket).inc(deleted)

        if last_error is not None:
            if not ignore_errors:
                raise ObjectDeletionError(bucket, total, sanitize_exception(last_error), what=what)
            logger.warning(f"Ignoring failure to delete at least one {what} in bucket {bucket}: {last_error}")

    return total


def empty_bucket(storage: ObjectStorage, bucket: str, force: bool = False) -> int:
    """Delete every object version and delete marker in a bucket."""
    logger.info(f"Emptying bucket {bucket}")
    deleted = delete_all_object_versions(storage, bucket, force=force)
    add_span_attribute("storage.versions_deleted", deleted)
    logger.info(f"Deleted {deleted} object versions from bucket {bucket}")
    return deleted
