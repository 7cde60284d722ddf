"""Tag set reconciliation.

Tagging APIs on the backend are bulk-only, so convergence is a single
replace-all call when tags are desired and a single delete-all call when
they were present and are no longer wanted. An empty and an absent tag set
are treated the same.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Mapping
from urllib.parse import urlencode

from botocore.exceptions import ClientError

from ..constants import ERR_NO_SUCH_BUCKET, KIND_BUCKET, KIND_OBJECT, TAG_TIMEOUT_SECONDS
from ..errors import ReconcileError
from ..services.s3.base import ObjectStorage
from ..utils.retry import retry_when_error_code

logger = logging.getLogger(__name__)


def normalize_tags(tags: Mapping[str, str | None] | None) -> dict[str, str]:
    """Return a plain tag mapping; a missing value becomes an empty string."""
    if not tags:
        return {}
    return {str(k): "" if v is None else str(v) for k, v in tags.items()}


def url_encode_tags(tags: Mapping[str, str] | None) -> str:
    """Encode tags as URL query parameters, the form object uploads accept."""
    return urlencode(sorted(normalize_tags(tags).items()))


def _update_tags(
    kind: str,
    resource: str,
    old_tags: Mapping[str, str] | None,
    new_tags: Mapping[str, str] | None,
    put: Callable[[dict[str, str]], None],
    delete: Callable[[], None],
    timeout: float,
    cancel: threading.Event | None,
) -> bool:
    old = normalize_tags(old_tags)
    new = normalize_tags(new_tags)

    if new:
        operation = "setting tags on"
        call: Callable[[], None] = lambda: put(new)
    elif old:
        operation = "deleting tags from"
        call = delete
    else:
        return False

    logger.debug(f"{operation} {kind} {resource}")
    try:
        # Tagging races with container creation becoming visible
        retry_when_error_code(
            timeout,
            call,
            ERR_NO_SUCH_BUCKET,
            cancel=cancel,
            operation=f"{kind.lower()}_tags",
        )
    except ClientError as e:
        raise ReconcileError(kind, resource, operation, e) from e
    return True


def update_bucket_tags(
    storage: ObjectStorage,
    bucket: str,
    old_tags: Mapping[str, str] | None,
    new_tags: Mapping[str, str] | None,
    timeout: float = TAG_TIMEOUT_SECONDS,
    cancel: threading.Event | None = None,
) -> bool:
    """Converge the tags of a bucket.

    Args:
        storage: Object storage client
        bucket: Bucket name
        old_tags: Tags currently recorded for the bucket
        new_tags: Desired tags
        timeout: Deadline for the tagging call
        cancel: Optional cancellation signal

    Returns:
        True if a remote call was made, False when both sets are empty

    Raises:
        ReconcileError: If the tagging call failed
    """
    return _update_tags(
        KIND_BUCKET,
        bucket,
        old_tags,
        new_tags,
        lambda tags: storage.put_bucket_tags(bucket, tags),
        lambda: storage.delete_bucket_tags(bucket),
        timeout,
        cancel,
    )


def update_object_tags(
    storage: ObjectStorage,
    bucket: str,
    key: str,
    old_tags: Mapping[str, str] | None,
    new_tags: Mapping[str, str] | None,
    timeout: float = TAG_TIMEOUT_SECONDS,
    cancel: threading.Event | None = None,
) -> bool:
    """Converge the tags of an object. Same contract as update_bucket_tags."""
    return _update_tags(
        KIND_OBJECT,
        f"{bucket}/{key}",
        old_tags,
        new_tags,
        lambda tags: storage.put_object_tags(bucket, key, tags),
        lambda: storage.delete_object_tags(bucket, key),
        timeout,
        cancel,
    )
