"""Desired and observed state records for reconciled resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from .constants import (
    PERMISSION_TYPE_ALL_BUCKETS,
    PERMISSION_TYPE_BUCKET_NAMES,
    PERMISSION_TYPE_BUCKET_PREFIX,
    PERMISSION_TYPE_POLICY,
)


@dataclass(frozen=True)
class BucketSpec:
    """Desired state of a bucket.

    Tags take part in equality but not in the hash, so specs can be used as
    set members and mapping keys.
    """

    name: str
    object_lock_enabled: bool = False
    tags: dict[str, str] = field(default_factory=dict, hash=False)
    force_destroy: bool = False


@dataclass(frozen=True)
class ObjectSpec:
    """Desired state of an object inside a bucket."""

    bucket: str
    key: str
    body: bytes | None = None
    source: str | None = None
    content_type: str | None = None
    cache_control: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    metadata: dict[str, str] = field(default_factory=dict, hash=False)
    tags: dict[str, str] = field(default_factory=dict, hash=False)
    lock_mode: str | None = None
    lock_until: datetime | None = None
    force_destroy: bool = False


@dataclass(frozen=True)
class ObjectCopySpec:
    """Desired state of an object created by copying another object.

    ``source`` is "<bucket>/<key>", optionally followed by "?versionId=<id>".
    Any ``copy_if_*`` precondition makes every update copy the object again.
    """

    bucket: str
    key: str
    source: str
    content_type: str | None = None
    cache_control: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    metadata: dict[str, str] = field(default_factory=dict, hash=False)
    metadata_directive: str | None = None
    tagging_directive: str | None = None
    tags: dict[str, str] = field(default_factory=dict, hash=False)
    copy_if_match: str | None = None
    copy_if_none_match: str | None = None
    copy_if_modified_since: datetime | None = None
    copy_if_unmodified_since: datetime | None = None
    force_destroy: bool = False

    @property
    def conditional(self) -> bool:
        return any(
            v is not None
            for v in (
                self.copy_if_match,
                self.copy_if_none_match,
                self.copy_if_modified_since,
                self.copy_if_unmodified_since,
            )
        )


@dataclass(frozen=True)
class PermissionSpec:
    """Desired state of an account permission.

    Exactly one scope is set: ``all_buckets``, ``bucket_prefix``, ``buckets``
    or ``policy``. The permission type is derived from it.
    """

    name: str = ""
    name_prefix: str = ""
    description: str = ""
    actions: str = ""
    all_buckets: bool = False
    bucket_prefix: str = ""
    buckets: tuple[str, ...] = ()
    policy: str = ""

    @property
    def permission_type(self) -> str:
        if self.all_buckets:
            return PERMISSION_TYPE_ALL_BUCKETS
        if self.bucket_prefix:
            return PERMISSION_TYPE_BUCKET_PREFIX
        if self.buckets:
            return PERMISSION_TYPE_BUCKET_NAMES
        if self.policy:
            return PERMISSION_TYPE_POLICY
        return ""


@dataclass(frozen=True)
class ServiceAccountSpec:
    """Desired state of a service account."""

    name: str
    description: str = ""
    permissions: tuple[str, ...] = ()
    enabled: bool = True


@dataclass
class BucketState:
    """Observed state of a bucket."""

    name: str
    region: str = ""
    object_lock_enabled: bool = False
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.name


@dataclass
class ObjectState:
    """Observed state of an object."""

    bucket: str
    key: str
    etag: str = ""
    version_id: str | None = None
    content_type: str | None = None
    cache_control: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    lock_mode: str | None = None
    lock_until: datetime | None = None
    last_modified: datetime | None = None

    @property
    def id(self) -> str:
        return self.key


@dataclass
class ObjectCopyState(ObjectState):
    """Observed state of a copied object."""

    source: str = ""
    source_version_id: str | None = None


@dataclass
class ObjectInfo(ObjectState):
    """An object looked up without being managed.

    ``body`` is only fetched for human-readable content types.
    """

    body: str | None = None
    content_length: int | None = None


@dataclass
class PermissionState:
    """Observed state of a permission."""

    id: str
    name: str = ""
    description: str = ""
    type: str = ""
    actions: str = ""
    bucket_prefix: str = ""
    buckets: list[str] = field(default_factory=list)
    policy: str = ""
    ready_state: bool = False


@dataclass
class ServiceAccountState:
    """Observed state of a service account."""

    id: str
    name: str = ""
    description: str = ""
    permissions: list[str] = field(default_factory=list)
    enabled: bool = False
    ready_state: bool = False
    access_key: str = ""
    secret: str = ""


@dataclass(frozen=True)
class ObjectVersion:
    """One version or delete marker found while enumerating a bucket."""

    key: str
    version_id: str
    is_delete_marker: bool = False
    lock_status: str | None = None


@dataclass
class VersionPage:
    """One page of a version listing.

    ``is_truncated`` is the only signal that more pages follow; an empty
    page may still be followed by more data.
    """

    versions: list[ObjectVersion] = field(default_factory=list)
    delete_markers: list[ObjectVersion] = field(default_factory=list)
    is_truncated: bool = False
    next_key_marker: str | None = None
    next_version_id_marker: str | None = None


@dataclass
class RetryOutcome:
    """Bookkeeping for a single retry loop."""

    attempts: int = 0
    last_error: BaseException | None = None
    timed_out: bool = False
