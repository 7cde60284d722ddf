"""Builders that turn loosely-typed desired-state mappings into validated specs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Mapping

from ..constants import (
    COPY_DIRECTIVES,
    DIRECTIVE_REPLACE,
    KIND_BUCKET,
    KIND_OBJECT,
    KIND_OBJECT_COPY,
    KIND_PERMISSION,
    KIND_SERVICE_ACCOUNT,
    LOCK_MODES,
    MAX_BUCKET_NAME_LENGTH,
    PERMISSION_ACTIONS,
    PERMISSION_TYPE_POLICY,
)
from ..errors import DesiredStateError, PolicyError
from ..models import BucketSpec, ObjectCopySpec, ObjectSpec, PermissionSpec, ServiceAccountSpec
from ..reconcile.policy import normalize
from ..utils.dates import parse_rfc3339

_COPY_CONTENT_FIELDS = (
    "content_type",
    "cache_control",
    "content_disposition",
    "content_encoding",
    "content_language",
)


def _require_str(data: Mapping[str, Any], field: str, kind: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value:
        raise DesiredStateError(f"{kind}: {field} is required")
    return value


def _string_map(data: Mapping[str, Any], field: str, kind: str) -> dict[str, str]:
    value = data.get(field) or {}
    if not isinstance(value, Mapping):
        raise DesiredStateError(f"{kind}: {field} must be a mapping of strings")
    result = {}
    for k, v in value.items():
        if not isinstance(k, str) or not isinstance(v, (str, type(None))):
            raise DesiredStateError(f"{kind}: {field} must be a mapping of strings")
        result[k] = v or ""
    return result


def _string_list(data: Mapping[str, Any], field: str, kind: str) -> tuple[str, ...]:
    value = data.get(field) or []
    if isinstance(value, str) or not all(isinstance(v, str) for v in value):
        raise DesiredStateError(f"{kind}: {field} must be a list of strings")
    return tuple(value)


def build_bucket_spec(data: Mapping[str, Any]) -> BucketSpec:
    """Create a BucketSpec from a desired-state mapping.

    Args:
        data: Mapping with ``name`` and optional ``object_lock_enabled``,
            ``tags`` and ``force_destroy``

    Returns:
        Validated bucket spec

    Raises:
        DesiredStateError: If the mapping is invalid
    """
    name = _require_str(data, "name", KIND_BUCKET)
    if len(name) > MAX_BUCKET_NAME_LENGTH:
        raise DesiredStateError(f"{KIND_BUCKET}: name must be at most {MAX_BUCKET_NAME_LENGTH} characters")

    return BucketSpec(
        name=name,
        object_lock_enabled=bool(data.get("object_lock_enabled", False)),
        tags=_string_map(data, "tags", KIND_BUCKET),
        force_destroy=bool(data.get("force_destroy", False)),
    )


def _parse_timestamp(value: Any, field: str, kind: str) -> datetime | None:
    """Parse an optional timestamp into UTC; one without an offset is read as UTC."""
    if value is None or value == "":
        return None
    try:
        return parse_rfc3339(value)
    except ValueError as e:
        raise DesiredStateError(f"{kind}: {field} must be an RFC 3339 timestamp: {e}") from e


def _lowercase_metadata(data: Mapping[str, Any], kind: str) -> dict[str, str]:
    metadata = _string_map(data, "metadata", kind)
    upper = sorted(k for k in metadata if k != k.lower())
    if upper:
        raise DesiredStateError(f"{kind}: metadata keys must be lowercase: {', '.join(upper)}")
    return metadata


def build_object_spec(data: Mapping[str, Any]) -> ObjectSpec:
    """Create an ObjectSpec from a desired-state mapping.

    Metadata keys must be lowercase, since the backend lower-cases them and
    anything else would never converge.
    """
    bucket = _require_str(data, "bucket", KIND_OBJECT)
    key = _require_str(data, "key", KIND_OBJECT)

    body = data.get("body")
    source = data.get("source")
    if body is not None and source:
        raise DesiredStateError(f"{KIND_OBJECT}: body and source are mutually exclusive")
    if isinstance(body, str):
        body = body.encode()

    metadata = _lowercase_metadata(data, KIND_OBJECT)

    lock_mode = data.get("lock_mode") or None
    lock_until = _parse_timestamp(data.get("lock_until"), "lock_until", KIND_OBJECT)
    if lock_mode is not None and lock_mode not in LOCK_MODES:
        raise DesiredStateError(f"{KIND_OBJECT}: lock_mode must be one of {', '.join(LOCK_MODES)}")
    if (lock_mode is None) != (lock_until is None):
        raise DesiredStateError(f"{KIND_OBJECT}: lock_mode and lock_until must be set together")

    return ObjectSpec(
        bucket=bucket,
        key=key,
        body=body,
        source=source or None,
        content_type=data.get("content_type"),
        cache_control=data.get("cache_control"),
        content_disposition=data.get("content_disposition"),
        content_encoding=data.get("content_encoding"),
        metadata=metadata,
        tags=_string_map(data, "tags", KIND_OBJECT),
        lock_mode=lock_mode,
        lock_until=lock_until,
        force_destroy=bool(data.get("force_destroy", False)),
    )


def _directive(data: Mapping[str, Any], field: str, default: str | None) -> str | None:
    value = data.get(field) or default
    if value is not None and value not in COPY_DIRECTIVES:
        raise DesiredStateError(f"{KIND_OBJECT_COPY}: {field} must be one of {', '.join(COPY_DIRECTIVES)}")
    return value


def build_object_copy_spec(data: Mapping[str, Any]) -> ObjectCopySpec:
    """Create an ObjectCopySpec from a desired-state mapping.

    Setting metadata or a content field without a metadata directive implies
    REPLACE, and so does setting tags without a tagging directive; under COPY
    the backend would silently ignore them.
    """
    bucket = _require_str(data, "bucket", KIND_OBJECT_COPY)
    key = _require_str(data, "key", KIND_OBJECT_COPY)
    source = _require_str(data, "source", KIND_OBJECT_COPY)
    source_bucket, _, source_key = source.split("?", 1)[0].partition("/")
    if not source_bucket or not source_key:
        raise DesiredStateError(f"{KIND_OBJECT_COPY}: source should be in format <bucket>/<key>")

    metadata = _lowercase_metadata(data, KIND_OBJECT_COPY)
    tags = _string_map(data, "tags", KIND_OBJECT_COPY)
    content = {f: data.get(f) for f in _COPY_CONTENT_FIELDS}
    replaces_metadata = bool(metadata) or any(v is not None for v in content.values())

    return ObjectCopySpec(
        bucket=bucket,
        key=key,
        source=source,
        metadata=metadata,
        metadata_directive=_directive(data, "metadata_directive", DIRECTIVE_REPLACE if replaces_metadata else None),
        tagging_directive=_directive(data, "tagging_directive", DIRECTIVE_REPLACE if tags else None),
        tags=tags,
        copy_if_match=data.get("copy_if_match") or None,
        copy_if_none_match=data.get("copy_if_none_match") or None,
        copy_if_modified_since=_parse_timestamp(
            data.get("copy_if_modified_since"), "copy_if_modified_since", KIND_OBJECT_COPY
        ),
        copy_if_unmodified_since=_parse_timestamp(
            data.get("copy_if_unmodified_since"), "copy_if_unmodified_since", KIND_OBJECT_COPY
        ),
        force_destroy=bool(data.get("force_destroy", False)),
        **content,
    )


def build_permission_spec(data: Mapping[str, Any]) -> PermissionSpec:
    """Create a PermissionSpec; exactly one bucket scope or a policy must be given."""
    name = data.get("name") or ""
    name_prefix = data.get("name_prefix") or ""
    if name and name_prefix:
        raise DesiredStateError(f"{KIND_PERMISSION}: name and name_prefix are mutually exclusive")

    spec = PermissionSpec(
        name=name,
        name_prefix=name_prefix,
        description=data.get("description") or "",
        actions=data.get("actions") or "",
        all_buckets=bool(data.get("all_buckets", False)),
        bucket_prefix=data.get("bucket_prefix") or "",
        buckets=_string_list(data, "buckets", KIND_PERMISSION),
        policy=data.get("policy") or "",
    )

    scopes = [bool(spec.all_buckets), bool(spec.bucket_prefix), bool(spec.buckets), bool(spec.policy)]
    if sum(scopes) != 1:
        raise DesiredStateError(
            f"{KIND_PERMISSION}: exactly one of all_buckets, bucket_prefix, buckets or policy must be set"
        )

    if spec.permission_type == PERMISSION_TYPE_POLICY:
        try:
            normalize(spec.policy)
        except PolicyError as e:
            raise DesiredStateError(f"{KIND_PERMISSION}: {e}") from e
    elif spec.actions not in PERMISSION_ACTIONS:
        raise DesiredStateError(f"{KIND_PERMISSION}: actions must be one of {', '.join(PERMISSION_ACTIONS)}")

    return spec


def build_service_account_spec(data: Mapping[str, Any]) -> ServiceAccountSpec:
    name = _require_str(data, "name", KIND_SERVICE_ACCOUNT)
    permissions = _string_list(data, "permissions", KIND_SERVICE_ACCOUNT)
    if not permissions:
        raise DesiredStateError(f"{KIND_SERVICE_ACCOUNT}: at least one permission is required")
    return ServiceAccountSpec(
        name=name,
        description=data.get("description") or "",
        permissions=permissions,
        enabled=bool(data.get("enabled", True)),
    )


BUILDERS: dict[str, Callable[[Mapping[str, Any]], Any]] = {
    KIND_BUCKET: build_bucket_spec,
    KIND_OBJECT: build_object_spec,
    KIND_OBJECT_COPY: build_object_copy_spec,
    KIND_PERMISSION: build_permission_spec,
    KIND_SERVICE_ACCOUNT: build_service_account_spec,
}


def build_desired_state(
    kind: str, data: Mapping[str, Any]
) -> BucketSpec | ObjectSpec | ObjectCopySpec | PermissionSpec | ServiceAccountSpec:
    """Validate a desired-state mapping of the given kind."""
    try:
        builder = BUILDERS[kind]
    except KeyError:
        raise DesiredStateError(f"Unsupported resource kind: {kind}") from None
    return builder(data)
