"""boto3 implementation of the object storage interface."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from ... import metrics
from ...constants import ERR_NO_SUCH_TAG_SET, ERR_OBJECT_LOCK_CONFIGURATION_NOT_FOUND
from ...models import ObjectVersion, VersionPage
from ...utils.classify import error_code, error_code_equals
from .base import ObjectStorage

logger = logging.getLogger(__name__)

API_TYPE = "s3"


def _to_tag_set(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def _from_tag_set(tag_set: list[dict[str, str]]) -> dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in tag_set}


class ObjectStorageClient(ObjectStorage):
    """Object storage client backed by boto3."""

    def __init__(
        self,
        endpoint: str | None,
        region: str,
        access_key: str,
        secret_key: str,
        path_style: bool = True,
        insecure_skip_verify: bool = False,
        client: Any = None,
    ) -> None:
        """Initialize the client.

        Args:
            endpoint: S3 endpoint URL (None for the boto3 default)
            region: Region name
            access_key: Access key ID
            secret_key: Secret access key
            path_style: Use path-style addressing
            insecure_skip_verify: Skip TLS verification
            client: Pre-built boto3 client, used instead of building one
        """
        self.endpoint = endpoint
        self.region = region

        if client is not None:
            self.client = client
            return

        config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path" if path_style else "auto"},
            retries={"mode": "standard"},
        )
        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint,
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=config,
            verify=not insecure_skip_verify,
        )

    @contextmanager
    def _call(self, operation: str, target: str) -> Iterator[None]:
        """Time one API call and log failures before re-raising them."""
        start = time.monotonic()
        try:
            yield
        except ClientError as e:
            metrics.api_call_total.labels(api_type=API_TYPE, operation=operation, result=error_code(e) or "error").inc()
            logger.error(f"Failed to {operation.replace('_', ' ')} {target}: {e}")
            raise
        else:
            metrics.api_call_total.labels(api_type=API_TYPE, operation=operation, result="success").inc()
        finally:
            metrics.api_call_duration_seconds.labels(api_type=API_TYPE, operation=operation).observe(
                time.monotonic() - start
            )

    def create_bucket(self, name: str, object_lock_enabled: bool = False) -> None:
        """Create a bucket, optionally with object lock enabled."""
        params: dict[str, Any] = {"Bucket": name}
        if object_lock_enabled:
            params["ObjectLockEnabledForBucket"] = True
        with self._call("create_bucket", name):
            self.client.create_bucket(**params)

    def head_bucket(self, name: str) -> None:
        with self._call("head_bucket", name):
            self.client.head_bucket(Bucket=name)

    def get_bucket_region(self, name: str) -> str:
        """Get the bucket region; an empty location constraint means the client region."""
        with self._call("get_bucket_location", name):
            response = self.client.get_bucket_location(Bucket=name)
        return response.get("LocationConstraint") or self.region

    def get_object_lock_enabled(self, name: str) -> bool:
        try:
            response = self.client.get_object_lock_configuration(Bucket=name)
        except ClientError as e:
            if error_code_equals(e, ERR_OBJECT_LOCK_CONFIGURATION_NOT_FOUND):
                return False
            logger.error(f"Failed to get object lock configuration for bucket {name}: {e}")
            raise
        config = response.get("ObjectLockConfiguration", {})
        return config.get("ObjectLockEnabled") == "Enabled"

    def delete_bucket(self, name: str) -> None:
        with self._call("delete_bucket", name):
            self.client.delete_bucket(Bucket=name)

    def get_bucket_tags(self, name: str) -> dict[str, str]:
        """Get bucket tags."""
        try:
            response = self.client.get_bucket_tagging(Bucket=name)
        except ClientError as e:
            if error_code_equals(e, ERR_NO_SUCH_TAG_SET):
                return {}
            logger.error(f"Failed to get tags for bucket {name}: {e}")
            raise
        return _from_tag_set(response.get("TagSet", []))

    def put_bucket_tags(self, name: str, tags: dict[str, str]) -> None:
        """Set bucket tags."""
        with self._call("put_bucket_tagging", name):
            self.client.put_bucket_tagging(Bucket=name, Tagging={"TagSet": _to_tag_set(tags)})

    def delete_bucket_tags(self, name: str) -> None:
        with self._call("delete_bucket_tagging", name):
            self.client.delete_bucket_tagging(Bucket=name)

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
        """Upload an object."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": key, "Body": body}
        optional = {
            "ContentType": content_type,
            "CacheControl": cache_control,
            "ContentDisposition": content_disposition,
            "ContentEncoding": content_encoding,
            "Metadata": metadata or None,
            "Tagging": tagging or None,
            "ObjectLockMode": lock_mode,
            "ObjectLockRetainUntilDate": lock_until,
        }
        params.update({k: v for k, v in optional.items() if v is not None})
        with self._call("put_object", f"{bucket}/{key}"):
            return self.client.put_object(**params)

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
        """Copy an object; boto3 URL-encodes the copy source."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": key, "CopySource": source}
        optional = {
            "ContentType": content_type,
            "CacheControl": cache_control,
            "ContentDisposition": content_disposition,
            "ContentEncoding": content_encoding,
            "ContentLanguage": content_language,
            "Metadata": metadata or None,
            "MetadataDirective": metadata_directive,
            "Tagging": tagging or None,
            "TaggingDirective": tagging_directive,
            "CopySourceIfMatch": copy_if_match,
            "CopySourceIfNoneMatch": copy_if_none_match,
            "CopySourceIfModifiedSince": copy_if_modified_since,
            "CopySourceIfUnmodifiedSince": copy_if_unmodified_since,
        }
        params.update({k: v for k, v in optional.items() if v is not None})
        with self._call("copy_object", f"{bucket}/{key}"):
            return self.client.copy_object(**params)

    def head_object(self, bucket: str, key: str, version_id: str | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {"Bucket": bucket, "Key": key}
        if version_id:
            params["VersionId"] = version_id
        with self._call("head_object", f"{bucket}/{key}"):
            return self.client.head_object(**params)

    def get_object(self, bucket: str, key: str, version_id: str | None = None) -> bytes:
        params: dict[str, Any] = {"Bucket": bucket, "Key": key}
        if version_id:
            params["VersionId"] = version_id
        with self._call("get_object", f"{bucket}/{key}"):
            response = self.client.get_object(**params)
            return response["Body"].read()

    def delete_object(
        self,
        bucket: str,
        key: str,
        version_id: str | None = None,
        bypass_governance: bool = False,
    ) -> None:
        """Delete an object or one of its versions."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": key}
        if version_id:
            params["VersionId"] = version_id
        if bypass_governance:
            params["BypassGovernanceRetention"] = True
        with self._call("delete_object", f"{bucket}/{key}"):
            self.client.delete_object(**params)

    def list_object_versions(
        self,
        bucket: str,
        prefix: str = "",
        key_marker: str | None = None,
        version_id_marker: str | None = None,
    ) -> VersionPage:
        """List one page of object versions and delete markers."""
        params: dict[str, Any] = {"Bucket": bucket}
        if prefix:
            params["Prefix"] = prefix
        if key_marker:
            params["KeyMarker"] = key_marker
        if version_id_marker:
            params["VersionIdMarker"] = version_id_marker
        with self._call("list_object_versions", bucket):
            response = self.client.list_object_versions(**params)

        return VersionPage(
            versions=[
                ObjectVersion(key=v["Key"], version_id=v.get("VersionId") or "null")
                for v in response.get("Versions") or []
            ],
            delete_markers=[
                ObjectVersion(key=m["Key"], version_id=m.get("VersionId") or "null", is_delete_marker=True)
                for m in response.get("DeleteMarkers") or []
            ],
            is_truncated=bool(response.get("IsTruncated")),
            next_key_marker=response.get("NextKeyMarker"),
            next_version_id_marker=response.get("NextVersionIdMarker"),
        )

    def get_object_tags(self, bucket: str, key: str) -> dict[str, str]:
        try:
            response = self.client.get_object_tagging(Bucket=bucket, Key=key)
        except ClientError as e:
            if error_code_equals(e, ERR_NO_SUCH_TAG_SET):
                return {}
            logger.error(f"Failed to get tags for object {bucket}/{key}: {e}")
            raise
        return _from_tag_set(response.get("TagSet", []))

    def put_object_tags(self, bucket: str, key: str, tags: dict[str, str]) -> None:
        with self._call("put_object_tagging", f"{bucket}/{key}"):
            self.client.put_object_tagging(Bucket=bucket, Key=key, Tagging={"TagSet": _to_tag_set(tags)})

    def delete_object_tags(self, bucket: str, key: str) -> None:
        with self._call("delete_object_tagging", f"{bucket}/{key}"):
            self.client.delete_object_tagging(Bucket=bucket, Key=key)

    def put_object_retention(
        self,
        bucket: str,
        key: str,
        mode: str | None,
        until: datetime | None,
        bypass_governance: bool = False,
    ) -> None:
        """Set object lock retention; an empty mode and date clear it."""
        retention: dict[str, Any] = {}
        if mode:
            retention["Mode"] = mode
        if until:
            retention["RetainUntilDate"] = until
        params: dict[str, Any] = {"Bucket": bucket, "Key": key, "Retention": retention}
        if bypass_governance:
            params["BypassGovernanceRetention"] = True
        with self._call("put_object_retention", f"{bucket}/{key}"):
            self.client.put_object_retention(**params)

    def get_object_legal_hold(self, bucket: str, key: str, version_id: str | None = None) -> str | None:
        params: dict[str, Any] = {"Bucket": bucket, "Key": key}
        if version_id:
            params["VersionId"] = version_id
        with self._call("get_object_legal_hold", f"{bucket}/{key}"):
            response = self.client.get_object_legal_hold(**params)
        return response.get("LegalHold", {}).get("Status")

    def put_object_legal_hold(
        self, bucket: str, key: str, status: str, version_id: str | None = None
    ) -> None:
        """Set the legal hold status of an object version."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": key, "LegalHold": {"Status": status}}
        if version_id:
            params["VersionId"] = version_id
        with self._call("put_object_legal_hold", f"{bucket}/{key}"):
            self.client.put_object_legal_hold(**params)
