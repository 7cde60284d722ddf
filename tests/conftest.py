"""Shared fixtures: an in-memory object store and a fake clock for retry loops."""

from __future__ import annotations

import hashlib
from typing import Any, Callable
from urllib.parse import parse_qsl

import pytest
from botocore.exceptions import ClientError

from storage_reconciler.models import ObjectVersion, VersionPage
from storage_reconciler.utils import retry as retry_module


def client_error(code: str, status: int = 400, message: str = "", operation: str = "Operation") -> ClientError:
    """Build a botocore ClientError the way the S3 client reports it."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": message or code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeClock:
    """Stands in for the time module inside the retry driver."""

    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Retry loops run against a fake clock, so backoff never sleeps."""
    clock = FakeClock()
    monkeypatch.setattr(retry_module, "time", clock)
    return clock


class FakeObjectStorage:
    """In-memory object store with versioning, legal holds and retention.

    Every call is recorded in ``calls``. ``fail[op]`` holds errors raised, in
    order, before the operation behaves normally; ``hooks[op]`` runs before
    the operation.
    """

    def __init__(self, page_size: int = 1000) -> None:
        self.buckets: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple] = []
        self.fail: dict[str, list[Exception]] = {}
        self.hooks: dict[str, Callable[[], None]] = {}
        self.page_size = page_size
        self.empty_pages = 0
        self._seq = 0

    # --------------- Test helpers ---------------
    def calls_to(self, op: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == op]

    def add_bucket(self, name: str, versioned: bool = True, object_lock_enabled: bool = False) -> None:
        self.buckets[name] = {
            "versioned": versioned or object_lock_enabled,
            "lock": object_lock_enabled,
            "tags": {},
            "entries": [],
        }

    def add_object(self, bucket: str, key: str, body: bytes = b"data", legal_hold: str = "OFF", **fields: Any) -> str:
        entry = self._new_entry(bucket, key, body, **fields)
        entry["legal_hold"] = legal_hold
        return entry["version_id"]

    def entries(self, bucket: str) -> list[dict[str, Any]]:
        return list(self.buckets[bucket]["entries"])

    # --------------- Internals ---------------
    def _record(self, op: str, *args: Any) -> None:
        self.calls.append((op, *args))
        hook = self.hooks.get(op)
        if hook is not None:
            hook()
        queued = self.fail.get(op)
        if queued:
            raise queued.pop(0)

    def _bucket(self, name: str) -> dict[str, Any]:
        if name not in self.buckets:
            raise client_error("NoSuchBucket", 404)
        return self.buckets[name]

    def _new_entry(self, bucket: str, key: str, body: bytes, **fields: Any) -> dict[str, Any]:
        b = self._bucket(bucket)
        self._seq += 1
        if not b["versioned"]:
            b["entries"] = [e for e in b["entries"] if e["key"] != key]
        entry = {
            "key": key,
            "seq": self._seq,
            "version_id": f"v{self._seq}" if b["versioned"] else "null",
            "delete_marker": False,
            "etag": hashlib.md5(body).hexdigest(),
            "body": body,
            "metadata": {},
            "tags": {},
            "legal_hold": "OFF",
            "lock_mode": None,
            "lock_until": None,
            "content_type": "binary/octet-stream",
            "cache_control": None,
            "content_disposition": None,
            "content_encoding": None,
            "content_language": None,
        }
        entry.update(fields)
        b["entries"].append(entry)
        return entry

    def _current(self, bucket: str, key: str, version_id: str | None = None) -> dict[str, Any]:
        b = self._bucket(bucket)
        matches = [e for e in b["entries"] if e["key"] == key]
        if version_id is not None:
            matches = [e for e in matches if e["version_id"] == version_id]
        if not matches or matches[-1]["delete_marker"]:
            raise client_error("NoSuchKey", 404)
        return matches[-1]

    # --------------- Buckets ---------------
    def create_bucket(self, name: str, object_lock_enabled: bool = False) -> None:
        self._record("create_bucket", name, object_lock_enabled)
        if name in self.buckets:
            raise client_error("BucketAlreadyOwnedByYou", 409)
        self.add_bucket(name, versioned=object_lock_enabled, object_lock_enabled=object_lock_enabled)

    def head_bucket(self, name: str) -> None:
        self._record("head_bucket", name)
        if name not in self.buckets:
            raise client_error("404", 404, "Not Found")

    def get_bucket_region(self, name: str) -> str:
        self._record("get_bucket_region", name)
        self._bucket(name)
        return "us-east-1"

    def get_object_lock_enabled(self, name: str) -> bool:
        self._record("get_object_lock_enabled", name)
        return self._bucket(name)["lock"]

    def delete_bucket(self, name: str) -> None:
        self._record("delete_bucket", name)
        b = self._bucket(name)
        if b["entries"]:
            raise client_error("BucketNotEmpty", 409)
        del self.buckets[name]

    def get_bucket_tags(self, name: str) -> dict[str, str]:
        self._record("get_bucket_tags", name)
        return dict(self._bucket(name)["tags"])

    def put_bucket_tags(self, name: str, tags: dict[str, str]) -> None:
        self._record("put_bucket_tags", name, dict(tags))
        self._bucket(name)["tags"] = dict(tags)

    def delete_bucket_tags(self, name: str) -> None:
        self._record("delete_bucket_tags", name)
        self._bucket(name)["tags"] = {}

    # --------------- Objects ---------------
    def put_object(self, bucket: str, key: str, body: bytes, **kwargs: Any) -> dict[str, Any]:
        self._record("put_object", bucket, key, body, kwargs)
        entry = self._new_entry(
            bucket,
            key,
            body,
            metadata=dict(kwargs.get("metadata") or {}),
            tags=dict(parse_qsl(kwargs.get("tagging") or "")),
            lock_mode=kwargs.get("lock_mode"),
            lock_until=kwargs.get("lock_until"),
            content_type=kwargs.get("content_type") or "binary/octet-stream",
            cache_control=kwargs.get("cache_control"),
            content_disposition=kwargs.get("content_disposition"),
            content_encoding=kwargs.get("content_encoding"),
        )
        response = {"ETag": f'"{entry["etag"]}"'}
        if entry["version_id"] != "null":
            response["VersionId"] = entry["version_id"]
        return response

    def copy_object(self, bucket: str, key: str, source: str, **kwargs: Any) -> dict[str, Any]:
        self._record("copy_object", bucket, key, source, kwargs)
        path, _, version = source.partition("?versionId=")
        source_bucket, _, source_key = path.partition("/")
        src = self._current(source_bucket, source_key, version or None)
        if kwargs.get("copy_if_match") not in (None, src["etag"]):
            raise client_error("PreconditionFailed", 412)
        if kwargs.get("copy_if_none_match") == src["etag"]:
            raise client_error("PreconditionFailed", 412)

        content = ("content_type", "cache_control", "content_disposition", "content_encoding", "content_language")
        fields: dict[str, Any] = {"metadata": dict(src["metadata"]), "tags": dict(src["tags"])}
        fields.update((f, src[f]) for f in content)
        if kwargs.get("metadata_directive") == "REPLACE":
            fields["metadata"] = dict(kwargs.get("metadata") or {})
            fields.update((f, kwargs.get(f)) for f in content)
            fields["content_type"] = fields["content_type"] or "binary/octet-stream"
        if kwargs.get("tagging_directive") == "REPLACE":
            fields["tags"] = dict(parse_qsl(kwargs.get("tagging") or ""))

        entry = self._new_entry(bucket, key, src["body"], **fields)
        response: dict[str, Any] = {"CopyObjectResult": {"ETag": f'"{entry["etag"]}"'}}
        if entry["version_id"] != "null":
            response["VersionId"] = entry["version_id"]
        if src["version_id"] != "null":
            response["CopySourceVersionId"] = src["version_id"]
        return response

    def get_object(self, bucket: str, key: str, version_id: str | None = None) -> bytes:
        self._record("get_object", bucket, key, version_id)
        return self._current(bucket, key, version_id)["body"]

    def head_object(self, bucket: str, key: str, version_id: str | None = None) -> dict[str, Any]:
        self._record("head_object", bucket, key, version_id)
        if version_id is not None:
            markers = [
                e
                for e in self._bucket(bucket)["entries"]
                if e["key"] == key and e["version_id"] == version_id and e["delete_marker"]
            ]
            if markers:
                return {"DeleteMarker": True, "VersionId": version_id}
        try:
            entry = self._current(bucket, key, version_id)
        except ClientError:
            raise client_error("404", 404, "Not Found") from None
        head = {
            "ETag": f'"{entry["etag"]}"',
            "ContentType": entry["content_type"],
            "ContentLength": len(entry["body"]),
            "Metadata": dict(entry["metadata"]),
            "ObjectLockLegalHoldStatus": entry["legal_hold"],
        }
        if entry["version_id"] != "null":
            head["VersionId"] = entry["version_id"]
        for field, name in (
            ("cache_control", "CacheControl"),
            ("content_disposition", "ContentDisposition"),
            ("content_encoding", "ContentEncoding"),
            ("content_language", "ContentLanguage"),
            ("lock_mode", "ObjectLockMode"),
            ("lock_until", "ObjectLockRetainUntilDate"),
        ):
            if entry[field] is not None:
                head[name] = entry[field]
        return head

    def delete_object(
        self, bucket: str, key: str, version_id: str | None = None, bypass_governance: bool = False
    ) -> None:
        self._record("delete_object", bucket, key, version_id, bypass_governance)
        b = self._bucket(bucket)
        if version_id is None:
            if b["versioned"]:
                self._new_entry(bucket, key, b"", delete_marker=True)
            else:
                b["entries"] = [e for e in b["entries"] if e["key"] != key]
            return

        matches = [e for e in b["entries"] if e["key"] == key and e["version_id"] == version_id]
        if not matches:
            raise client_error("NoSuchKey", 404)
        entry = matches[0]
        if entry["legal_hold"] == "ON":
            raise client_error("AccessDenied", 403)
        if entry["lock_mode"] == "COMPLIANCE" or (entry["lock_mode"] == "GOVERNANCE" and not bypass_governance):
            raise client_error("AccessDenied", 403)
        b["entries"].remove(entry)

    def list_object_versions(
        self,
        bucket: str,
        prefix: str = "",
        key_marker: str | None = None,
        version_id_marker: str | None = None,
    ) -> VersionPage:
        self._record("list_object_versions", bucket, prefix, key_marker, version_id_marker)
        b = self._bucket(bucket)
        if self.empty_pages:
            self.empty_pages -= 1
            return VersionPage(is_truncated=True, next_key_marker=key_marker, next_version_id_marker=version_id_marker)

        entries = sorted((e for e in b["entries"] if e["key"].startswith(prefix)), key=lambda e: (e["key"], e["seq"]))
        if key_marker is not None:
            after = (key_marker, int(version_id_marker[1:]) if version_id_marker else 0)
            entries = [e for e in entries if (e["key"], e["seq"]) > after]

        page, rest = entries[: self.page_size], entries[self.page_size :]
        last = page[-1] if page else None
        return VersionPage(
            versions=[ObjectVersion(e["key"], e["version_id"]) for e in page if not e["delete_marker"]],
            delete_markers=[ObjectVersion(e["key"], e["version_id"], True) for e in page if e["delete_marker"]],
            is_truncated=bool(rest),
            next_key_marker=last["key"] if rest and last else None,
            next_version_id_marker=f"v{last['seq']}" if rest and last else None,
        )

    def get_object_tags(self, bucket: str, key: str) -> dict[str, str]:
        self._record("get_object_tags", bucket, key)
        return dict(self._current(bucket, key)["tags"])

    def put_object_tags(self, bucket: str, key: str, tags: dict[str, str]) -> None:
        self._record("put_object_tags", bucket, key, dict(tags))
        self._current(bucket, key)["tags"] = dict(tags)

    def delete_object_tags(self, bucket: str, key: str) -> None:
        self._record("delete_object_tags", bucket, key)
        self._current(bucket, key)["tags"] = {}

    def put_object_retention(self, bucket: str, key: str, mode, until, bypass_governance: bool = False) -> None:
        self._record("put_object_retention", bucket, key, mode, until, bypass_governance)
        entry = self._current(bucket, key)
        entry["lock_mode"] = mode
        entry["lock_until"] = until

    def get_object_legal_hold(self, bucket: str, key: str, version_id: str | None = None) -> str | None:
        self._record("get_object_legal_hold", bucket, key, version_id)
        return self._current(bucket, key, version_id)["legal_hold"]

    def put_object_legal_hold(self, bucket: str, key: str, status: str, version_id: str | None = None) -> None:
        self._record("put_object_legal_hold", bucket, key, status, version_id)
        self._current(bucket, key, version_id)["legal_hold"] = status


@pytest.fixture
def storage() -> FakeObjectStorage:
    return FakeObjectStorage()
