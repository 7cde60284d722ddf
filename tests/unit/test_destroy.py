"""Tests for bulk deletion of object versions."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from prometheus_client import REGISTRY

from conftest import FakeObjectStorage, client_error
from storage_reconciler.errors import ObjectDeletionError
from storage_reconciler.models import ObjectVersion, VersionPage
from storage_reconciler.reconcile import destroy
from storage_reconciler.reconcile.destroy import (
    delete_all_object_versions,
    delete_object_version,
    empty_bucket,
)


def _deleted_metric(bucket: str) -> float:
    return REGISTRY.get_sample_value("storage_reconciler_object_versions_deleted_total", {"bucket": bucket}) or 0.0


class TestDeleteObjectVersion:
    """Test cases for deleting a single version."""

    def test_missing_version_counts_as_deleted(self, storage):
        """Test that NoSuchKey is success."""
        storage.add_bucket("b1")
        delete_object_version(storage, "b1", "gone.txt", "v999", False)

    def test_missing_bucket_counts_as_deleted(self, storage):
        """Test that NoSuchBucket is success."""
        delete_object_version(storage, "nope", "k", "v1", False)

    def test_force_bypasses_governance(self, storage):
        """Test that force is passed through as a governance bypass."""
        storage.add_bucket("b1", object_lock_enabled=True)
        vid = storage.add_object("b1", "k", lock_mode="GOVERNANCE")
        delete_object_version(storage, "b1", "k", vid, True)
        assert storage.entries("b1") == []
        assert storage.calls_to("delete_object")[0][-1] is True

    def test_other_errors_propagate(self, storage):
        """Test that refusals are raised to the caller."""
        storage.add_bucket("b1", object_lock_enabled=True)
        vid = storage.add_object("b1", "k", lock_mode="GOVERNANCE")
        with pytest.raises(ClientError) as exc_info:
            delete_object_version(storage, "b1", "k", vid, False)
        assert exc_info.value.response["Error"]["Code"] == "AccessDenied"


class TestDeleteAllObjectVersions:
    """Test cases for delete_all_object_versions."""

    def test_absent_bucket_returns_zero(self, storage):
        """Test that a bucket that no longer exists has nothing to delete."""
        assert delete_all_object_versions(storage, "missing") == 0

    def test_deletes_versions_and_delete_markers(self, storage):
        """Test that every version and delete marker is removed."""
        storage.add_bucket("b1")
        storage.add_object("b1", "a.txt")
        storage.add_object("b1", "a.txt", body=b"second")
        storage.add_object("b1", "b.txt")
        storage.delete_object("b1", "b.txt")

        before = _deleted_metric("b1")
        assert delete_all_object_versions(storage, "b1") == 4
        assert storage.entries("b1") == []
        assert _deleted_metric("b1") == before + 4

    def test_unversioned_bucket(self, storage):
        """Test that null version IDs are deleted too."""
        storage.add_bucket("b1", versioned=False)
        storage.add_object("b1", "a")
        storage.add_object("b1", "b")
        assert delete_all_object_versions(storage, "b1") == 2
        assert [c[3] for c in storage.calls_to("delete_object")] == ["null", "null"]

    def test_restricted_to_key(self, storage):
        """Test that a key restricts deletion even though the listing is by prefix."""
        storage.add_bucket("b1")
        storage.add_object("b1", "a")
        storage.add_object("b1", "a")
        storage.add_object("b1", "ab")
        assert delete_all_object_versions(storage, "b1", key="a") == 2
        assert [e["key"] for e in storage.entries("b1")] == ["ab"]

    def test_paginates_through_all_pages(self):
        """Test that deletion follows the pagination markers."""
        storage = FakeObjectStorage(page_size=2)
        storage.add_bucket("b1")
        for i in range(5):
            storage.add_object("b1", f"k{i}")
        assert delete_all_object_versions(storage, "b1") == 5
        assert storage.entries("b1") == []

    def test_empty_page_does_not_end_listing(self, storage):
        """Test that only the truncation flag ends the listing."""
        storage.add_bucket("b1")
        storage.add_object("b1", "k")
        storage.empty_pages = 2
        assert delete_all_object_versions(storage, "b1") == 1
        assert storage.entries("b1") == []

    def test_legal_hold_lifted_when_forced(self, storage):
        """Test that a held version is released and deleted when forced."""
        storage.add_bucket("b1", object_lock_enabled=True)
        storage.add_object("b1", "a")
        held = storage.add_object("b1", "held", legal_hold="ON")

        assert delete_all_object_versions(storage, "b1", force=True) == 2
        assert storage.entries("b1") == []
        assert storage.calls_to("put_object_legal_hold") == [("put_object_legal_hold", "b1", "held", "OFF", held)]
        assert len([c for c in storage.calls_to("delete_object") if c[3] == held]) == 2

    def test_legal_hold_without_force_fails_after_sweep(self, storage):
        """Test that a held version fails the pass but the sweep continues."""
        storage.add_bucket("b1", object_lock_enabled=True)
        storage.add_object("b1", "held", legal_hold="ON")
        storage.add_object("b1", "z")

        with pytest.raises(ObjectDeletionError) as exc_info:
            delete_all_object_versions(storage, "b1")
        assert exc_info.value.deleted == 1
        assert "AccessDenied" in str(exc_info.value)
        assert [e["key"] for e in storage.entries("b1")] == ["held"]
        assert storage.calls_to("put_object_legal_hold") == []

    def test_version_errors_stop_before_delete_markers(self, storage):
        """Test that delete markers are left alone when the version pass failed."""
        storage.add_bucket("b1", object_lock_enabled=True)
        storage.add_object("b1", "held", legal_hold="ON")
        storage.add_object("b1", "m")
        storage.delete_object("b1", "m")

        with pytest.raises(ObjectDeletionError):
            delete_all_object_versions(storage, "b1")
        assert any(e["delete_marker"] for e in storage.entries("b1"))

    def test_listed_hold_status_is_not_looked_up(self):
        """Test that a hold status carried by the listing spares the lookup."""
        storage = MagicMock()
        storage.list_object_versions.return_value = VersionPage(
            versions=[ObjectVersion("held", "v1", lock_status="ON")]
        )
        storage.delete_object.side_effect = [client_error("AccessDenied", 403), None]

        assert delete_all_object_versions(storage, "b1", force=True) == 1
        storage.get_object_legal_hold.assert_not_called()
        storage.put_object_legal_hold.assert_called_once_with("b1", "held", "OFF", version_id="v1")

    def test_listed_status_without_hold_is_not_released(self):
        """Test that a version listed without a hold is reported, not released."""
        storage = MagicMock()
        storage.list_object_versions.return_value = VersionPage(
            versions=[ObjectVersion("locked", "v1", lock_status="OFF")]
        )
        storage.delete_object.side_effect = client_error("AccessDenied", 403)

        with pytest.raises(ObjectDeletionError, match="AccessDenied deleting object locked"):
            delete_all_object_versions(storage, "b1", force=True)
        storage.get_object_legal_hold.assert_not_called()
        storage.put_object_legal_hold.assert_not_called()

    def test_forced_access_denied_without_hold(self, storage):
        """Test that compliance retention cannot be forced away."""
        storage.add_bucket("b1", object_lock_enabled=True)
        storage.add_object("b1", "locked", lock_mode="COMPLIANCE")
        with pytest.raises(ObjectDeletionError, match="AccessDenied deleting object locked"):
            delete_all_object_versions(storage, "b1", force=True)
        assert storage.calls_to("put_object_legal_hold") == []

    def test_ignore_errors_returns_count(self, storage):
        """Test that ignored errors only affect the count."""
        storage.add_bucket("b1", object_lock_enabled=True)
        storage.add_object("b1", "held", legal_hold="ON")
        storage.add_object("b1", "m")
        storage.delete_object("b1", "m")
        assert delete_all_object_versions(storage, "b1", ignore_errors=True) == 2

    def test_listing_error_propagates(self, storage):
        """Test that a failure to list is not swallowed."""
        storage.add_bucket("b1")
        storage.fail["list_object_versions"] = [client_error("AccessDenied", 403)]
        with pytest.raises(ClientError):
            delete_all_object_versions(storage, "b1")


class TestEmptyBucket:
    """Test cases for empty_bucket."""

    def test_empty_bucket(self, storage):
        """Test that emptying leaves a deletable bucket."""
        storage.add_bucket("b1")
        storage.add_object("b1", "a")
        storage.add_object("b1", "b")
        assert empty_bucket(storage, "b1") == 2
        storage.delete_bucket("b1")
        assert "b1" not in storage.buckets

    def test_deleted_count_recorded_on_span(self, storage, monkeypatch):
        """Test that the number of deleted versions is attached to the current span."""
        recorded = MagicMock()
        monkeypatch.setattr(destroy, "add_span_attribute", recorded)
        storage.add_bucket("b1")
        storage.add_object("b1", "a")
        empty_bucket(storage, "b1")
        recorded.assert_called_once_with("storage.versions_deleted", 1)
