"""Tests for the permission reconciler."""

from __future__ import annotations

import json
from unittest.mock import MagicMock
from urllib.parse import quote_plus

import pytest

from storage_reconciler.errors import AccountAPIError, ReconcileError, ResourceGoneError
from storage_reconciler.handlers.permission import PermissionReconciler, name_with_suffix
from storage_reconciler.models import PermissionSpec, PermissionState
from storage_reconciler.reconcile.policy import normalize
from storage_reconciler.services.account.models import PermissionRecord

POLICY = json.dumps(
    {"Version": "2012-10-17", "Statement": [{"Effect": "Allow", "Action": ["s3:GetObject"], "Resource": ["*"]}]}
)


def _record(**kwargs) -> PermissionRecord:
    fields = {"id": "p-1", "name": "readers", "type": "bucket-names", "actions": "read-only", "buckets": ["b1"]}
    fields.update(kwargs)
    return PermissionRecord(**fields)


@pytest.fixture
def account():
    client = MagicMock()
    client.create_permission.return_value = "p-1"
    client.get_permission.return_value = _record()
    return client


@pytest.fixture
def reconciler(account):
    return PermissionReconciler(account)


class TestNameWithSuffix:
    """Test cases for name generation."""

    def test_explicit_name_wins(self):
        """Test that an explicit name is used as is."""
        assert name_with_suffix("readers", "ignored-") == "readers"

    def test_prefix_gets_unique_suffix(self):
        """Test that a prefix yields unique names."""
        a = name_with_suffix("", "team-")
        b = name_with_suffix("", "team-")
        assert a.startswith("team-") and b.startswith("team-")
        assert a != b
        assert len(a) == len("team-") + 26

    def test_default_prefix(self):
        """Test the generated name without name or prefix."""
        assert name_with_suffix("").startswith("storage-reconciler-")


class TestPermissionCreate:
    """Test cases for permission creation."""

    def test_create_bucket_names(self, account, reconciler):
        """Test creating a bucket-scoped permission."""
        state = reconciler.create(PermissionSpec(name="readers", actions="read-only", buckets=("b1",)))

        payload = account.create_permission.call_args[0][0]
        assert payload.type == "bucket-names"
        assert payload.buckets == ["b1"]
        assert payload.policy is None
        assert state == PermissionState(
            id="p-1", name="readers", type="bucket-names", actions="read-only", buckets=["b1"]
        )

    def test_create_with_name_prefix(self, account, reconciler):
        """Test that a generated name is sent to the API."""
        reconciler.create(PermissionSpec(name_prefix="team-", actions="read-only", all_buckets=True))
        assert account.create_permission.call_args[0][0].name.startswith("team-")

    def test_create_without_scope(self, account, reconciler):
        """Test that a permission needs a scope."""
        with pytest.raises(ReconcileError, match="must be set"):
            reconciler.create(PermissionSpec(name="x", actions="read-only"))
        account.create_permission.assert_not_called()

    def test_create_policy_keeps_desired_text(self, account, reconciler):
        """Test that an escaped, equivalent remote policy keeps the desired text."""
        reordered = json.dumps(
            {"Statement": [{"Resource": "*", "Action": "s3:GetObject", "Effect": "Allow"}], "Version": "2012-10-17"}
        )
        account.get_permission.return_value = _record(type="policy", actions="", buckets=[], policy=quote_plus(reordered))
        state = reconciler.create(PermissionSpec(name="p", policy=POLICY))
        assert state.policy == normalize(POLICY)
        assert state.actions == ""

    def test_first_read_waits_for_visibility(self, account, reconciler):
        """Test that not-found right after create is retried."""
        account.get_permission.side_effect = [AccountAPIError("PermissionNotFound", status=404), _record()]
        state = reconciler.create(PermissionSpec(name="readers", actions="read-only", buckets=("b1",)))
        assert state.id == "p-1"
        assert account.get_permission.call_count == 2

    def test_create_failure_is_wrapped(self, account, reconciler):
        """Test that an API rejection names the permission."""
        account.create_permission.side_effect = AccountAPIError("BadRequest", "invalid actions", 400)
        with pytest.raises(ReconcileError, match=r"error creating Permission \(readers\): BadRequest"):
            reconciler.create(PermissionSpec(name="readers", actions="read-only", buckets=("b1",)))


class TestPermissionRead:
    """Test cases for reading a permission."""

    def test_internal_error_retried(self, account, reconciler):
        """Test that transient InternalError responses are retried."""
        account.get_permission.side_effect = [AccountAPIError("InternalError", status=500), _record()]
        assert reconciler.read("p-1").name == "readers"

    def test_gone(self, account, reconciler):
        """Test that a deleted permission is reported as gone."""
        account.get_permission.side_effect = AccountAPIError("PermissionNotFound", status=404)
        with pytest.raises(ResourceGoneError):
            reconciler.read("p-1")

    def test_all_buckets_has_no_bucket_fields(self, account, reconciler):
        """Test that bucket fields are not reported for all-buckets permissions."""
        account.get_permission.return_value = _record(type="all-buckets", prefix="ignored", buckets=["b9"])
        state = reconciler.read("p-1")
        assert state.bucket_prefix == ""
        assert state.buckets == []

    def test_malformed_policy_escape(self, account, reconciler):
        """Test that a policy with a broken escape fails the read."""
        account.get_permission.return_value = _record(type="policy", policy="%zz")
        with pytest.raises(ReconcileError, match="invalid URL escape"):
            reconciler.read("p-1")


class TestPermissionUpdate:
    """Test cases for updating a permission."""

    def test_unchanged_makes_no_update_call(self, account, reconciler):
        """Test that a converged permission is only read."""
        current = reconciler.read("p-1")
        reconciler.update(current, PermissionSpec(name="readers", actions="read-only", buckets=("b1",)))
        account.update_permission.assert_not_called()

    def test_changed_actions(self, account, reconciler):
        """Test that a changed field sends the whole permission."""
        current = reconciler.read("p-1")
        reconciler.update(current, PermissionSpec(name="readers", actions="all-operations", buckets=("b1",)))
        permission_id, payload = account.update_permission.call_args[0]
        assert permission_id == "p-1"
        assert payload.actions == "all-operations"

    def test_equivalent_policy_is_not_drift(self, account, reconciler):
        """Test that a reordered policy does not trigger an update."""
        account.get_permission.return_value = _record(type="policy", actions="", buckets=[], policy=quote_plus(POLICY))
        current = reconciler.read("p-1", policy=POLICY)
        reordered = json.dumps(
            {"Statement": [{"Resource": "*", "Effect": "Allow", "Action": "s3:GetObject"}], "Version": "2012-10-17"}
        )
        reconciler.update(current, PermissionSpec(name="readers", policy=reordered))
        account.update_permission.assert_not_called()


class TestPermissionDelete:
    """Test cases for deleting a permission."""

    def test_delete(self, account, reconciler):
        """Test a plain delete."""
        reconciler.delete(PermissionState(id="p-1"))
        account.delete_permission.assert_called_once_with("p-1")

    def test_already_deleted(self, account, reconciler):
        """Test that a missing permission counts as deleted."""
        account.delete_permission.side_effect = AccountAPIError("PermissionNotFound", status=404)
        reconciler.delete(PermissionState(id="p-1"))

    def test_delete_failure(self, account, reconciler):
        """Test that other errors are reported."""
        account.delete_permission.side_effect = AccountAPIError("Forbidden", status=403)
        with pytest.raises(ReconcileError, match=r"error deleting Permission \(p-1\)"):
            reconciler.delete(PermissionState(id="p-1"))
