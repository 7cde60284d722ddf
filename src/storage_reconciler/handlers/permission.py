"""Permission reconciler."""

from __future__ import annotations

import threading
import uuid

from .. import metrics
from ..constants import (
    CONTROLLER,
    ERR_INTERNAL,
    KIND_PERMISSION,
    PERMISSION_TYPE_ALL_BUCKETS,
    PERMISSION_TYPE_POLICY,
    READ_TIMEOUT_SECONDS,
)
from ..errors import AccountAPIError, ReconcileError
from ..models import PermissionSpec, PermissionState
from ..reconcile.policy import reconcile_policy, unescape
from ..services.account.client import AccountAPIClient
from ..services.account.models import PermissionPayload, PermissionRecord
from ..utils.classify import is_not_found
from ..utils.retry import retry_when_error_code
from .base import BaseReconciler


def name_with_suffix(name: str, name_prefix: str = "") -> str:
    """Return ``name``, else a unique name built from ``name_prefix``, else a generated one."""
    if name:
        return name
    prefix = name_prefix or f"{CONTROLLER}-"
    return f"{prefix}{uuid.uuid4().hex[:26]}"


class PermissionReconciler(BaseReconciler):
    """Drives an account permission through create, read, update and delete."""

    def __init__(self, account: AccountAPIClient, cancel: threading.Event | None = None):
        super().__init__(KIND_PERMISSION, cancel)
        self.account = account

    def create(self, spec: PermissionSpec) -> PermissionState:
        """Create the permission and return its observed state."""
        name = name_with_suffix(spec.name, spec.name_prefix)
        return self.reconcile_with_metrics("create", name, lambda: self._create(name, spec))

    def read(self, permission_id: str, policy: str = "", is_new: bool = False) -> PermissionState:
        """Read a permission.

        Args:
            permission_id: Permission ID
            policy: Policy currently recorded; kept when the remote one is equivalent
            is_new: Whether this is the first read after the create
        """
        return self.reconcile_with_metrics("read", permission_id, lambda: self._read(permission_id, policy, is_new))

    def update(self, current: PermissionState, desired: PermissionSpec) -> PermissionState:
        return self.reconcile_with_metrics("update", current.id, lambda: self._update(current, desired))

    def delete(self, current: PermissionState) -> None:
        """Delete the permission; an already deleted permission is not an error."""
        self.reconcile_with_metrics("delete", current.id, lambda: self._delete(current))

    def _payload(self, name: str, spec: PermissionSpec) -> PermissionPayload:
        if not spec.permission_type:
            raise ReconcileError(
                self.kind, name, "building", "one of all_buckets, bucket_prefix, buckets or policy must be set"
            )
        return PermissionPayload(
            name=name,
            description=spec.description,
            type=spec.permission_type,
            actions=spec.actions,
            prefix=spec.bucket_prefix,
            buckets=list(spec.buckets),
            policy=spec.policy or None,
        )

    def _create(self, name: str, spec: PermissionSpec) -> PermissionState:
        payload = self._payload(name, spec)
        self.log_info(name, "Creating permission", event="create", reason="Creating", type=payload.type)
        try:
            permission_id = self.account.create_permission(payload)
        except AccountAPIError as e:
            raise ReconcileError(self.kind, name, "creating", e) from e
        self.log_info(name, "Permission created", event="create", reason="Created", id=permission_id)
        return self._read(permission_id, spec.policy, is_new=True)

    def _fetch(self, permission_id: str) -> PermissionRecord:
        # The account API reports transient failures as InternalError
        return retry_when_error_code(
            READ_TIMEOUT_SECONDS,
            lambda: self.account.get_permission(permission_id),
            ERR_INTERNAL,
            cancel=self.cancel,
            operation="read_permission",
        )

    def _read(self, permission_id: str, policy: str, is_new: bool) -> PermissionState:
        record = self.observe(permission_id, lambda: self._fetch(permission_id), is_new)

        state = PermissionState(
            id=record.id or permission_id,
            name=record.name,
            description=record.description,
            type=record.type,
            ready_state=record.ready_state,
        )
        if record.type != PERMISSION_TYPE_POLICY:
            state.actions = record.actions
        if record.type != PERMISSION_TYPE_ALL_BUCKETS:
            state.bucket_prefix = record.prefix
            state.buckets = list(record.buckets)
        state.policy = reconcile_policy(policy, unescape(record.policy), kind=self.kind)
        return state

    def _update(self, current: PermissionState, desired: PermissionSpec) -> PermissionState:
        name = desired.name or current.name
        payload = self._payload(name, desired)

        policy = reconcile_policy(current.policy, desired.policy, kind=self.kind)
        unchanged = (
            current.name == payload.name
            and current.description == payload.description
            and current.type == payload.type
            and current.actions == payload.actions
            and current.bucket_prefix == payload.prefix
            and sorted(current.buckets) == sorted(payload.buckets)
            and policy == current.policy
        )
        if unchanged:
            return self._read(current.id, current.policy, is_new=False)

        metrics.drift_detected_total.labels(kind=self.kind, resource_type="permission").inc()
        self.log_info(current.id, "Updating permission", event="update", reason="Updating")
        try:
            self.account.update_permission(current.id, payload)
        except AccountAPIError as e:
            raise ReconcileError(self.kind, current.id, "updating", e) from e
        return self._read(current.id, policy, is_new=False)

    def _delete(self, current: PermissionState) -> None:
        try:
            self.account.delete_permission(current.id)
        except AccountAPIError as e:
            if is_not_found(e):
                self.log_info(current.id, "Permission already deleted", event="delete", reason="NotFound")
                return
            raise ReconcileError(self.kind, current.id, "deleting", e) from e
        self.log_info(current.id, "Permission deleted", event="delete", reason="Deleted")
