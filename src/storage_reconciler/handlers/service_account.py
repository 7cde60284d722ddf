"""Service account reconciler."""

from __future__ import annotations

import threading

from .. import metrics
from ..constants import KIND_SERVICE_ACCOUNT
from ..errors import AccountAPIError, ReconcileError
from ..models import ServiceAccountSpec, ServiceAccountState
from ..services.account.client import AccountAPIClient
from ..services.account.models import ServiceAccountPayload
from ..utils.classify import is_not_found
from .base import BaseReconciler


class ServiceAccountReconciler(BaseReconciler):
    """Drives a service account through create, read, update and delete."""

    def __init__(self, account: AccountAPIClient, cancel: threading.Event | None = None):
        super().__init__(KIND_SERVICE_ACCOUNT, cancel)
        self.account = account

    def create(self, spec: ServiceAccountSpec) -> ServiceAccountState:
        """Create the service account.

        The returned state carries the access key and secret, which the API
        only discloses at creation time.
        """
        return self.reconcile_with_metrics("create", spec.name, lambda: self._create(spec))

    def read(self, service_account_id: str, is_new: bool = False) -> ServiceAccountState:
        return self.reconcile_with_metrics("read", service_account_id, lambda: self._read(service_account_id, is_new))

    def update(self, current: ServiceAccountState, desired: ServiceAccountSpec) -> ServiceAccountState:
        return self.reconcile_with_metrics("update", current.id, lambda: self._update(current, desired))

    def delete(self, current: ServiceAccountState) -> None:
        self.reconcile_with_metrics("delete", current.id, lambda: self._delete(current))

    def _create(self, spec: ServiceAccountSpec) -> ServiceAccountState:
        payload = ServiceAccountPayload(name=spec.name, description=spec.description, permissions=list(spec.permissions))
        self.log_info(spec.name, "Creating service account", event="create", reason="Creating")
        try:
            created = self.account.create_service_account(payload)
        except AccountAPIError as e:
            raise ReconcileError(self.kind, spec.name, "creating", e) from e
        self.log_info(spec.name, "Service account created", event="create", reason="Created", id=created.id)

        state = self._read(created.id, is_new=True)
        if state.enabled != spec.enabled:
            self._set_enabled(created.id, spec.enabled)
            state = self._read(created.id, is_new=False)
        state.access_key = created.access_key
        state.secret = created.secret
        return state

    def _read(self, service_account_id: str, is_new: bool) -> ServiceAccountState:
        record = self.observe(service_account_id, lambda: self.account.get_service_account(service_account_id), is_new)
        return ServiceAccountState(
            id=record.id or service_account_id,
            name=record.name,
            description=record.description,
            permissions=list(record.permissions),
            enabled=record.enabled,
            ready_state=record.ready_state,
        )

    def _set_enabled(self, service_account_id: str, enabled: bool) -> None:
        action = "enabling" if enabled else "disabling"
        self.log_info(service_account_id, f"{action.capitalize()} service account", event="update", reason="Toggling")
        try:
            if enabled:
                self.account.enable_service_account(service_account_id)
            else:
                self.account.disable_service_account(service_account_id)
        except AccountAPIError as e:
            raise ReconcileError(self.kind, service_account_id, action, e) from e

    def _update(self, current: ServiceAccountState, desired: ServiceAccountSpec) -> ServiceAccountState:
        if (
            current.name != desired.name
            or current.description != desired.description
            or sorted(current.permissions) != sorted(desired.permissions)
        ):
            metrics.drift_detected_total.labels(kind=self.kind, resource_type="service_account").inc()
            payload = ServiceAccountPayload(
                name=desired.name, description=desired.description, permissions=list(desired.permissions)
            )
            self.log_info(current.id, "Updating service account", event="update", reason="Updating")
            try:
                self.account.update_service_account(current.id, payload)
            except AccountAPIError as e:
                raise ReconcileError(self.kind, current.id, "updating", e) from e

        if current.enabled != desired.enabled:
            self._set_enabled(current.id, desired.enabled)

        state = self._read(current.id, is_new=False)
        # Credentials are never returned by reads
        state.access_key = current.access_key
        state.secret = current.secret
        return state

    def _delete(self, current: ServiceAccountState) -> None:
        try:
            self.account.delete_service_account(current.id)
        except AccountAPIError as e:
            if is_not_found(e):
                self.log_info(current.id, "Service account already deleted", event="delete", reason="NotFound")
                return
            raise ReconcileError(self.kind, current.id, "deleting", e) from e
        self.log_info(current.id, "Service account deleted", event="delete", reason="Deleted")
