"""Base reconciler class with common functionality for all resource kinds."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, TypeVar

from .. import metrics
from ..constants import CONTROLLER, ERR_OPERATION_ABORTED, CREATE_TIMEOUT_SECONDS, PROPAGATION_TIMEOUT_SECONDS
from ..errors import ReconcileError, ResourceGoneError
from ..logging import log_resource_event
from ..tracing import trace_span
from ..utils.classify import is_not_found
from ..utils.context import with_correlation_id
from ..utils.errors import sanitize_exception
from ..utils.retry import retry_when_error_code, retry_when_not_found, retry_when_transient

T = TypeVar("T")

# Progressive forms used in error messages: "error creating Bucket (b1): ..."
_VERBS = {
    "create": "creating",
    "read": "reading",
    "update": "updating",
    "delete": "deleting",
    "lookup": "looking up",
}


class BaseReconciler:
    """Base class for all resource reconcilers with common functionality."""

    def __init__(self, kind: str, cancel: threading.Event | None = None):
        """Initialize base reconciler.

        Args:
            kind: The resource kind (e.g., "Bucket", "Permission")
            cancel: Optional event that aborts retry loops between attempts
        """
        self.kind = kind
        self.cancel = cancel
        self.logger = logging.getLogger(__name__)

    def log_info(
        self,
        name: str,
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log an info-level structured log message."""
        log_resource_event(
            self.logger,
            controller=CONTROLLER,
            resource_kind=self.kind,
            resource_name=name,
            event=event,
            reason=reason,
            message=message,
            **kwargs,
        )

    def log_warning(
        self,
        name: str,
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        log_resource_event(
            self.logger,
            controller=CONTROLLER,
            resource_kind=self.kind,
            resource_name=name,
            event=event,
            reason=reason,
            message=message,
            level=logging.WARNING,
            **kwargs,
        )

    def log_error(
        self,
        name: str,
        message: str,
        error: BaseException | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            name: Resource name
            message: Log message
            error: Optional exception; its message is sanitized before logging
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()

        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__

        log_resource_event(
            self.logger,
            controller=CONTROLLER,
            resource_kind=self.kind,
            resource_name=name,
            event=event,
            reason=reason,
            message=message,
            level=logging.ERROR,
            **log_data,
        )

    def reconcile_with_metrics(self, operation: str, name: str, reconcile_fn: Callable[[], T]) -> T:
        """Run one reconciler operation with tracing, metrics and error handling.

        Any failure that is not already a ReconcileError is wrapped into one
        naming the resource and the operation, so callers always get a
        single explanatory error.
        """
        with with_correlation_id(), trace_span(f"{self.kind.lower()}.{operation}", kind=self.kind, attributes={"resource.name": name}):
            start_time = time.monotonic()
            try:
                result = reconcile_fn()
                metrics.reconcile_total.labels(kind=self.kind, operation=operation, result="success").inc()
                return result
            except ResourceGoneError:
                self.log_warning(name, f"{self.kind} {name} no longer exists, removing from state", reason="NotFound")
                metrics.reconcile_total.labels(kind=self.kind, operation=operation, result="gone").inc()
                raise
            except ReconcileError as e:
                self.log_error(name, f"{operation.capitalize()} failed", error=e, reason="ReconciliationFailed")
                metrics.reconcile_total.labels(kind=self.kind, operation=operation, result="error").inc()
                raise
            except Exception as e:
                self.log_error(name, f"{operation.capitalize()} failed", error=e, reason="ReconciliationFailed")
                metrics.reconcile_total.labels(kind=self.kind, operation=operation, result="error").inc()
                raise ReconcileError(self.kind, name, _VERBS.get(operation, operation), e) from e
            finally:
                metrics.reconcile_duration_seconds.labels(kind=self.kind, operation=operation).observe(
                    time.monotonic() - start_time
                )

    def create_with_retry(self, create_fn: Callable[[], T], *codes: str) -> T:
        """Issue a create, repeating the whole create on transient duplicate reports."""
        return retry_when_error_code(
            CREATE_TIMEOUT_SECONDS,
            create_fn,
            *(codes or (ERR_OPERATION_ABORTED,)),
            cancel=self.cancel,
            operation=f"create_{self.kind.lower()}",
        )

    def observe(self, name: str, read_fn: Callable[[], T], is_new: bool) -> T:
        """Fetch a resource, handling not-found by reconciliation phase.

        Right after a create a not-found is propagation delay and is retried.
        In any later pass it means the resource is gone.

        Raises:
            ResourceGoneError: If a previously observed resource is absent
        """
        if is_new:
            return retry_when_not_found(
                PROPAGATION_TIMEOUT_SECONDS,
                read_fn,
                cancel=self.cancel,
                operation=f"read_{self.kind.lower()}",
            )

        return self._read_existing(name, read_fn)

    def follow_up(
        self,
        name: str,
        read_fn: Callable[[], T],
        is_new: bool,
        operation: str,
        timeout: float = PROPAGATION_TIMEOUT_SECONDS,
    ) -> T:
        """Fetch a secondary attribute of a resource that has just been observed.

        Right after a create any remote error here may be propagation delay
        and is retried until the deadline. In any later pass the resource can
        vanish between the existence check and this read; a not-found then
        means the resource is gone.

        Raises:
            ResourceGoneError: If a previously observed resource is absent
        """
        if is_new:
            return retry_when_transient(
                timeout,
                read_fn,
                eventually_consistent=True,
                cancel=self.cancel,
                operation=operation,
            )
        return self._read_existing(name, read_fn)

    def _read_existing(self, name: str, read_fn: Callable[[], T]) -> T:
        try:
            return read_fn()
        except Exception as e:
            if is_not_found(e):
                raise ResourceGoneError(self.kind, name, "reading", e) from e
            raise
