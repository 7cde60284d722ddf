"""Exception hierarchy for the storage reconciler."""

from __future__ import annotations

from .models import RetryOutcome


class ReconcileError(Exception):
    """A reconciliation step failed.

    The message always names the resource and the suboperation that failed,
    so the caller gets one explanatory error instead of an ambiguous,
    partially applied state.
    """

    def __init__(
        self,
        kind: str,
        resource: str,
        operation: str,
        cause: BaseException | str | None = None,
    ) -> None:
        self.kind = kind
        self.resource = resource
        self.operation = operation
        self.cause = cause
        message = f"error {operation} {kind} ({resource})"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ResourceGoneError(ReconcileError):
    """A previously observed resource no longer exists; drop local state."""


class ImmutableFieldError(ReconcileError):
    """An update tried to change a field that identifies the resource."""

    def __init__(self, kind: str, resource: str, fields: list[str]) -> None:
        self.fields = fields
        super().__init__(
            kind,
            resource,
            "updating",
            f"fields {', '.join(sorted(fields))} cannot be changed in place",
        )


class DesiredStateError(ValueError):
    """A desired-state record failed validation at the boundary."""


class PolicyError(ValueError):
    """A policy document could not be parsed."""

    def __init__(self, raw: str, reason: str) -> None:
        self.raw = raw
        super().__init__(f"policy ({raw}) is invalid JSON: {reason}")


class ObjectDeletionError(Exception):
    """At least one object version could not be deleted during a sweep."""

    def __init__(self, bucket: str, deleted: int, last_error: BaseException | str, what: str = "object version") -> None:
        self.bucket = bucket
        self.deleted = deleted
        self.last_error = last_error
        super().__init__(
            f"error deleting at least one {what} in bucket {bucket} "
            f"({deleted} deleted), last error: {last_error}"
        )


class RetryableError(Exception):
    """Raised by a retry attempt to ask the retry driver for another try."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(str(cause))


class RetryTimeoutError(Exception):
    """The retry deadline elapsed and no final attempt was made."""

    def __init__(self, outcome: RetryOutcome) -> None:
        self.outcome = outcome
        super().__init__(
            f"timeout while waiting for state to become consistent "
            f"after {outcome.attempts} attempts, last error: {outcome.last_error}"
        )


class RetryCancelledError(Exception):
    """The retry loop was cancelled between attempts."""

    def __init__(self, outcome: RetryOutcome) -> None:
        self.outcome = outcome
        super().__init__(f"retry cancelled after {outcome.attempts} attempts")


class AccountAPIError(Exception):
    """Error reported by the account API."""

    def __init__(self, code: str, message: str = "", status: int | None = None) -> None:
        self.code = code
        self.message = message
        self.status = status
        text = code if not message or message == code else f"{code}: {message}"
        super().__init__(text)


class AuthenticationError(AccountAPIError):
    """The account API did not return a usable bearer token."""
