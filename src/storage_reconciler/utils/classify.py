"""Table-driven classification of remote errors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from botocore.exceptions import ClientError

from ..constants import (
    ERR_INTERNAL,
    ERR_NO_SUCH_BUCKET,
    ERR_NO_SUCH_KEY,
    ERR_NOT_FOUND,
    ERR_OPERATION_ABORTED,
    ERR_PERMISSION_NOT_FOUND,
    ERR_SERVICE_ACCOUNT_NOT_FOUND,
    ERR_SLOW_DOWN,
    ERR_THROTTLING,
    ERR_TOO_MANY_REQUESTS,
    HTTP_NOT_FOUND,
    HTTP_SERVICE_UNAVAILABLE,
    HTTP_TOO_MANY_REQUESTS,
)
from ..errors import AccountAPIError


class ErrorClass(str, Enum):
    """How a remote error should be treated by a retry loop."""

    TERMINAL = "terminal"
    RETRYABLE_KNOWN = "retryable_known"
    RETRYABLE_UNKNOWN = "retryable_unknown"


@dataclass(frozen=True)
class Classification:
    """Result of classifying one error value."""

    error_class: ErrorClass
    code: str | None = None

    @property
    def retryable(self) -> bool:
        return self.error_class is not ErrorClass.TERMINAL


# Known transient backend conditions: aborted concurrent operations,
# not-yet-visible resources and rate limiting.
TRANSIENT_CODES: frozenset[str] = frozenset(
    {
        ERR_OPERATION_ABORTED,
        ERR_NO_SUCH_BUCKET,
        ERR_NOT_FOUND,
        ERR_SLOW_DOWN,
        ERR_THROTTLING,
        ERR_TOO_MANY_REQUESTS,
        ERR_INTERNAL,
    }
)

TRANSIENT_STATUSES: frozenset[int] = frozenset(
    {HTTP_NOT_FOUND, HTTP_TOO_MANY_REQUESTS, HTTP_SERVICE_UNAVAILABLE}
)

NOT_FOUND_CODES: frozenset[str] = frozenset(
    {
        ERR_NO_SUCH_BUCKET,
        ERR_NO_SUCH_KEY,
        ERR_NOT_FOUND,
        ERR_PERMISSION_NOT_FOUND,
        ERR_SERVICE_ACCOUNT_NOT_FOUND,
    }
)


def error_code(error: BaseException | None) -> str | None:
    """Return the machine-readable code of a remote error, if any."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code")
    if isinstance(error, AccountAPIError):
        return error.code
    return None


def error_status(error: BaseException | None) -> int | None:
    """Return the HTTP status of a remote error, if any."""
    if isinstance(error, ClientError):
        return error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    if isinstance(error, AccountAPIError):
        return error.status
    return None


def error_code_equals(error: BaseException | None, *codes: str) -> bool:
    """Check whether the error carries one of the given codes."""
    code = error_code(error)
    return code is not None and code in codes


def error_status_equals(error: BaseException | None, *statuses: int) -> bool:
    status = error_status(error)
    return status is not None and status in statuses


def is_not_found(error: BaseException | None) -> bool:
    """Check whether the error reports an absent resource."""
    if error is None:
        return False
    return error_code_equals(error, *NOT_FOUND_CODES) or error_status_equals(error, HTTP_NOT_FOUND)


def classify(
    error: BaseException,
    codes: Iterable[str] | None = None,
    statuses: Iterable[int] | None = None,
    eventually_consistent: bool = False,
) -> Classification:
    """Classify an error from a remote call.

    Args:
        error: Error raised by a remote call
        codes: Transient codes for this call site (defaults to TRANSIENT_CODES)
        statuses: Transient HTTP statuses for this call site (defaults to TRANSIENT_STATUSES)
        eventually_consistent: Whether unknown remote errors on this path are
            propagation noise (RETRYABLE_UNKNOWN) rather than TERMINAL

    Returns:
        Classification of the error
    """
    transient_codes = TRANSIENT_CODES if codes is None else frozenset(codes)
    transient_statuses = TRANSIENT_STATUSES if statuses is None else frozenset(statuses)

    code = error_code(error)
    if code is not None and code in transient_codes:
        return Classification(ErrorClass.RETRYABLE_KNOWN, code)

    status = error_status(error)
    if status is not None and status in transient_statuses:
        return Classification(ErrorClass.RETRYABLE_KNOWN, code or str(status))

    # Only errors that came back from a remote API can be propagation noise.
    if eventually_consistent and (code is not None or status is not None):
        return Classification(ErrorClass.RETRYABLE_UNKNOWN, code)

    return Classification(ErrorClass.TERMINAL, code)
