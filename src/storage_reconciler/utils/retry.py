"""Deadline-bounded retry driver for remote calls."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, TypeVar

from .. import metrics
from ..constants import HTTP_NOT_FOUND, RETRY_MAX_DELAY_SECONDS, RETRY_MIN_DELAY_SECONDS
from ..errors import RetryableError, RetryCancelledError, RetryTimeoutError
from ..models import RetryOutcome
from .classify import NOT_FOUND_CODES, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NOT_FOUND_STATUSES = (HTTP_NOT_FOUND,)


def retry(
    timeout: float,
    attempt: Callable[[], T],
    *,
    final_attempt: Callable[[], T] | None = None,
    escape_hatch: bool = True,
    cancel: threading.Event | None = None,
    operation: str = "remote_call",
) -> T:
    """Call ``attempt`` until it succeeds, fails terminally or the deadline elapses.

    ``attempt`` asks for another try by raising ``RetryableError``; any other
    exception is terminal and propagates immediately. Between attempts the
    driver sleeps with exponential backoff, never past the deadline.

    When the deadline elapses the driver makes exactly one more call, to
    ``final_attempt`` if given or else to ``attempt`` with ``RetryableError``
    unwrapped, and returns or raises its outcome verbatim. The condition has
    usually resolved by then, and the real error is more useful than a
    generic timeout.

    Args:
        timeout: Overall deadline in seconds, measured from the call
        attempt: Callable performing one attempt
        final_attempt: Unretried call made once the deadline elapses
        escape_hatch: If False, raise RetryTimeoutError instead of the final call
        cancel: Event checked between attempts; when set the loop stops
        operation: Name used for logs and metrics

    Returns:
        The result of the successful attempt

    Raises:
        RetryCancelledError: If ``cancel`` was set between attempts
        RetryTimeoutError: If the deadline elapsed and ``escape_hatch`` is False
    """
    outcome = RetryOutcome()
    deadline = time.monotonic() + timeout
    delay = RETRY_MIN_DELAY_SECONDS

    while True:
        if cancel is not None and cancel.is_set():
            _record(operation, outcome, "cancelled")
            raise RetryCancelledError(outcome)

        if time.monotonic() >= deadline:
            break

        outcome.attempts += 1
        try:
            result = attempt()
        except RetryableError as e:
            outcome.last_error = e.cause
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            logger.debug(f"{operation}: attempt {outcome.attempts} failed with {e.cause}, retrying")
            time.sleep(min(delay, remaining))
            delay = min(delay * 2, RETRY_MAX_DELAY_SECONDS)
            continue
        except Exception as e:
            outcome.last_error = e
            _record(operation, outcome, "terminal")
            raise

        _record(operation, outcome, "success")
        return result

    outcome.timed_out = True
    if not escape_hatch:
        _record(operation, outcome, "timed_out")
        raise RetryTimeoutError(outcome)

    logger.info(f"{operation}: deadline elapsed after {outcome.attempts} attempts, making one final attempt")
    outcome.attempts += 1
    _record(operation, outcome, "timed_out")
    if final_attempt is not None:
        return final_attempt()
    try:
        return attempt()
    except RetryableError as e:
        raise e.cause from None


def _record(operation: str, outcome: RetryOutcome, result: str) -> None:
    metrics.retry_total.labels(operation=operation, outcome=result).inc()
    metrics.retry_attempts_total.labels(operation=operation).inc(outcome.attempts)


def retry_when_error_code(
    timeout: float,
    fn: Callable[[], T],
    *codes: str,
    cancel: threading.Event | None = None,
    operation: str = "remote_call",
) -> T:
    """Retry ``fn`` while it fails with one of the given error codes."""

    def attempt() -> T:
        try:
            return fn()
        except Exception as e:
            if classify(e, codes=codes, statuses=()).retryable:
                raise RetryableError(e) from e
            raise

    return retry(timeout, attempt, final_attempt=fn, cancel=cancel, operation=operation)


def retry_when_transient(
    timeout: float,
    fn: Callable[[], T],
    eventually_consistent: bool = False,
    cancel: threading.Event | None = None,
    operation: str = "remote_call",
) -> T:
    """Retry ``fn`` while it fails with a known transient backend condition.

    On an eventually consistent path, any other error reported by the
    remote API is retried as well.
    """

    def attempt() -> T:
        try:
            return fn()
        except Exception as e:
            if classify(e, eventually_consistent=eventually_consistent).retryable:
                raise RetryableError(e) from e
            raise

    return retry(timeout, attempt, final_attempt=fn, cancel=cancel, operation=operation)


def retry_when_not_found(
    timeout: float,
    fn: Callable[[], T],
    cancel: threading.Event | None = None,
    operation: str = "remote_call",
) -> T:
    """Retry ``fn`` while the resource it reads is not yet visible."""

    def attempt() -> T:
        try:
            return fn()
        except Exception as e:
            if classify(e, codes=NOT_FOUND_CODES, statuses=_NOT_FOUND_STATUSES).retryable:
                raise RetryableError(e) from e
            raise

    return retry(timeout, attempt, final_attempt=fn, cancel=cancel, operation=operation)


class _StillPresent(Exception):
    """The resource is still visible."""


def retry_until_not_found(
    timeout: float,
    fn: Callable[[], object],
    cancel: threading.Event | None = None,
    operation: str = "remote_call",
) -> None:
    """Call ``fn`` until it reports the resource as absent.

    Raises:
        RetryTimeoutError: If the resource is still visible at the deadline
    """

    def attempt() -> None:
        try:
            fn()
        except Exception as e:
            if classify(e, codes=NOT_FOUND_CODES, statuses=_NOT_FOUND_STATUSES).retryable:
                return None
            raise
        raise RetryableError(_StillPresent(operation))

    retry(timeout, attempt, escape_hatch=False, cancel=cancel, operation=operation)
