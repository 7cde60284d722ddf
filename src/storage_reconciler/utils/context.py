"""Correlation ID propagation for reconciliation runs."""

from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace

# Context variable for storing correlation ID
correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:16]


def get_correlation_id() -> str | None:
    """Get the correlation ID from the current context."""
    return correlation_id.get()


@contextmanager
def with_correlation_id(corr_id: str | None = None) -> Iterator[str]:
    """Set a correlation ID for the duration of a block.

    An ID already set by an outer block is kept, so nested reconcile steps
    share the ID of the run that started them.

    Args:
        corr_id: Correlation ID to use; generated when omitted

    Yields:
        The correlation ID in effect
    """
    current = correlation_id.get()
    if corr_id is None and current is not None:
        yield current
        return

    token = correlation_id.set(corr_id or new_correlation_id())
    try:
        yield correlation_id.get()  # type: ignore[misc]
    finally:
        correlation_id.reset(token)


def get_context_dict(additional: dict[str, Any] | None = None) -> dict[str, Any]:
    """Get a dictionary of context values, including correlation and trace IDs."""
    ctx: dict[str, Any] = {}

    corr_id = get_correlation_id()
    if corr_id:
        ctx["correlation_id"] = corr_id

    trace_ctx = propagate_trace_context()
    if trace_ctx:
        ctx.update(trace_ctx)

    if additional:
        ctx.update(additional)

    return ctx


def propagate_trace_context() -> dict[str, Any] | None:
    """Return the current trace and span IDs, if a span is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        span_context = span.get_span_context()
        if span_context.is_valid:
            return {
                "trace_id": format(span_context.trace_id, "032x"),
                "span_id": format(span_context.span_id, "016x"),
            }
    return None
