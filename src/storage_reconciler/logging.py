"""Structured logging configuration for the storage reconciler."""

import json
import logging
import os
import sys
from typing import Any

from .utils.context import get_context_dict


def setup_structured_logging(level: str | None = None) -> None:
    """Configure structured JSON logging.

    The level comes from ``level`` or ``RECONCILER_LOG_LEVEL`` (default INFO).
    """
    level_name = (level or os.getenv("RECONCILER_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def log_resource_event(
    logger: logging.Logger,
    controller: str,
    resource_kind: str,
    resource_name: str,
    event: str,
    reason: str,
    message: str,
    level: int = logging.INFO,
    **kwargs: Any,
) -> None:
    """Log a structured resource event as one JSON line."""
    log_data = {
        "controller": controller,
        "resource": resource_kind,
        "name": resource_name,
        "event": event,
        "reason": reason,
        "message": message,
    }
    log_data.update(get_context_dict(kwargs))
    logger.log(level, json.dumps(sanitize_secrets(log_data), default=str))


def sanitize_secrets(log_data: dict[str, Any]) -> dict[str, Any]:
    """Remove secret fields from log data."""
    secret_fields = {"access_key", "secret", "secret_key", "client_secret", "token", "password"}
    sanitized = log_data.copy()
    for field in secret_fields:
        if field in sanitized:
            sanitized[field] = "***REDACTED***"
    return sanitized
