"""Error sanitization utilities to prevent credential leakage."""

import re

# Patterns that might expose credentials; group 1 is kept, the rest redacted
SENSITIVE_PATTERNS = [
    r"(bearer)\s+[A-Za-z0-9\-\._~\+/]+=*",
    r"(access[_\s]?key(?:[_\s]?id)?)[:=\s]+[A-Z0-9]{16,128}",
    r"(secret(?:[_\s]?access)?[_\s]?key)[:=\s]+[A-Za-z0-9/+=]{16,}",
    r"(client[_\s]?secret)[:=\s]+[^\s,;\)]+",
    r"(session[_\s]?token)[:=\s]+[A-Za-z0-9/+=]+",
]

# Field names whose values are redacted in "field: value" text
SENSITIVE_FIELDS = {
    "password",
    "secret",
    "token",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize an error message to remove credentials.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with credentials redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, r"\1 [REDACTED]", sanitized, flags=re.IGNORECASE)

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"\b{field}[:=]\s*(?!\[REDACTED\])([^\s,;\)]+)",
            f"{field}: [REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: BaseException) -> str:
    """Sanitize an exception message."""
    return sanitize_error_message(str(error))
