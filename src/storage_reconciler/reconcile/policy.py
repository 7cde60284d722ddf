"""Normalization and semantic comparison of access-policy documents."""

from __future__ import annotations

import json
import re
from collections import Counter
from typing import Any
from urllib.parse import unquote_plus

from .. import metrics
from ..constants import KIND_PERMISSION
from ..errors import PolicyError

EMPTY_POLICY = "{}"

# Statement fields whose value may be a single string or a list of strings
_SET_FIELDS = {"Action", "NotAction", "Resource", "NotResource"}
_PRINCIPAL_FIELDS = {"Principal", "NotPrincipal"}

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _parse(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise PolicyError(raw, str(e)) from e


def _dump(doc: Any) -> str:
    return json.dumps(doc, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _sorted(values: list) -> list:
    return sorted(values, key=_dump)


def _sort_block(block: Any) -> Any:
    if not isinstance(block, dict):
        return block
    return {k: _sorted(v) if isinstance(v, list) else v for k, v in block.items()}


def _ordered_statement(statement: Any) -> Any:
    if not isinstance(statement, dict):
        return statement
    ordered = {}
    for key, value in statement.items():
        if key in _SET_FIELDS and isinstance(value, list):
            value = _sorted(value)
        elif key in _PRINCIPAL_FIELDS:
            value = _sort_block(value)
        elif key == "Condition" and isinstance(value, dict):
            value = {operator: _sort_block(block) for operator, block in value.items()}
        ordered[key] = value
    return ordered


def _ordered(doc: Any) -> Any:
    """Sort the arrays of a policy document whose order carries no meaning."""
    if not isinstance(doc, dict) or "Statement" not in doc:
        return doc
    statements = doc["Statement"]
    if isinstance(statements, list):
        statements = _sorted([_ordered_statement(s) for s in statements])
    else:
        statements = _ordered_statement(statements)
    return {**doc, "Statement": statements}


def normalize(raw: str | None) -> str:
    """Return the canonical serialization of a policy document.

    Object keys are sorted and whitespace removed. Statements are sorted,
    and so are the lists inside a statement whose order carries no meaning
    (actions, resources, principals and condition values). Scalars stay
    scalars, so two documents that differ only in a one-element list still
    serialize differently. Blank input yields "".

    Raises:
        PolicyError: If the text is not valid JSON
    """
    if raw is None or not raw.strip():
        return ""
    return _dump(_ordered(_parse(raw)))


def unescape(raw: str) -> str:
    """URL-decode a policy returned by the account API.

    Raises:
        PolicyError: On a malformed percent escape
    """
    bad = _BAD_ESCAPE.search(raw)
    if bad:
        raise PolicyError(raw, f"invalid URL escape {raw[bad.start():bad.start() + 3]!r}")
    return unquote_plus(raw)


def _scalar(value: Any) -> str:
    # Condition values compare as strings: true == "true", 10 == "10"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _string_set(value: Any) -> frozenset:
    if isinstance(value, list):
        return frozenset(_scalar(v) for v in value)
    return frozenset({_scalar(value)})


def _freeze(value: Any) -> Any:
    """Convert a JSON value into a hashable, order-independent form."""
    if isinstance(value, dict):
        return frozenset((k, _freeze(v)) for k, v in value.items())
    if isinstance(value, list):
        return frozenset(_freeze(v) for v in value)
    return value


def _principal(value: Any) -> Any:
    if value == "*":
        value = {"AWS": "*"}
    if isinstance(value, dict):
        return frozenset((k, _string_set(v)) for k, v in value.items())
    return _freeze(value)


def _condition(value: Any) -> Any:
    if not isinstance(value, dict):
        return _freeze(value)
    return frozenset(
        (operator, frozenset((key, _string_set(v)) for key, v in block.items()) if isinstance(block, dict) else _freeze(block))
        for operator, block in value.items()
    )


def _statement(statement: Any) -> Any:
    if not isinstance(statement, dict):
        return _freeze(statement)
    items = []
    for key, value in statement.items():
        if key in _SET_FIELDS:
            items.append((key, _string_set(value)))
        elif key in _PRINCIPAL_FIELDS:
            items.append((key, _principal(value)))
        elif key == "Condition":
            items.append((key, _condition(value)))
        else:
            items.append((key, _freeze(value)))
    return frozenset(items)


def _canonical(doc: Any) -> Any:
    if not isinstance(doc, dict):
        return _freeze(doc)
    items = []
    for key, value in doc.items():
        if key == "Statement":
            statements = value if isinstance(value, list) else [value]
            # Statements form a multiset: order is irrelevant, duplicates are not
            items.append((key, frozenset(Counter(_statement(s) for s in statements).items())))
        else:
            items.append((key, _freeze(value)))
    return frozenset(items)


def policies_equivalent(a: str, b: str) -> bool:
    """Compare two policy documents for semantic equivalence.

    Statement order, key order and list order are ignored, a single string
    equals a one-element list, and the "*" principal equals {"AWS": "*"}.

    Raises:
        PolicyError: If either document is not valid JSON
    """
    return _canonical(_parse(a)) == _canonical(_parse(b))


def reconcile_policy(existing: str | None, new: str | None, kind: str = KIND_PERMISSION) -> str:
    """Choose the policy text to persist.

    Args:
        existing: Policy currently recorded
        new: Policy just observed or desired
        kind: Resource kind, for metrics

    Returns:
        "" when ``new`` is blank, "{}" when ``new`` is the empty object, the
        canonical ``existing`` when both are equivalent, else the canonical ``new``

    Raises:
        PolicyError: If a policy to compare or persist is not valid JSON
    """
    existing = (existing or "").strip()
    new = (new or "").strip()

    if not new:
        return ""
    if new == EMPTY_POLICY:
        return EMPTY_POLICY
    if not existing or existing == EMPTY_POLICY:
        return normalize(new)

    if policies_equivalent(existing, new):
        canonical = normalize(existing)
        if canonical != normalize(new):
            metrics.policy_drift_suppressed_total.labels(kind=kind).inc()
        return canonical
    return normalize(new)
