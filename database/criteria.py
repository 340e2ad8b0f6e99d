"""
Query criteria over persisted message documents.

Criteria are dicts keyed by persisted field names ("from", "queueName",
"sentAt", ...):

    {"queueName": "email"}                 equality
    {"to": "b@x.com"}                      list fields match when they contain the value
    {"sentAt": None}                       field absent
    {"sentAt": {"$exists": True}}          field present
    {"priority": {"$in": ["high", "critical"]}}
    {"state": {"$ne": "Delivered"}}

The in-memory and file stores evaluate criteria with `matches`; the SQL store
translates scalar columns into WHERE clauses and uses `matches` for the rest.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

OPERATORS = ("$ne", "$in", "$nin", "$exists")


def plain(value: Any) -> Any:
    """Reduce enums and datetimes to their persisted representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return [plain(v) for v in value]
    return value


def is_operator(expected: Any) -> bool:
    return isinstance(expected, dict) and bool(expected) and all(
        isinstance(k, str) and k.startswith("$") for k in expected
    )


def _equals(actual: Any, expected: Any) -> bool:
    expected = plain(expected)
    if expected is None:
        return actual is None
    if isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    return actual == expected


def _apply(actual: Any, op: str, arg: Any) -> bool:
    if op == "$ne":
        return not _equals(actual, arg)
    if op == "$in":
        return any(_equals(actual, v) for v in arg)
    if op == "$nin":
        return not any(_equals(actual, v) for v in arg)
    if op == "$exists":
        return (actual is not None) == bool(arg)
    raise ValueError(f"Unsupported criteria operator: {op}")


def match_value(actual: Any, expected: Any) -> bool:
    if is_operator(expected):
        return all(_apply(actual, op, arg) for op, arg in expected.items())
    return _equals(actual, expected)


def matches(document: dict[str, Any], criteria: Optional[dict[str, Any]]) -> bool:
    return all(match_value(document.get(k), v) for k, v in (criteria or {}).items())


def unsent_criteria(criteria: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    return {**(criteria or {}), "sentAt": None}


def sent_criteria(criteria: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    return {**(criteria or {}), "sentAt": {"$exists": True}}
