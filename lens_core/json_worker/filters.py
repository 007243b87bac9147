#!/usr/bin/env python3
"""Filter expressions: ``<path> <op> <literal>``.

Operators, in the order they are tried: ``>=``, ``<=``, ``!=``, ``=``, ``>``,
``<``, ``contains``, ``startsWith``, ``endsWith`` and ``exists``. A filter
matches when any value selected by the path satisfies the comparison.
"""
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

from lens_core.json_worker.paths import get_values_at_path, split_side
from shared.config import get_settings
from shared.errors import InvalidFilterError

logger = logging.getLogger(__name__)

OPERATOR_PATTERNS = [
    (">=", re.compile(r"^(.+?)\s*>=\s*(.+)$")),
    ("<=", re.compile(r"^(.+?)\s*<=\s*(.+)$")),
    ("!=", re.compile(r"^(.+?)\s*!=\s*(.+)$")),
    ("=", re.compile(r"^(.+?)\s*=\s*(.+)$")),
    (">", re.compile(r"^(.+?)\s*>\s*(.+)$")),
    ("<", re.compile(r"^(.+?)\s*<\s*(.+)$")),
    ("contains", re.compile(r"^(.+?)\s+contains\s+(.+)$", re.IGNORECASE)),
    ("startsWith", re.compile(r"^(.+?)\s+startsWith\s+(.+)$", re.IGNORECASE)),
    ("endsWith", re.compile(r"^(.+?)\s+endsWith\s+(.+)$", re.IGNORECASE)),
    ("exists", re.compile(r"^(.+?)\s+exists$", re.IGNORECASE)),
]

_ORDERING = (">", "<", ">=", "<=")


@dataclass(frozen=True)
class FilterCondition:
    path: str
    operator: str
    value: Any
    # None for single-sided filters, 'a' or 'b' for join filters.
    side: Optional[str] = None


def coerce_literal(text: str) -> Any:
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        return text[1:-1]
    if text == "true":
        return True
    if text == "false":
        return False
    if text == "null":
        return None
    if "_" in text:
        # digit separators are Python syntax, not a JSON number
        return text
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    return number if math.isfinite(number) else text


def parse_filter(expression: str) -> Optional[FilterCondition]:
    expression = expression.strip()
    for op, pattern in OPERATOR_PATTERNS:
        match = pattern.match(expression)
        if not match:
            continue
        path = match.group(1).strip()
        value = True if op == "exists" else coerce_literal(match.group(2).strip())
        return FilterCondition(path=path, operator=op, value=value)
    return None


def parse_join_filter(expression: str) -> Optional[FilterCondition]:
    condition = parse_filter(expression)
    if condition is None:
        return None
    side, path = split_side(condition.path)
    return FilterCondition(path=path, operator=condition.operator, value=condition.value, side=side)


def compile_filter(expression: Optional[str], strict: Optional[bool] = None,
                   two_sided: bool = False, warnings: Optional[List[str]] = None) -> Optional[FilterCondition]:
    """Parse a user supplied filter, tolerating bad input unless strict.

    An unparseable expression is logged, appended to ``warnings`` and
    treated as no filter at all.
    """
    if not expression:
        return None
    condition = parse_join_filter(expression) if two_sided else parse_filter(expression)
    if condition is not None:
        return condition
    if strict is None:
        strict = get_settings().strict_filters
    if strict:
        raise InvalidFilterError(expression)
    message = f"Invalid filter expression ignored: {expression}"
    logger.warning(message)
    if warnings is not None:
        warnings.append(message)
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual is expected
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    if type(actual) is not type(expected):
        return False
    if isinstance(actual, (dict, list)):
        # JSON objects and arrays compare by identity.
        return actual is expected
    return actual == expected


def parse_timestamp(value: Any) -> Optional[float]:
    """Milliseconds since the epoch for ISO strings and epoch numbers."""
    if _is_number(value):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp() * 1000


def _ordered(op: str, left: float, right: float) -> bool:
    if op == ">":
        return left > right
    if op == "<":
        return left < right
    if op == ">=":
        return left >= right
    return left <= right


def compare_values(actual: Any, operator: str, expected: Any) -> bool:
    if operator == "=":
        return strict_equals(actual, expected)
    if operator == "!=":
        return not strict_equals(actual, expected)
    if operator == "exists":
        return actual is not None
    if operator == "contains":
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        if isinstance(actual, list):
            return any(strict_equals(item, expected) for item in actual)
        return False
    if operator == "startsWith":
        return isinstance(actual, str) and isinstance(expected, str) and actual.startswith(expected)
    if operator == "endsWith":
        return isinstance(actual, str) and isinstance(expected, str) and actual.endswith(expected)
    if operator in _ORDERING:
        if _is_number(actual) and _is_number(expected):
            return _ordered(operator, actual, expected)
        left, right = parse_timestamp(actual), parse_timestamp(expected)
        if left is not None and right is not None:
            return _ordered(operator, left, right)
        return False
    raise ValueError(f"unknown filter operator {operator!r}")


def _matches_values(values: List[Any], condition: FilterCondition) -> bool:
    if condition.operator == "exists":
        return any(v is not None for v in values)
    return any(compare_values(v, condition.operator, condition.value) for v in values)


def matches_filter(value: Any, condition: FilterCondition) -> bool:
    return _matches_values(get_values_at_path(value, condition.path), condition)


def matches_join_filter(left: Any, right: Any, condition: FilterCondition) -> bool:
    target = right if condition.side == "b" else left
    return _matches_values(get_values_at_path(target, condition.path), condition)
