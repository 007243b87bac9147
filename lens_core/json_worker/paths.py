#!/usr/bin/env python3
"""Dotted/bracketed path expressions evaluated against in-memory JSON values.

``payload.items[*].itemLevel`` selects the ``itemLevel`` of every element of
``payload.items``; ``payload.items[0]`` selects only the first one.
"""
import json
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Tuple, Union

_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(\*|\d+)\]")


@dataclass(frozen=True)
class KeySegment:
    name: str


@dataclass(frozen=True)
class WildcardSegment:
    pass


@dataclass(frozen=True)
class IndexSegment:
    index: int


PathSegment = Union[KeySegment, WildcardSegment, IndexSegment]


@lru_cache(maxsize=1024)
def parse_path(expression: str) -> Tuple[PathSegment, ...]:
    segments = []
    for match in _SEGMENT_RE.finditer(expression):
        key, bracket = match.groups()
        if key:
            segments.append(KeySegment(key))
        elif bracket == "*":
            segments.append(WildcardSegment())
        else:
            segments.append(IndexSegment(int(bracket)))
    return tuple(segments)


def has_wildcard(expression: str) -> bool:
    return any(isinstance(s, WildcardSegment) for s in parse_path(expression))


def _select(item: Any, segment: PathSegment, out: List[Any]) -> None:
    if isinstance(segment, KeySegment):
        if isinstance(item, dict) and segment.name in item:
            out.append(item[segment.name])
    elif isinstance(segment, WildcardSegment):
        if isinstance(item, list):
            out.extend(item)
        elif isinstance(item, dict):
            out.extend(item.values())
    elif isinstance(segment, IndexSegment):
        if isinstance(item, list) and segment.index < len(item):
            out.append(item[segment.index])
    else:
        raise TypeError(f"unknown path segment {segment!r}")


def get_values_at_path(value: Any, expression: str) -> List[Any]:
    """Return every value the expression selects, breadth first."""
    current = [value]
    for segment in parse_path(expression):
        selected: List[Any] = []
        for item in current:
            if item is None:
                continue
            _select(item, segment, selected)
        current = selected
        if not current:
            break
    return current


def get_value_at_path(value: Any, expression: str, default: Any = None) -> Any:
    values = get_values_at_path(value, expression)
    return values[0] if values else default


def split_side(path: str) -> Tuple[str, str]:
    """Split an ``a.``/``b.`` side prefix off a two-sided path.

    Paths without a prefix belong to the left side.
    """
    if path.startswith("a."):
        return "a", path[2:]
    if path.startswith("b."):
        return "b", path[2:]
    return "a", path


def value_key(value: Any) -> str:
    """String form of a matched value, used for group and join keys."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)
