#!/usr/bin/env python3
"""Filtered, projected and paginated queries over the entity array."""
import logging
from contextlib import aclosing
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from lens_core.json_worker.filters import compile_filter, matches_filter
from lens_core.json_worker.paths import get_value_at_path, split_side
from lens_core.json_worker.streaming_parser import iter_values
from shared.config import DEFAULT_SUB_PATH

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    items: List[Any]
    total_matched: int
    total_scanned: int
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _field_name(path: str, taken: Dict[str, Any]) -> str:
    name = path.split(".")[-1] or path
    # Two selected fields ending in the same key keep their full paths.
    return path if name in taken else name


def resolve_field(obj: Any, path: str) -> Any:
    """Value of one selected field; ``x.length`` gives the length of array ``x``."""
    if path.endswith(".length"):
        base = get_value_at_path(obj, path[: -len(".length")])
        if isinstance(base, list):
            return len(base)
    return get_value_at_path(obj, path)


def extract_fields(obj: Any, select: Sequence[str]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for path in select:
        result[_field_name(path, result)] = resolve_field(obj, path)
    return result


def extract_join_fields(left: Any, right: Any, select: Sequence[str]) -> Dict[str, Any]:
    """Like ``extract_fields`` but each field may start with ``a.`` or ``b.``."""
    result: Dict[str, Any] = {}
    for selected in select:
        side, path = split_side(selected)
        name = path.split(".")[-1] or path
        if name in result:
            name = selected
        result[name] = resolve_field(right if side == "b" else left, path)
    return result


async def execute_query(file, select: Optional[Sequence[str]] = None, filter_expr: Optional[str] = None,
                        limit: Optional[int] = 100, offset: int = 0, *,
                        sub_path: Optional[str] = DEFAULT_SUB_PATH, strict: Optional[bool] = None) -> QueryResult:
    """Run a path query.

    Every element is scanned even after ``limit`` items were collected so
    that ``total_matched`` stays exact; ``limit=None`` collects everything.
    """
    if offset < 0 or (limit is not None and limit < 0):
        raise ValueError("limit and offset must not be negative")

    warnings: List[str] = []
    condition = compile_filter(filter_expr, strict, warnings=warnings)
    logger.debug(f"Executing query with filter: {filter_expr or 'none'}, select: {', '.join(select or []) or '*'}")

    items: List[Any] = []
    total_matched = 0
    total_scanned = 0

    async with aclosing(iter_values(file, sub_path)) as values:
        async for value in values:
            total_scanned += 1
            if condition is not None and not matches_filter(value, condition):
                continue
            total_matched += 1
            if total_matched <= offset:
                continue
            if limit is not None and len(items) >= limit:
                continue
            items.append(extract_fields(value, select) if select else value)

    logger.debug(f"Query complete: scanned {total_scanned}, matched {total_matched}, returned {len(items)}")
    return QueryResult(items=items, total_matched=total_matched, total_scanned=total_scanned, warnings=warnings)
