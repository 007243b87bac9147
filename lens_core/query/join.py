#!/usr/bin/env python3
"""Hash join of two entity files.

The right file is indexed in memory by its key path, then the left file is
streamed and probed against the index. Put the smaller file on the right.
"""
import logging
from contextlib import aclosing
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from lens_core.analyzer.relationship_finder import find_relationships
from lens_core.json_worker.filters import compile_filter, matches_join_filter
from lens_core.json_worker.paths import get_values_at_path, split_side, value_key
from lens_core.json_worker.streaming_parser import iter_values
from lens_core.query.aggregators import GroupAccumulators, calculate_totals, parse_aggregate_map
from lens_core.query.path_query import extract_join_fields
from shared.config import DEFAULT_SUB_PATH, JOIN_MIN_COVERAGE, JOIN_RELAXED_COVERAGE
from shared.errors import RelationshipNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class JoinKeys:
    left_key: str
    right_key: str
    auto_detected: bool = False


@dataclass
class JoinResult:
    items: List[Any]
    total_matched: int
    left_scanned: int
    right_scanned: int
    join_keys: JoinKeys
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class JoinAggregateResult:
    groups: Dict[str, Dict[str, float]]
    totals: Dict[str, float]
    total_matched: int
    left_scanned: int
    right_scanned: int
    join_keys: JoinKeys
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _key_strings(value: Any, path: str) -> List[str]:
    keys = []
    for matched in get_values_at_path(value, path):
        if matched is None:
            continue
        key = value_key(matched)
        if key not in keys:
            keys.append(key)
    return keys


async def detect_join_keys(left_file, right_file, sub_path: Optional[str] = DEFAULT_SUB_PATH,
                           warnings: Optional[List[str]] = None) -> JoinKeys:
    """Pick the best-covered relationship between the two files."""
    logger.debug("Auto-detecting relationship between files")
    result = await find_relationships(left_file, right_file, min_coverage=JOIN_RELAXED_COVERAGE, sub_path=sub_path)
    if not result.relationships:
        raise RelationshipNotFoundError(
            "No relationship detected between files. "
            "Please specify the left and right join keys explicitly."
        )

    best = result.relationships[0]
    if best.coverage < JOIN_MIN_COVERAGE:
        message = (f"Join keys {best.left_path} -> {best.right_path} only cover "
                   f"{best.coverage:.1f}% of left values")
        logger.warning(message)
        if warnings is not None:
            warnings.append(message)

    logger.debug(f"Auto-detected join keys: {best.left_path} -> {best.right_path}")
    return JoinKeys(best.left_path, best.right_path, auto_detected=True)


async def build_right_index(file, key_path: str, sub_path: Optional[str] = DEFAULT_SUB_PATH) -> Tuple[Dict[str, List[Any]], int]:
    """Map every key value found at ``key_path`` to the elements holding it."""
    index: Dict[str, List[Any]] = {}
    scanned = 0
    async with aclosing(iter_values(file, sub_path)) as values:
        async for value in values:
            scanned += 1
            for key in _key_strings(value, key_path):
                index.setdefault(key, []).append(value)
    return index, scanned


async def _resolve_keys(left_file, right_file, left_key, right_key, sub_path, warnings) -> JoinKeys:
    if left_key and right_key:
        return JoinKeys(left_key, right_key)
    return await detect_join_keys(left_file, right_file, sub_path, warnings)


async def _join_pairs(left_file, right_file, keys: JoinKeys, condition, sub_path, counters: Dict[str, int]):
    logger.debug(f"Building index on right file: {keys.right_key}")
    index, counters["right_scanned"] = await build_right_index(right_file, keys.right_key, sub_path)
    logger.debug(f"Built index with {len(index)} unique keys from {counters['right_scanned']} entities")

    logger.debug(f"Scanning left file with key: {keys.left_key}")
    async with aclosing(iter_values(left_file, sub_path)) as values:
        async for left in values:
            counters["left_scanned"] += 1
            for key in _key_strings(left, keys.left_key):
                for right in index.get(key, ()):
                    if condition is not None and not matches_join_filter(left, right, condition):
                        continue
                    yield left, right


async def execute_join(left_file, right_file, left_key: Optional[str] = None, right_key: Optional[str] = None,
                       select: Optional[Sequence[str]] = None, filter_expr: Optional[str] = None,
                       limit: Optional[int] = 100, *, sub_path: Optional[str] = DEFAULT_SUB_PATH,
                       strict: Optional[bool] = None) -> JoinResult:
    warnings: List[str] = []
    keys = await _resolve_keys(left_file, right_file, left_key, right_key, sub_path, warnings)
    condition = compile_filter(filter_expr, strict, two_sided=True, warnings=warnings)

    counters = {"left_scanned": 0, "right_scanned": 0}
    items: List[Any] = []
    total_matched = 0
    async with aclosing(_join_pairs(left_file, right_file, keys, condition, sub_path, counters)) as pairs:
        async for left, right in pairs:
            total_matched += 1
            if limit is not None and len(items) >= limit:
                continue
            items.append(extract_join_fields(left, right, select) if select else {"left": left, "right": right})

    logger.debug(f"Join complete: scanned {counters['left_scanned']} left, "
                 f"{counters['right_scanned']} right, matched {total_matched}")
    return JoinResult(items=items, total_matched=total_matched, join_keys=keys, warnings=warnings, **counters)


async def execute_join_aggregate(left_file, right_file, aggregates: Dict[str, str], group_by: Optional[str] = None,
                                 left_key: Optional[str] = None, right_key: Optional[str] = None,
                                 filter_expr: Optional[str] = None, *, sub_path: Optional[str] = DEFAULT_SUB_PATH,
                                 strict: Optional[bool] = None) -> JoinAggregateResult:
    """Group joined pairs and compute named aggregates per group.

    ``aggregates`` maps an output name to an expression such as
    ``AVG(b.payload.level)`` or ``COUNT(*)``. Without ``group_by`` every
    pair lands in the single group ``"all"``.
    """
    parsed = parse_aggregate_map(aggregates)
    warnings: List[str] = []
    keys = await _resolve_keys(left_file, right_file, left_key, right_key, sub_path, warnings)
    condition = compile_filter(filter_expr, strict, two_sided=True, warnings=warnings)

    counters = {"left_scanned": 0, "right_scanned": 0}
    accumulators = GroupAccumulators(parsed)
    total_matched = 0
    async with aclosing(_join_pairs(left_file, right_file, keys, condition, sub_path, counters)) as pairs:
        async for left, right in pairs:
            total_matched += 1
            if group_by:
                side, path = split_side(group_by)
                group_keys = [value_key(v) for v in get_values_at_path(right if side == "b" else left, path)] or ["null"]
            else:
                group_keys = ["all"]
            for group_key in group_keys:
                accumulators.add(group_key, left, right)

    groups = accumulators.finalize()
    return JoinAggregateResult(
        groups=groups,
        totals=calculate_totals(groups, parsed),
        total_matched=total_matched,
        join_keys=keys,
        warnings=warnings,
        **counters,
    )
