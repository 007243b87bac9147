#!/usr/bin/env python3
"""Single pass aggregates over the entity array: count, group, stats, histogram."""
import logging
from contextlib import aclosing
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from lens_core.json_worker.filters import FilterCondition, compile_filter, matches_filter
from lens_core.json_worker.paths import get_values_at_path, has_wildcard, value_key
from lens_core.json_worker.streaming_parser import iter_values
from lens_core.query.aggregators import AggregateAccumulator, is_finite_number
from shared.config import DEFAULT_SUB_PATH

logger = logging.getLogger(__name__)


@dataclass
class CountResult:
    total: int
    scanned: int
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GroupByResult:
    groups: Dict[str, int]
    total: int
    unique_values: int
    scanned: int
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StatsResult:
    count: int
    sum: float
    avg: float
    min: float
    max: float
    scanned: int
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DistributionBucket:
    range: str
    count: int
    percentage: float


@dataclass
class DistributionResult:
    buckets: List[DistributionBucket]
    total: int
    scanned: int
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class _Scan:
    """Counts scanned elements and yields the ones passing the filter."""

    def __init__(self, file, condition: Optional[FilterCondition], sub_path: Optional[str]):
        self.file = file
        self.condition = condition
        self.sub_path = sub_path
        self.scanned = 0

    async def matching(self) -> AsyncIterator[Any]:
        async with aclosing(iter_values(self.file, self.sub_path)) as values:
            async for value in values:
                self.scanned += 1
                if self.condition is None or matches_filter(value, self.condition):
                    yield value


async def count(file, filter_expr: Optional[str] = None, *, sub_path: Optional[str] = DEFAULT_SUB_PATH,
                strict: Optional[bool] = None) -> CountResult:
    """Count elements, optionally only those matching ``filter_expr``."""
    warnings: List[str] = []
    scan = _Scan(file, compile_filter(filter_expr, strict, warnings=warnings), sub_path)
    logger.debug(f"Counting with filter: {filter_expr or 'none'}")

    total = 0
    async with aclosing(scan.matching()) as values:
        async for _ in values:
            total += 1

    logger.debug(f"Count complete: {total} of {scan.scanned}")
    return CountResult(total=total, scanned=scan.scanned, warnings=warnings)


async def group_by(file, path: str, filter_expr: Optional[str] = None, *,
                   sub_path: Optional[str] = DEFAULT_SUB_PATH, strict: Optional[bool] = None) -> GroupByResult:
    """Count occurrences of every distinct value found at ``path``.

    Wildcard paths contribute one count per matched value, so ``total`` is
    the number of values seen, not the number of elements. A plain path that
    is missing from an element counts under ``"undefined"``.
    """
    warnings: List[str] = []
    scan = _Scan(file, compile_filter(filter_expr, strict, warnings=warnings), sub_path)
    logger.debug(f"Grouping by {path} with filter: {filter_expr or 'none'}")

    groups: Dict[str, int] = {}
    total = 0
    wildcard = has_wildcard(path)
    async with aclosing(scan.matching()) as values:
        async for value in values:
            matched_values = get_values_at_path(value, path)
            if not matched_values and not wildcard:
                groups["undefined"] = groups.get("undefined", 0) + 1
                total += 1
            for matched in matched_values:
                key = value_key(matched)
                groups[key] = groups.get(key, 0) + 1
                total += 1

    logger.debug(f"GroupBy complete: {len(groups)} unique values, {total} total")
    return GroupByResult(groups=groups, total=total, unique_values=len(groups),
                         scanned=scan.scanned, warnings=warnings)


async def stats(file, path: str, filter_expr: Optional[str] = None, *,
                sub_path: Optional[str] = DEFAULT_SUB_PATH, strict: Optional[bool] = None) -> StatsResult:
    """count/sum/avg/min/max over the finite numbers found at ``path``."""
    warnings: List[str] = []
    condition = compile_filter(filter_expr, strict, warnings=warnings)
    logger.debug(f"Calculating stats for {path} with filter: {filter_expr or 'none'}")
    return await _stats_pass(file, path, condition, sub_path, warnings)


async def _stats_pass(file, path: str, condition: Optional[FilterCondition], sub_path: Optional[str],
                      warnings: List[str]) -> StatsResult:
    scan = _Scan(file, condition, sub_path)
    acc = AggregateAccumulator()
    async with aclosing(scan.matching()) as values:
        async for value in values:
            acc.add_all(get_values_at_path(value, path))

    if acc.overflowed:
        message = f"Sum of {path} exceeds the float range; reported clamped"
        logger.warning(message)
        warnings.append(message)
    logger.debug(f"Stats complete: count={acc.count}, avg={acc.avg:.2f}")
    return StatsResult(
        count=acc.count,
        sum=acc.total,
        avg=acc.avg,
        min=acc.finalize("MIN"),
        max=acc.finalize("MAX"),
        scanned=scan.scanned,
        warnings=warnings,
    )


async def distribution(file, path: str, filter_expr: Optional[str] = None, bucket_count: int = 10, *,
                       sub_path: Optional[str] = DEFAULT_SUB_PATH, strict: Optional[bool] = None) -> DistributionResult:
    """Histogram of the numbers at ``path``.

    Two passes: the first finds the value range, the second fills
    ``bucket_count`` equal-width buckets.
    """
    if bucket_count < 1:
        raise ValueError(f"bucket_count must be at least 1, got {bucket_count}")

    warnings: List[str] = []
    condition = compile_filter(filter_expr, strict, warnings=warnings)
    summary = await _stats_pass(file, path, condition, sub_path, warnings)
    if summary.count == 0:
        return DistributionResult(buckets=[], total=0, scanned=summary.scanned, warnings=warnings)

    scan = _Scan(file, condition, sub_path)
    low, high = summary.min, summary.max
    # halved so that the span of two extreme finite values cannot overflow
    half_size = (high / 2 - low / 2) / bucket_count or 0.5
    counts = [0] * bucket_count
    total = 0

    async with aclosing(scan.matching()) as values:
        async for value in values:
            for matched in get_values_at_path(value, path):
                if not is_finite_number(matched):
                    continue
                index = min(max(int((matched / 2 - low / 2) // half_size), 0), bucket_count - 1)
                counts[index] += 1
                total += 1

    buckets = []
    for i, n in enumerate(counts):
        start = low + i * half_size + i * half_size
        end = low + (i + 1) * half_size + (i + 1) * half_size
        buckets.append(DistributionBucket(
            range=f"{start:.1f}-{end:.1f}",
            count=n,
            percentage=(n / total) * 100 if total else 0,
        ))

    return DistributionResult(buckets=buckets, total=total, scanned=scan.scanned, warnings=warnings)
