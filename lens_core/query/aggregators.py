#!/usr/bin/env python3
"""Running aggregate state and the ``FUNC(arg)`` aggregate expressions."""
import math
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from lens_core.json_worker.filters import parse_timestamp
from lens_core.json_worker.paths import get_value_at_path, get_values_at_path, split_side

AGGREGATE_FUNCTIONS = ("COUNT", "COUNT_IF", "SUM", "AVG", "MIN", "MAX", "D1_RETENTION", "D7_RETENTION")
_AGGREGATE_RE = re.compile(r"^(COUNT_IF|COUNT|SUM|AVG|MIN|MAX|D1_RETENTION|D7_RETENTION)\((.+)\)$", re.IGNORECASE)
_DAY_MS = 24 * 60 * 60 * 1000


def is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def clamp_finite(value: float) -> float:
    if math.isfinite(value):
        return value
    return math.copysign(sys.float_info.max, value)


@dataclass
class AggregateAccumulator:
    count: int = 0
    sum: float = 0
    min: float = math.inf
    max: float = -math.inf
    condition_count: int = 0
    mean: float = 0

    def add(self, value: Any) -> bool:
        """Fold one value in; non-numeric values are ignored."""
        if not is_finite_number(value):
            return False
        self.count += 1
        self.sum += value
        self.mean += value / self.count - self.mean / self.count
        if value < self.min:
            self.min = value
        if value > self.max:
            self.max = value
        return True

    def add_all(self, values: Iterable[Any]) -> None:
        for value in values:
            self.add(value)

    @property
    def overflowed(self) -> bool:
        return not math.isfinite(self.sum)

    @property
    def total(self) -> float:
        """``sum`` clamped to the largest finite float."""
        return clamp_finite(self.sum)

    @property
    def avg(self) -> float:
        if not self.count:
            return 0
        return self.mean if self.overflowed else self.sum / self.count

    def finalize(self, func: str) -> float:
        """Collapse the state into one number, never inf or nan."""
        func = func.upper()
        if func == "COUNT":
            return self.count
        if func == "SUM":
            return self.total
        if func == "AVG":
            return self.avg
        if func == "MIN":
            return self.min if self.count else 0
        if func == "MAX":
            return self.max if self.count else 0
        if func in ("COUNT_IF", "D1_RETENTION", "D7_RETENTION"):
            return self.condition_count
        raise ValueError(f"unknown aggregate function {func!r}")


@dataclass
class ParsedAggregate:
    alias: str
    func: str
    arg: str


def parse_aggregate_expression(expression: str, alias: str = "") -> Optional[ParsedAggregate]:
    match = _AGGREGATE_RE.match(expression.strip())
    if not match:
        return None
    return ParsedAggregate(alias=alias, func=match.group(1).upper(), arg=match.group(2).strip())


def parse_aggregate_map(aggregates: Dict[str, str]) -> List[ParsedAggregate]:
    parsed = []
    for alias, expression in aggregates.items():
        aggregate = parse_aggregate_expression(expression, alias)
        if aggregate is None:
            raise ValueError(f"invalid aggregate expression for {alias!r}: {expression}")
        parsed.append(aggregate)
    return parsed


def _side_values(path: str, left: Any, right: Any) -> List[Any]:
    side, actual = split_side(path)
    return get_values_at_path(right if side == "b" else left, actual)


def _entry_timestamp(entry: Any) -> Optional[float]:
    if isinstance(entry, dict):
        for key in ("date", "timestamp", "time"):
            if entry.get(key):
                return parse_timestamp(entry[key])
        return None
    return parse_timestamp(entry)


def retained(history: Any, min_days: int) -> bool:
    """True when some login happened at least ``min_days`` after the first."""
    if not isinstance(history, list) or len(history) < 2:
        return False
    stamps = sorted(ts for ts in map(_entry_timestamp, history) if ts is not None)
    if len(stamps) < 2:
        return False
    return stamps[-1] - stamps[0] >= min_days * _DAY_MS


def accumulate(acc: AggregateAccumulator, aggregate: ParsedAggregate, left: Any, right: Any = None) -> None:
    func, arg = aggregate.func, aggregate.arg
    if func == "COUNT":
        if arg == "*":
            acc.count += 1
        else:
            side, path = split_side(arg)
            if get_value_at_path(right if side == "b" else left, path) is not None:
                acc.count += 1
    elif func in ("SUM", "AVG", "MIN", "MAX"):
        acc.add_all(_side_values(arg, left, right))
    elif func == "COUNT_IF":
        for value in _side_values(arg, left, right):
            if value is True or (is_finite_number(value) and value > 0):
                acc.condition_count += 1
        acc.count += 1
    else:
        days = 1 if func == "D1_RETENTION" else 7
        for value in _side_values(arg, left, right):
            if retained(value, days):
                acc.condition_count += 1
        acc.count += 1


@dataclass
class GroupAccumulators:
    aggregates: List[ParsedAggregate]
    groups: Dict[str, Dict[str, AggregateAccumulator]] = field(default_factory=dict)

    def add(self, group_key: str, left: Any, right: Any = None) -> None:
        accs = self.groups.get(group_key)
        if accs is None:
            accs = self.groups[group_key] = {a.alias: AggregateAccumulator() for a in self.aggregates}
        for aggregate in self.aggregates:
            accumulate(accs[aggregate.alias], aggregate, left, right)

    def finalize(self) -> Dict[str, Dict[str, float]]:
        return {
            key: {a.alias: accs[a.alias].finalize(a.func) for a in self.aggregates}
            for key, accs in self.groups.items()
        }


def calculate_totals(groups: Dict[str, Dict[str, float]], aggregates: List[ParsedAggregate]) -> Dict[str, float]:
    """Roll finalized group values up into one row.

    AVG totals are the mean of the group averages, MIN/MAX the extreme
    group value and everything else the sum.
    """
    totals = {}
    for aggregate in aggregates:
        values = [row[aggregate.alias] for row in groups.values()]
        if not values:
            totals[aggregate.alias] = 0
        elif aggregate.func == "AVG":
            totals[aggregate.alias] = sum(v / len(values) for v in values)
        elif aggregate.func == "MIN":
            totals[aggregate.alias] = min(values)
        elif aggregate.func == "MAX":
            totals[aggregate.alias] = max(values)
        else:
            totals[aggregate.alias] = clamp_finite(sum(values))
    return totals
