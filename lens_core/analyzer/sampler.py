#!/usr/bin/env python3
"""Representative random samples from a large entity file."""
import logging
from contextlib import aclosing
import random
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from lens_core.json_worker.paths import get_values_at_path
from lens_core.json_worker.streaming_parser import iter_values
from shared.config import DEFAULT_SUB_PATH

logger = logging.getLogger(__name__)


@dataclass
class SampleResult:
    items: List[Any]
    total_scanned: int
    matched_count: int
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def truncate_value(value: Any, max_string_length: int, max_depth: int, depth: int = 0) -> Any:
    """Shorten long strings and replace structures nested past ``max_depth``."""
    if depth > max_depth:
        if isinstance(value, list):
            return f"[Array({len(value)})]"
        if isinstance(value, dict):
            return "{Object}"
        return value

    if isinstance(value, str) and len(value) > max_string_length:
        return value[:max_string_length] + "..."
    if isinstance(value, list):
        return [truncate_value(v, max_string_length, max_depth, depth + 1) for v in value]
    if isinstance(value, dict):
        return {k: truncate_value(v, max_string_length, max_depth, depth + 1) for k, v in value.items()}
    return value


def matches_entity_type(entity: Any, entity_type: str) -> bool:
    if not isinstance(entity, dict):
        return False
    entity_id = entity.get("entityId")
    if isinstance(entity_id, str):
        return entity_id.startswith(f"{entity_type}:")
    dollar_type = entity.get("$type")
    if isinstance(dollar_type, str):
        return entity_type in dollar_type
    return False


def _strip_array_prefix(path: Optional[str], sub_path: Optional[str]) -> Optional[str]:
    # "entities[*].payload.level" and "payload.level" select the same thing.
    if not path:
        return None
    if sub_path:
        prefix = f"{sub_path}[*]"
        if path == prefix or path == sub_path:
            return None
        if path.startswith(prefix + "."):
            return path[len(prefix) + 1:]
    return path


async def sample_data(file, count: int = 3, path: Optional[str] = None, entity_type: Optional[str] = None,
                      seed: Optional[int] = None, truncate_strings: int = 200, max_depth: int = 10, *,
                      sub_path: Optional[str] = DEFAULT_SUB_PATH) -> SampleResult:
    """Reservoir-sample ``count`` matching elements (or sub-values at ``path``).

    Every matching element has the same chance of ending up in the sample.
    Passing ``seed`` makes the selection reproducible.
    """
    if count < 0:
        raise ValueError(f"count must not be negative, got {count}")

    rng = random.Random(seed)
    target_path = _strip_array_prefix(path, sub_path)
    samples: List[Any] = []
    total_scanned = 0
    matched_count = 0

    logger.debug(f"Sampling from {file}: count={count}, path={path or 'root'}, entity_type={entity_type or 'any'}")

    async with aclosing(iter_values(file, sub_path)) as values:
        async for value in values:
            total_scanned += 1

            if entity_type and not matches_entity_type(value, entity_type):
                continue

            target = value
            if target_path:
                found = get_values_at_path(value, target_path)
                if not found:
                    continue
                target = found[0] if len(found) == 1 else found

            matched_count += 1
            if len(samples) < count:
                samples.append(truncate_value(target, truncate_strings, max_depth))
            else:
                slot = rng.randrange(matched_count)
                if slot < count:
                    samples[slot] = truncate_value(target, truncate_strings, max_depth)

    logger.debug(f"Sampling complete: scanned {total_scanned}, matched {matched_count}, sampled {len(samples)}")
    return SampleResult(items=samples, total_scanned=total_scanned, matched_count=matched_count)
