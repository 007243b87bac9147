#!/usr/bin/env python3
"""Detect join keys between two entity files from overlapping identifier values."""
import logging
from contextlib import aclosing
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from lens_core.json_worker.streaming_parser import iter_values
from shared.config import DEFAULT_SUB_PATH

logger = logging.getLogger(__name__)

ID_FIELD_PATTERNS = [
    re.compile(r"Id$"),
    re.compile(r"Ids$"),
    re.compile(r"^ids?$", re.IGNORECASE),
]
ENTITY_ID_VALUE_PATTERN = re.compile(r"^[A-Z][a-zA-Z]+:[0-9A-Fa-f]+$")
_HEX_ID = re.compile(r"^[0-9A-Fa-f]{16,}$")
_NUMERIC_ID = re.compile(r"^\d+$")
MAX_SCAN_DEPTH = 20


@dataclass
class IdField:
    path: str
    values: Set[str]
    value_pattern: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "unique_values": len(self.values), "value_pattern": self.value_pattern}


@dataclass
class DetectedRelationship:
    left_path: str
    right_path: str
    relationship_type: str
    matched_count: int
    total_count: int
    coverage: float


@dataclass
class RelationshipResult:
    relationships: List[DetectedRelationship]
    left_file: str
    right_file: str
    left_id_fields: List[IdField] = field(default_factory=list)
    right_id_fields: List[IdField] = field(default_factory=list)
    scanned_left: int = 0
    scanned_right: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relationships": [vars(r) for r in self.relationships],
            "left_file": self.left_file,
            "right_file": self.right_file,
            "left_id_fields": [f.to_dict() for f in self.left_id_fields],
            "right_id_fields": [f.to_dict() for f in self.right_id_fields],
            "scanned_left": self.scanned_left,
            "scanned_right": self.scanned_right,
        }


def is_id_field_name(name: str) -> bool:
    return any(p.search(name) for p in ID_FIELD_PATTERNS)


def is_entity_id_value(value: Any) -> bool:
    return isinstance(value, str) and bool(ENTITY_ID_VALUE_PATTERN.match(value))


def extract_id_value(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, dict):
        inner = value.get("value")
        if isinstance(inner, (str, int, float)) and not isinstance(inner, bool):
            return extract_id_value(inner)
    return None


def collect_id_fields(obj: Any, path: str, id_fields: Dict[str, Set[str]], depth: int = MAX_SCAN_DEPTH) -> None:
    """Record the values of identifier-looking fields under ``obj``, keyed by path."""
    if depth <= 0 or obj is None:
        return
    if isinstance(obj, list):
        for item in obj:
            collect_id_fields(item, f"{path}[*]", id_fields, depth - 1)
        return
    if not isinstance(obj, dict):
        return

    for key, value in obj.items():
        child = f"{path}.{key}" if path else key
        if is_id_field_name(key):
            id_value = extract_id_value(value)
            if id_value:
                id_fields.setdefault(child, set()).add(id_value)
            if isinstance(value, list):
                for item in value:
                    item_value = extract_id_value(item)
                    if item_value:
                        id_fields.setdefault(f"{child}[*]", set()).add(item_value)
        elif is_entity_id_value(value):
            id_fields.setdefault(child, set()).add(value)
        collect_id_fields(value, child, id_fields, depth - 1)


async def scan_file_for_ids(file, sub_path: Optional[str] = DEFAULT_SUB_PATH):
    id_fields: Dict[str, Set[str]] = {}
    scanned = 0
    async with aclosing(iter_values(file, sub_path)) as values:
        async for value in values:
            scanned += 1
            collect_id_fields(value, "", id_fields)
    return id_fields, scanned


def detect_value_pattern(values: Set[str]) -> Optional[str]:
    sample = sorted(values)[:10]
    if not sample:
        return None
    if all(ENTITY_ID_VALUE_PATTERN.match(v) for v in sample):
        prefixes = {v.split(":", 1)[0] for v in sample}
        return f"{prefixes.pop()}:*" if len(prefixes) == 1 else "EntityId:*"
    if all(_HEX_ID.match(v) for v in sample):
        return "hex-id"
    if all(_NUMERIC_ID.match(v) for v in sample):
        return "numeric-id"
    return None


def infer_relationship_type(left_path: str, right_path: str, left_count: int, right_count: int) -> str:
    left_many = "[*]" in left_path
    right_many = "[*]" in right_path
    if left_many and not right_many:
        return "one-to-many"
    if right_many and not left_many:
        return "many-to-one"
    if left_many and right_many:
        return "many-to-many"
    if left_count == right_count:
        return "one-to-one"
    return "many-to-one"


def rank_relationships(left_ids: Dict[str, Set[str]], right_ids: Dict[str, Set[str]],
                       min_coverage: float) -> List[DetectedRelationship]:
    """Every (left, right) path pair whose coverage reaches ``min_coverage``, best first."""
    relationships = []
    for left_path, left_values in left_ids.items():
        for right_path, right_values in right_ids.items():
            matched = len(left_values & right_values)
            if not matched:
                continue
            coverage = matched / len(left_values) * 100
            if coverage < min_coverage:
                continue
            relationships.append(DetectedRelationship(
                left_path=left_path,
                right_path=right_path,
                relationship_type=infer_relationship_type(left_path, right_path, len(left_values), len(right_values)),
                matched_count=matched,
                total_count=len(left_values),
                coverage=coverage,
            ))
    relationships.sort(key=lambda r: r.coverage, reverse=True)
    return relationships


async def find_relationships(left_file, right_file, min_coverage: float = 50, verbose: bool = False, *,
                             sub_path: Optional[str] = DEFAULT_SUB_PATH) -> RelationshipResult:
    logger.debug(f"Scanning left file: {left_file}")
    left_ids, scanned_left = await scan_file_for_ids(left_file, sub_path)
    logger.debug(f"Found {len(left_ids)} ID fields in left file")

    logger.debug(f"Scanning right file: {right_file}")
    right_ids, scanned_right = await scan_file_for_ids(right_file, sub_path)
    logger.debug(f"Found {len(right_ids)} ID fields in right file")

    relationships = rank_relationships(left_ids, right_ids, min_coverage)

    left_fields = [IdField(p, v, detect_value_pattern(v)) for p, v in left_ids.items()]
    right_fields = [IdField(p, v, detect_value_pattern(v)) for p, v in right_ids.items()]
    if not verbose:
        left_used = {r.left_path for r in relationships}
        right_used = {r.right_path for r in relationships}
        left_fields = [f for f in left_fields if f.path in left_used]
        right_fields = [f for f in right_fields if f.path in right_used]

    return RelationshipResult(
        relationships=relationships,
        left_file=str(left_file),
        right_file=str(right_file),
        left_id_fields=left_fields,
        right_id_fields=right_fields,
        scanned_left=scanned_left,
        scanned_right=scanned_right,
    )
