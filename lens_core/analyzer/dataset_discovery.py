#!/usr/bin/env python3
"""One-shot overview of a directory of entity files."""
import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from lens_core.analyzer.relationship_finder import find_relationships
from lens_core.analyzer.schema_extractor import SchemaNode, extract_schema
from lens_core.query.aggregate import count
from shared.config import DEFAULT_SUB_PATH
from shared.errors import JsonLensError, SourceUnavailableError

logger = logging.getLogger(__name__)

KEY_FIELD_PATTERN = re.compile(r"Id$|Ids$|^id$|^entityId$", re.IGNORECASE)
METRIC_HINTS = ("History", "Stats", "createdAt", "updatedAt", "timestamp", "count", "total")
MAX_METRIC_FIELDS = 10
MAX_SUGGESTIONS = 5


@dataclass
class FileInfo:
    name: str
    size_mb: float
    entity_count: int
    entity_type: Optional[str] = None
    key_fields: List[str] = field(default_factory=list)
    sample_values: Dict[str, List[str]] = field(default_factory=dict)
    metrics_available: List[str] = field(default_factory=list)


@dataclass
class RelationshipSummary:
    description: str
    left_file: str
    left_key: str
    right_file: str
    right_key: str
    coverage: str
    type: str


@dataclass
class DatasetDescription:
    directory: str
    files: List[FileInfo]
    relationships: List[RelationshipSummary]
    suggested_queries: List[str]
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def find_json_files(directory) -> List[Path]:
    root = Path(directory).resolve()
    try:
        return sorted(p for p in root.iterdir() if p.suffix == ".json" and p.is_file())
    except OSError as e:
        raise SourceUnavailableError(directory, e) from e


def _entity_schema(schema: SchemaNode, sub_path: Optional[str]) -> Optional[SchemaNode]:
    """The element schema of the entity array, if the document has one."""
    node = schema
    if sub_path and schema.type == "object" and schema.properties:
        node = schema.properties.get(sub_path)
    if node is not None and node.type == "array" and node.items is not None and node.items.type == "object":
        return node.items
    return None


def entity_type_of(schema: SchemaNode, sub_path: Optional[str] = DEFAULT_SUB_PATH) -> Optional[str]:
    for node in (schema, _entity_schema(schema, sub_path)):
        if node is not None and node.dollar_type:
            return node.dollar_type.split(".")[-1]
    return None


def _walk_properties(node: Optional[SchemaNode], prefix: str = ""):
    if node is None or not node.properties:
        return
    for key, child in node.properties.items():
        path = f"{prefix}.{key}" if prefix else key
        yield key, path, child
        if child.type == "object":
            yield from _walk_properties(child, path)


def key_fields_of(element: Optional[SchemaNode]) -> List[str]:
    found = [path for key, path, _ in _walk_properties(element) if KEY_FIELD_PATTERN.search(key)]
    return list(dict.fromkeys(found))


def sample_values_of(element: Optional[SchemaNode]) -> Dict[str, List[str]]:
    samples = {}
    for _, path, child in _walk_properties(element):
        if child.type == "string" and child.examples and child.pattern in (None, "ISO date", "GUID"):
            samples[path] = list(child.examples)
    return samples


def metric_fields_of(element: Optional[SchemaNode]) -> List[str]:
    found = [path for key, path, child in _walk_properties(element)
             if child.type == "number" or any(hint in key for hint in METRIC_HINTS)]
    return list(dict.fromkeys(found))[:MAX_METRIC_FIELDS]


def suggest_queries(files: List[FileInfo], relationships: List[RelationshipSummary]) -> List[str]:
    suggestions = []
    for info in files:
        stem = Path(info.name).stem
        for name, values in info.sample_values.items():
            if len(values) >= 2:
                suggestions.append(f"Group by {name} to compare {stem} segments")
                break
        history = next((m for m in info.metrics_available if "History" in m or "Stats" in m), None)
        if history:
            purpose = "retention" if "login" in history else "analytics"
            suggestions.append(f"Use {history} for {purpose} analysis")
    for rel in relationships:
        suggestions.append(f"Join on {rel.left_key} <-> {rel.right_key} for cross-file queries")
    return list(dict.fromkeys(suggestions))[:MAX_SUGGESTIONS]


async def describe_dataset(directory, *, sub_path: Optional[str] = DEFAULT_SUB_PATH) -> DatasetDescription:
    """Describe every ``*.json`` file in ``directory`` and how the files connect.

    A file that cannot be read or parsed is listed with zero entities and a
    warning; the remaining files are still described.
    """
    logger.debug(f"Describing dataset in: {directory}")
    paths = find_json_files(directory)
    warnings: List[str] = []
    files: List[FileInfo] = []

    for path in paths:
        size_mb = round(path.stat().st_size / (1024 * 1024), 1)
        try:
            schema = await extract_schema(path, max_depth=5, max_samples=10)
            total = (await count(path, sub_path=sub_path)).total
        except JsonLensError as e:
            message = f"Failed to process {path.name}: {e}"
            logger.warning(message)
            warnings.append(message)
            files.append(FileInfo(name=path.name, size_mb=size_mb, entity_count=0))
            continue

        element = _entity_schema(schema, sub_path)
        files.append(FileInfo(
            name=path.name,
            size_mb=size_mb,
            entity_count=total,
            entity_type=entity_type_of(schema, sub_path),
            key_fields=key_fields_of(element),
            sample_values=sample_values_of(element),
            metrics_available=metric_fields_of(element),
        ))

    relationships: List[RelationshipSummary] = []
    for i, left in enumerate(paths):
        for right in paths[i + 1:]:
            try:
                result = await find_relationships(left, right, min_coverage=50, sub_path=sub_path)
            except JsonLensError as e:
                message = f"Failed to find relationships between {left.name} and {right.name}: {e}"
                logger.warning(message)
                warnings.append(message)
                continue
            for rel in result.relationships:
                relationships.append(RelationshipSummary(
                    description=f"{left.stem}.{rel.left_path} -> {right.stem}.{rel.right_path}",
                    left_file=left.name,
                    left_key=rel.left_path,
                    right_file=right.name,
                    right_key=rel.right_path,
                    coverage=f"{rel.coverage:.0f}%",
                    type=rel.relationship_type,
                ))

    return DatasetDescription(
        directory=str(directory),
        files=files,
        relationships=relationships,
        suggested_queries=suggest_queries(files, relationships),
        warnings=warnings,
    )
