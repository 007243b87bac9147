#!/usr/bin/env python3
"""Compact schema extraction from the token stream of a large JSON file.

Shapes are built bottom-up as tokens arrive: every closed value is merged
into the shape already recorded for its position, so memory follows the
size of the schema rather than the size of the document.
"""
import json
import logging
import re
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from lens_core.json_worker.streaming_parser import EventKind, ParseEvent, StreamingJSONParser

logger = logging.getLogger(__name__)

ENTITY_ID_PATTERN = re.compile(r"^[A-Za-z]+:[A-Za-z0-9]+$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2})?")
GUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
MAX_EXAMPLES = 3
MAX_EXAMPLE_LENGTH = 50

_SCALAR_TYPES = {"string": "string", "number": "number", "boolean": "boolean", "null": "null"}


@dataclass
class SchemaNode:
    type: str
    properties: Optional[Dict[str, "SchemaNode"]] = None
    items: Optional["SchemaNode"] = None
    array_length: Optional[List[int]] = None
    pattern: Optional[str] = None
    examples: Optional[List[str]] = None
    dollar_type: Optional[str] = None
    optional: bool = False
    # Shapes of other types seen at the same position.
    variants: Optional[List["SchemaNode"]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type}
        if self.dollar_type:
            out["$type"] = self.dollar_type
        if self.properties is not None:
            out["properties"] = {k: v.to_dict() for k, v in self.properties.items()}
        if self.items is not None:
            out["items"] = self.items.to_dict()
        if self.array_length is not None:
            out["arrayLength"] = {"min": self.array_length[0], "max": self.array_length[1]}
        if self.pattern:
            out["pattern"] = self.pattern
        if self.examples:
            out["examples"] = list(self.examples)
        if self.optional:
            out["optional"] = True
        if self.variants:
            out["variants"] = [v.to_dict() for v in self.variants]
        return out


def detect_pattern(value: str) -> Optional[str]:
    if ENTITY_ID_PATTERN.match(value):
        return f"{value.split(':', 1)[0]}:xxx"
    if DATE_PATTERN.match(value):
        return "ISO date"
    if GUID_PATTERN.match(value):
        return "GUID"
    return None


def merge_schemas(existing: SchemaNode, incoming: SchemaNode, example_limit: int = MAX_EXAMPLES) -> SchemaNode:
    """Fold ``incoming`` into ``existing`` (which is modified and returned)."""
    if existing.type != incoming.type:
        for variant in existing.variants or []:
            if variant.type == incoming.type:
                merge_schemas(variant, incoming, example_limit)
                break
        else:
            existing.variants = (existing.variants or []) + [incoming]
        return existing

    if incoming.dollar_type and not existing.dollar_type:
        existing.dollar_type = incoming.dollar_type

    if existing.type == "object":
        props = existing.properties if existing.properties is not None else {}
        incoming_props = incoming.properties or {}
        if existing.properties is not None and incoming.properties is not None:
            for key, node in props.items():
                if key not in incoming_props:
                    node.optional = True
        for key, node in incoming_props.items():
            if key in props:
                props[key] = merge_schemas(props[key], node, example_limit)
            else:
                node.optional = existing.properties is not None
                props[key] = node
        if existing.properties is not None or incoming.properties is not None:
            existing.properties = props

    elif existing.type == "array":
        if existing.items is None:
            existing.items = incoming.items
        elif incoming.items is not None:
            existing.items = merge_schemas(existing.items, incoming.items, example_limit)
        if existing.array_length is None:
            existing.array_length = incoming.array_length
        elif incoming.array_length is not None:
            existing.array_length = [min(existing.array_length[0], incoming.array_length[0]),
                                     max(existing.array_length[1], incoming.array_length[1])]

    elif existing.type == "string":
        if incoming.pattern and not existing.pattern:
            existing.pattern = incoming.pattern
        for example in incoming.examples or []:
            examples = existing.examples if existing.examples is not None else []
            if example not in examples and len(examples) < example_limit:
                examples.append(example)
            existing.examples = examples or None

    return existing


@dataclass
class _Frame:
    node: Optional[SchemaNode]
    key: Optional[str] = None
    count: int = 0


class _SchemaBuilder:
    def __init__(self, max_depth: int, max_samples: int, detect_patterns: bool):
        self.max_depth = max_depth
        self.max_samples = max_samples
        self.detect_patterns = detect_patterns
        self.example_limit = min(MAX_EXAMPLES, max(max_samples, 0))
        self.stack: List[_Frame] = []
        self.key: Optional[str] = None
        self.root: Optional[SchemaNode] = None

    def _skipping(self) -> bool:
        return bool(self.stack) and self.stack[-1].node is None

    def _accepts_child(self) -> bool:
        """False once an array has merged ``max_samples`` elements."""
        parent = self.stack[-1]
        if parent.node.type != "array":
            return True
        parent.count += 1
        return parent.count <= self.max_samples

    def _scalar(self, ev: ParseEvent) -> SchemaNode:
        node = SchemaNode(type=_SCALAR_TYPES[ev.scalar_kind])
        if node.type == "string":
            pattern = detect_pattern(ev.value) if self.detect_patterns else None
            if pattern:
                node.pattern = pattern
            elif len(ev.value) <= MAX_EXAMPLE_LENGTH and self.example_limit:
                node.examples = [ev.value]
        return node

    def _attach(self, node: SchemaNode, key: Optional[str]) -> None:
        if not self.stack:
            self.root = node
            return
        parent = self.stack[-1].node
        if parent.type == "object":
            props = parent.properties
            props[key] = merge_schemas(props[key], node, self.example_limit) if key in props else node
        elif parent.items is None:
            parent.items = node
        else:
            parent.items = merge_schemas(parent.items, node, self.example_limit)

    def feed(self, ev: ParseEvent) -> None:
        kind = ev.kind
        if kind is EventKind.KEY:
            self.key = ev.value
            return

        if kind in (EventKind.OBJECT_START, EventKind.ARRAY_START):
            node_type = "object" if kind is EventKind.OBJECT_START else "array"
            if self._skipping():
                self.stack.append(_Frame(None))
                return
            # Array elements beyond the sample budget still count towards the length.
            if self.stack and not self._accepts_child():
                self.stack.append(_Frame(None))
                return
            node = SchemaNode(type=node_type)
            if len(self.stack) < self.max_depth:
                if node_type == "object":
                    node.properties = {}
                self.stack.append(_Frame(node, self.key))
            else:
                # Too deep: record the type only and ignore the contents.
                self._attach(node, self.key)
                self.stack.append(_Frame(None))
            return

        if kind in (EventKind.OBJECT_END, EventKind.ARRAY_END):
            frame = self.stack.pop()
            if frame.node is None:
                return
            if frame.node.type == "array":
                frame.node.array_length = [frame.count, frame.count]
            self._attach(frame.node, frame.key)
            return

        # Scalars.
        if self._skipping():
            return
        key = self.key
        if self.stack and self.stack[-1].node.type == "object":
            if key == "$type" and ev.scalar_kind == "string":
                self.stack[-1].node.dollar_type = ev.value
                return
        elif self.stack and not self._accepts_child():
            return
        self._attach(self._scalar(ev), key)


async def extract_schema(file, max_depth: int = 10, max_samples: int = 5, detect_patterns: bool = True, *,
                         buf_size: Optional[int] = None) -> SchemaNode:
    """Build a merged ``SchemaNode`` for the whole document."""
    builder = _SchemaBuilder(max_depth, max_samples, detect_patterns)
    async with aclosing(StreamingJSONParser(buf_size).iter_events(file)) as events:
        async for ev in events:
            builder.feed(ev)
    logger.debug(f"schema extracted from {file}")
    return builder.root or SchemaNode(type="null")


def _simple_type(node: SchemaNode) -> str:
    if node.dollar_type:
        text = f'"{node.dollar_type}"'
    elif node.pattern:
        text = f"string ({node.pattern})"
    elif node.examples:
        shown = ", ".join(f'"{e}"' for e in node.examples[:2])
        text = f"string (e.g. {shown})"
    else:
        text = node.type
    for variant in node.variants or []:
        text += f" | {variant.type}"
    return text


def format_schema_yaml(schema: SchemaNode, indent: int = 0) -> str:
    """Indented YAML-like rendering, terser than JSON."""
    prefix = "  " * indent
    lines = []
    if schema.dollar_type:
        lines.append(f'{prefix}$type: "{schema.dollar_type}"')

    if schema.type == "object" and schema.properties:
        for key, value in schema.properties.items():
            mark = "?" if value.optional else ""
            if value.type in ("object", "array") and (value.properties or value.items or value.type == "array"):
                lines.append(f"{prefix}{key}{mark}:")
                lines.append(format_schema_yaml(value, indent + 1))
            else:
                lines.append(f"{prefix}{key}{mark}: {_simple_type(value)}")
    elif schema.type == "array":
        length = f"[{schema.array_length[0]}-{schema.array_length[1]}]" if schema.array_length else "[]"
        if schema.items is None:
            lines.append(f"{prefix}array{length}")
        elif schema.items.type in ("object", "array"):
            lines.append(f"{prefix}array{length}:")
            lines.append(format_schema_yaml(schema.items, indent + 1))
        else:
            lines.append(f"{prefix}array{length} of {_simple_type(schema.items)}")
    elif schema.type != "object" or not schema.dollar_type:
        lines.append(f"{prefix}{_simple_type(schema)}")

    return "\n".join(line for line in lines if line)


def format_schema_json(schema: SchemaNode) -> str:
    return json.dumps(schema.to_dict(), indent=2)
