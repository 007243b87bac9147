#!/usr/bin/env python3
"""Plain-text renderers for CLI output."""
import json
from pathlib import Path
from typing import Any, List


def _dumps(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def format_query_results(result, output_format: str = "json") -> str:
    """``json`` (items only), ``lines`` (one JSON document per line) or ``table``."""
    if output_format == "json":
        return _dumps(result.items)
    if output_format == "lines":
        return "\n".join(json.dumps(item, default=str) for item in result.items)

    header = (f"# {len(result.items)} results ({result.total_matched} total matches, "
              f"{result.total_scanned} scanned)\n\n")
    if output_format == "table" and result.items and isinstance(result.items[0], dict):
        keys = list(result.items[0])
        widths = [max(len(k), 15) for k in keys]
        lines = [
            " | ".join(k.ljust(w) for k, w in zip(keys, widths)),
            "-+-".join("-" * w for w in widths),
        ]
        for item in result.items:
            cells = []
            for key, width in zip(keys, widths):
                value = item.get(key) if isinstance(item, dict) else None
                text = "" if value is None else str(value)
                cells.append(text[:width].ljust(width))
            lines.append(" | ".join(cells))
        return header + "\n".join(lines)
    return header + _dumps(result.items)


def format_count(result) -> str:
    return f"Count: {result.total} (scanned {result.scanned})"


def format_group_by(result, sort_by: str = "count") -> str:
    lines = [
        "# Group By Results",
        f"Total: {result.total} | Unique Values: {result.unique_values} | Scanned: {result.scanned}",
        "",
    ]
    if sort_by == "count":
        entries = sorted(result.groups.items(), key=lambda kv: kv[1], reverse=True)
    else:
        entries = sorted(result.groups.items())

    key_width = max([len(k) for k, _ in entries] + [5])
    count_width = max([len(str(v)) for _, v in entries] + [5])
    lines.append(f"{'Value'.ljust(key_width)} | {'Count'.rjust(count_width)} | Percentage")
    lines.append(f"{'-' * key_width}-+-{'-' * count_width}-+-----------")
    for key, n in entries:
        pct = n / result.total * 100 if result.total else 0
        lines.append(f"{key.ljust(key_width)} | {str(n).rjust(count_width)} | {pct:.1f}%")
    return "\n".join(lines)


def format_stats(result) -> str:
    return "\n".join([
        "# Statistics",
        f"Count: {result.count}",
        f"Sum: {result.sum:.2f}",
        f"Average: {result.avg:.2f}",
        f"Min: {result.min}",
        f"Max: {result.max}",
        f"Scanned: {result.scanned}",
    ])


def format_distribution(result) -> str:
    lines = ["# Distribution", f"Total: {result.total} | Scanned: {result.scanned}", ""]
    range_width = max([len(b.range) for b in result.buckets] + [5])
    count_width = max([len(str(b.count)) for b in result.buckets] + [5])
    lines.append(f"{'Range'.ljust(range_width)} | {'Count'.rjust(count_width)} | Distribution")
    lines.append(f"{'-' * range_width}-+-{'-' * count_width}-+-------------")
    for bucket in result.buckets:
        bar = "#" * round(bucket.percentage / 2)
        lines.append(f"{bucket.range.ljust(range_width)} | {str(bucket.count).rjust(count_width)} | "
                     f"{bar} {bucket.percentage:.1f}%")
    return "\n".join(lines)


def _join_header(result, rows: int) -> List[str]:
    keys = result.join_keys
    detected = " (auto-detected)" if keys.auto_detected else ""
    return [
        f"{rows} results ({result.total_matched} total matches)",
        f"Join: {keys.left_key} -> {keys.right_key}{detected}",
        f"Scanned: {result.left_scanned} left, {result.right_scanned} right",
        "",
    ]


def format_join(result) -> str:
    lines = ["# Join Results"] + _join_header(result, len(result.items))
    lines.append(_dumps(result.items) if result.items else "No matching results.")
    return "\n".join(lines)


def format_join_aggregate(result) -> str:
    lines = ["# Join Aggregate Results"] + _join_header(result, len(result.groups))
    lines.append(_dumps({"groups": result.groups, "totals": result.totals}))
    return "\n".join(lines)


def format_relationships(result, verbose: bool = False) -> str:
    left_name = Path(result.left_file).name
    right_name = Path(result.right_file).name
    lines = []
    if not result.relationships:
        lines.append("No relationships detected with sufficient coverage.")
        if not verbose:
            lines.append("Try --all-fields to see all detected ID fields.")
    else:
        lines += ["Detected relationships:", ""]
        for rel in result.relationships:
            lines += [
                f"- {left_name}: {rel.left_path}",
                f"  -> {right_name}: {rel.right_path}",
                f"  Type: {rel.relationship_type}",
                f"  Coverage: {rel.coverage:.1f}% of IDs matched ({rel.matched_count}/{rel.total_count})",
                "",
            ]

    if verbose:
        for name, fields in ((left_name, result.left_id_fields), (right_name, result.right_id_fields)):
            lines += ["", f"All ID fields in {name}:"]
            for f in fields:
                pattern = f" [{f.value_pattern}]" if f.value_pattern else ""
                lines.append(f"  - {f.path} ({len(f.values)} unique values){pattern}")

    lines += ["", f"Scanned: {result.scanned_left} entities (left), {result.scanned_right} entities (right)"]
    return "\n".join(lines)


def format_samples(result, output_format: str = "pretty") -> str:
    if output_format == "json":
        return _dumps(result.items)
    header = (f"# Sampled {len(result.items)} of {result.matched_count} matched items "
              f"({result.total_scanned} total scanned)\n\n")
    body = "\n\n".join(f"## Sample {i}\n{_dumps(item)}" for i, item in enumerate(result.items, 1))
    return header + body


def format_dataset(description) -> str:
    lines = [f"# Dataset: {description.directory}", ""]
    for info in description.files:
        kind = f" ({info.entity_type})" if info.entity_type else ""
        lines.append(f"## {info.name}{kind}")
        lines.append(f"Size: {info.size_mb} MB | Entities: {info.entity_count}")
        if info.key_fields:
            lines.append(f"Key fields: {', '.join(info.key_fields)}")
        for name, values in info.sample_values.items():
            lines.append(f"  {name}: {', '.join(values)}")
        if info.metrics_available:
            lines.append(f"Metrics: {', '.join(info.metrics_available)}")
        lines.append("")
    if description.relationships:
        lines.append("## Relationships")
        for rel in description.relationships:
            lines.append(f"  {rel.description} ({rel.type}, {rel.coverage})")
        lines.append("")
    if description.suggested_queries:
        lines.append("## Suggested queries")
        lines += [f"  - {q}" for q in description.suggested_queries]
    return "\n".join(lines).rstrip()


def _member_lines(members, kinds, default_suffix: str = "") -> List[str]:
    lines = []
    for member in members:
        if member.kind not in kinds:
            continue
        attrs = f" [{', '.join(member.attributes)}]" if member.attributes else ""
        lines.append(f"  - {member.signature or member.name + default_suffix}{attrs}")
    return lines


def format_type(resolution) -> str:
    if resolution.error:
        return f"Error: {resolution.error}"
    info = resolution.type
    if info is None:
        return "Type not found."

    lines = [f"Type: {info.full_name}", f"Kind: {info.kind}"]
    if info.bases:
        lines.append(f"Base: {', '.join(info.bases)}")
    if info.attributes:
        lines.append(f"Attributes: {', '.join(info.attributes)}")
    if info.file:
        lines.append(f"Location: {info.file}:{info.line}" if info.line else f"Location: {info.file}")

    data_members = _member_lines(info.members, ("property", "field"))
    if data_members:
        lines += ["", "Members:"] + data_members
    methods = _member_lines(info.members, ("method",), "()")
    if methods:
        lines += ["", "Methods:"] + methods

    if resolution.dependencies:
        lines += ["", "Dependencies:"]
        lines += [f"  - {dep.full_name} ({dep.kind})" for dep in resolution.dependencies]
    return "\n".join(lines)
