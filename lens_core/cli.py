#!/usr/bin/env python3
"""json-lens: query, profile and join huge JSON entity files with constant RAM."""

import argparse
import asyncio
import json
import logging
import pathlib
import sys
import time
from typing import Dict, List, Optional

sys.path.append(str(pathlib.Path(__file__).parent.parent))

from lens_core.analytics.reports import AVAILABLE_REPORTS, run_report
from lens_core.analyzer.dataset_discovery import describe_dataset
from lens_core.analyzer.relationship_finder import find_relationships
from lens_core.analyzer.sampler import sample_data
from lens_core.analyzer.schema_extractor import extract_schema, format_schema_json, format_schema_yaml
from lens_core import formatting
from lens_core.query.aggregate import count, distribution, group_by, stats
from lens_core.query.join import execute_join, execute_join_aggregate
from lens_core.query.path_query import execute_query
from shared.config import get_settings
from shared.errors import JsonLensError
from shared.type_bridge import TypeBridge

logger = logging.getLogger(__name__)


def _fields(text: Optional[str]) -> Optional[List[str]]:
    if not text:
        return None
    return [s.strip() for s in text.split(",") if s.strip()]


def _aggregates(pairs: List[str]) -> Dict[str, str]:
    aggregates = {}
    for pair in pairs:
        alias, sep, expression = pair.partition("=")
        if not sep or not alias.strip():
            raise ValueError(f"expected NAME=EXPR for --aggregate, got {pair!r}")
        aggregates[alias.strip()] = expression.strip()
    return aggregates


async def cmd_schema(args) -> str:
    schema = await extract_schema(args.file, max_depth=args.depth, max_samples=args.samples,
                                  detect_patterns=args.patterns)
    return format_schema_json(schema) if args.format == "json" else format_schema_yaml(schema)


async def cmd_sample(args) -> str:
    result = await sample_data(args.file, count=args.count, path=args.path, entity_type=args.entity_type,
                               seed=args.seed, truncate_strings=args.truncate, max_depth=args.depth,
                               sub_path=args.sub_path)
    return formatting.format_samples(result, args.format)


async def cmd_query(args) -> str:
    result = await execute_query(args.file, select=_fields(args.select), filter_expr=args.filter,
                                 limit=args.limit, offset=args.offset,
                                 sub_path=args.sub_path, strict=args.strict_filters)
    return formatting.format_query_results(result, args.format)


async def cmd_count(args) -> str:
    result = await count(args.file, args.filter, sub_path=args.sub_path, strict=args.strict_filters)
    return formatting.format_count(result)


async def cmd_group(args) -> str:
    result = await group_by(args.file, args.path, args.filter, sub_path=args.sub_path, strict=args.strict_filters)
    return formatting.format_group_by(result, args.sort)


async def cmd_stats(args) -> str:
    result = await stats(args.file, args.path, args.filter, sub_path=args.sub_path, strict=args.strict_filters)
    return formatting.format_stats(result)


async def cmd_distribution(args) -> str:
    result = await distribution(args.file, args.path, args.filter, bucket_count=args.buckets,
                                sub_path=args.sub_path, strict=args.strict_filters)
    return formatting.format_distribution(result)


async def cmd_relationships(args) -> str:
    result = await find_relationships(args.file1, args.file2, min_coverage=args.min_coverage,
                                      verbose=args.all_fields, sub_path=args.sub_path)
    return formatting.format_relationships(result, args.all_fields)


async def cmd_join(args) -> str:
    if args.aggregate:
        result = await execute_join_aggregate(
            args.file1, args.file2, _aggregates(args.aggregate), group_by=args.group_by,
            left_key=args.left_key, right_key=args.right_key, filter_expr=args.filter,
            sub_path=args.sub_path, strict=args.strict_filters,
        )
        return formatting.format_join_aggregate(result)
    result = await execute_join(
        args.file1, args.file2, left_key=args.left_key, right_key=args.right_key,
        select=_fields(args.select), filter_expr=args.filter, limit=args.limit,
        sub_path=args.sub_path, strict=args.strict_filters,
    )
    return formatting.format_join(result)


async def cmd_describe(args) -> str:
    description = await describe_dataset(args.directory, sub_path=args.sub_path)
    if args.format == "json":
        return json.dumps(description.to_dict(), indent=2)
    return formatting.format_dataset(description)


async def cmd_analyze(args) -> str:
    result = await run_report(args.directory, args.report, args.format)
    return result.formatted


async def cmd_type(args) -> str:
    project = args.project or get_settings().kb_project
    if not project:
        raise ValueError("--project is required (or set JSONLENS_KB_PROJECT)")
    async with TypeBridge(args.kb_command.split() if args.kb_command else None) as bridge:
        resolution = await bridge.resolve(args.type_name, project, show_deps=args.show_deps)
    return formatting.format_type(resolution)


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--sub-path", default=settings.sub_path,
                        help="top-level key holding the entity array ('' for a root array)")
    common.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    common.add_argument("--strict-filters", action="store_true", default=None,
                        help="fail on an unparseable --filter instead of ignoring it")

    ap = argparse.ArgumentParser(prog="json-lens", description=__doc__)
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("schema", parents=[common], help="extract a compact schema")
    p.add_argument("file", type=pathlib.Path)
    p.add_argument("--depth", type=int, default=10, help="maximum depth to extract")
    p.add_argument("--samples", type=int, default=5, help="array elements merged per position")
    p.add_argument("--no-patterns", dest="patterns", action="store_false", help="disable pattern detection")
    p.add_argument("--format", choices=("yaml", "json"), default="yaml")
    p.set_defaults(handler=cmd_schema)

    p = sub.add_parser("sample", parents=[common], help="random sample of entities")
    p.add_argument("file", type=pathlib.Path)
    p.add_argument("--count", type=int, default=3)
    p.add_argument("--path", help="sample the value at this path instead of the entity")
    p.add_argument("--entity-type", help='e.g. "Player" or "PlayerCharacter"')
    p.add_argument("--seed", type=int, help="random seed for reproducible samples")
    p.add_argument("--truncate", type=int, default=200, help="maximum string length")
    p.add_argument("--depth", type=int, default=10, help="maximum nesting shown")
    p.add_argument("--format", choices=("pretty", "json"), default="pretty")
    p.set_defaults(handler=cmd_sample)

    p = sub.add_parser("query", parents=[common], help="filter, project and paginate entities")
    p.add_argument("file", type=pathlib.Path)
    p.add_argument("--select", help='comma separated fields, e.g. "entityId,payload.name"')
    p.add_argument("--filter", help='e.g. "payload.level > 10"')
    p.add_argument("--limit", type=int, default=100)
    p.add_argument("--offset", type=int, default=0)
    p.add_argument("--format", choices=("json", "table", "lines"), default="json")
    p.set_defaults(handler=cmd_query)

    p = sub.add_parser("count", parents=[common], help="count entities")
    p.add_argument("file", type=pathlib.Path)
    p.add_argument("--filter")
    p.set_defaults(handler=cmd_count)

    p = sub.add_parser("group", parents=[common], help="count occurrences per value")
    p.add_argument("file", type=pathlib.Path)
    p.add_argument("--path", required=True)
    p.add_argument("--filter")
    p.add_argument("--sort", choices=("count", "key"), default="count")
    p.set_defaults(handler=cmd_group)

    p = sub.add_parser("stats", parents=[common], help="numeric statistics")
    p.add_argument("file", type=pathlib.Path)
    p.add_argument("--path", required=True)
    p.add_argument("--filter")
    p.set_defaults(handler=cmd_stats)

    p = sub.add_parser("distribution", parents=[common], help="histogram of a numeric field")
    p.add_argument("file", type=pathlib.Path)
    p.add_argument("--path", required=True)
    p.add_argument("--buckets", type=int, default=10)
    p.add_argument("--filter")
    p.set_defaults(handler=cmd_distribution)

    p = sub.add_parser("relationships", parents=[common], help="detect join keys between two files")
    p.add_argument("file1", type=pathlib.Path)
    p.add_argument("file2", type=pathlib.Path)
    p.add_argument("--min-coverage", type=float, default=50)
    p.add_argument("--all-fields", action="store_true",
                   help="list every ID field found, not only those in a relationship")
    p.set_defaults(handler=cmd_relationships)

    p = sub.add_parser("join", parents=[common], help="join two files on a key")
    p.add_argument("file1", type=pathlib.Path)
    p.add_argument("file2", type=pathlib.Path, help="indexed in memory; pass the smaller file here")
    p.add_argument("--left-key")
    p.add_argument("--right-key")
    p.add_argument("--select", help="fields prefixed with a. or b.")
    p.add_argument("--filter", help="paths prefixed with a. or b.")
    p.add_argument("--limit", type=int, default=100)
    p.add_argument("--aggregate", action="append", default=[], metavar="NAME=EXPR",
                   help='e.g. "avg_level=AVG(b.payload.level)"; repeatable')
    p.add_argument("--group-by", help="a./b. path to group aggregates by")
    p.set_defaults(handler=cmd_join)

    p = sub.add_parser("describe", parents=[common], help="overview of a directory of JSON files")
    p.add_argument("directory", type=pathlib.Path)
    p.add_argument("--format", choices=("text", "json"), default="text")
    p.set_defaults(handler=cmd_describe)

    p = sub.add_parser("analyze", parents=[common], help="run a canned analytics report")
    p.add_argument("directory", type=pathlib.Path)
    p.add_argument("--report", required=True, choices=AVAILABLE_REPORTS)
    p.add_argument("--format", choices=("text", "json"), default="text")
    p.set_defaults(handler=cmd_analyze)

    p = sub.add_parser("type", parents=[common], help="look up a $type in the code knowledge base")
    p.add_argument("type_name")
    p.add_argument("--project", help="knowledge-base project (default JSONLENS_KB_PROJECT)")
    p.add_argument("--show-deps", action="store_true")
    p.add_argument("--kb-command", help="server command line (default JSONLENS_KB_COMMAND)")
    p.set_defaults(handler=cmd_type)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    debug = args.verbose or get_settings().debug
    logging.basicConfig(level=logging.DEBUG if debug else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    start = time.time()
    try:
        output = asyncio.run(args.handler(args))
    except (JsonLensError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    logger.debug("%s completed in %.2fs", args.command, time.time() - start)
    print(output)
    return 0


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
