#!/usr/bin/env python3
from fastapi import FastAPI, UploadFile, File, HTTPException, Body
from fastapi.responses import JSONResponse, StreamingResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import logging, tempfile, time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from lens_core.analytics.reports import AVAILABLE_REPORTS, run_report
from lens_core.analyzer.dataset_discovery import describe_dataset
from lens_core.analyzer.relationship_finder import find_relationships
from lens_core.analyzer.sampler import sample_data
from lens_core.analyzer.schema_extractor import extract_schema, format_schema_yaml
from lens_core.query.aggregate import count, distribution, group_by, stats
from lens_core.query.join import execute_join, execute_join_aggregate
from lens_core.query.path_query import execute_query
from shared.config import get_settings
from shared.errors import (InvalidFilterError, JsonLensError, RelationshipNotFoundError,
                           SourceUnavailableError, StreamParseError)

app = FastAPI(title="json-lens")
logger = logging.getLogger(__name__)

request_counter = Counter("jsonlens_tool_requests_total", "Tool calls", ["tool", "status"])
process_duration = Histogram("jsonlens_tool_seconds", "Time spent running a tool", ["tool"])


@dataclass
class Tool:
    description: str
    run: Callable[..., Awaitable[Dict[str, Any]]]
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    extra: Dict[str, Any] = field(default_factory=dict)

    def describe(self, name: str) -> Dict[str, Any]:
        return {"name": name, "description": self.description, "required": list(self.required),
                "optional": list(self.optional), **self.extra}


async def _get_schema(file, max_depth=10, max_samples=5, detect_patterns=True, format="yaml"):
    schema = await extract_schema(file, max_depth=max_depth, max_samples=max_samples,
                                  detect_patterns=detect_patterns)
    if format == "json":
        return {"schema": schema.to_dict()}
    return {"schema": format_schema_yaml(schema)}


async def _sample(file, count=3, path=None, entity_type=None, seed=None, truncate_strings=200, max_depth=10,
                  sub_path=None):
    result = await sample_data(file, count=count, path=path, entity_type=entity_type, seed=seed,
                               truncate_strings=truncate_strings, max_depth=max_depth,
                               sub_path=_sub_path(sub_path))
    return result.to_dict()


async def _query(file, select=None, filter=None, limit=100, offset=0, sub_path=None, strict=None):
    result = await execute_query(file, select=select, filter_expr=filter, limit=limit, offset=offset,
                                 sub_path=_sub_path(sub_path), strict=strict)
    return result.to_dict()


async def _count(file, filter=None, sub_path=None, strict=None):
    return (await count(file, filter, sub_path=_sub_path(sub_path), strict=strict)).to_dict()


async def _group_by(file, path, filter=None, sub_path=None, strict=None):
    return (await group_by(file, path, filter, sub_path=_sub_path(sub_path), strict=strict)).to_dict()


async def _stats(file, path, filter=None, sub_path=None, strict=None):
    return (await stats(file, path, filter, sub_path=_sub_path(sub_path), strict=strict)).to_dict()


async def _distribution(file, path, filter=None, buckets=10, sub_path=None, strict=None):
    result = await distribution(file, path, filter, bucket_count=buckets, sub_path=_sub_path(sub_path),
                                strict=strict)
    return result.to_dict()


async def _relationships(left_file, right_file, min_coverage=50, verbose=False, sub_path=None):
    result = await find_relationships(left_file, right_file, min_coverage=min_coverage, verbose=verbose,
                                      sub_path=_sub_path(sub_path))
    return result.to_dict()


async def _join(left_file, right_file, left_key=None, right_key=None, select=None, filter=None, limit=100,
                aggregates=None, group_by=None, sub_path=None, strict=None):
    if aggregates:
        result = await execute_join_aggregate(left_file, right_file, aggregates, group_by=group_by,
                                              left_key=left_key, right_key=right_key, filter_expr=filter,
                                              sub_path=_sub_path(sub_path), strict=strict)
    else:
        result = await execute_join(left_file, right_file, left_key=left_key, right_key=right_key,
                                    select=select, filter_expr=filter, limit=limit,
                                    sub_path=_sub_path(sub_path), strict=strict)
    return result.to_dict()


async def _describe(directory, sub_path=None):
    return (await describe_dataset(directory, sub_path=_sub_path(sub_path))).to_dict()


async def _report(directory, report, format="text"):
    return (await run_report(directory, report, format)).to_dict()


def _sub_path(value):
    return get_settings().sub_path if value is None else value


_SCAN = ("filter", "sub_path", "strict")

TOOLS: Dict[str, Tool] = {
    "get_schema": Tool("Compact schema of a JSON file", _get_schema, ("file",),
                       ("max_depth", "max_samples", "detect_patterns", "format")),
    "sample_data": Tool("Random sample of entities", _sample, ("file",),
                        ("count", "path", "entity_type", "seed", "truncate_strings", "max_depth", "sub_path")),
    "query_json": Tool("Filter, project and paginate entities", _query, ("file",),
                       ("select", "limit", "offset") + _SCAN),
    "count_entities": Tool("Count entities matching a filter", _count, ("file",), _SCAN),
    "group_by": Tool("Count entities per value at a path", _group_by, ("file", "path"), _SCAN),
    "get_stats": Tool("count/sum/avg/min/max of a numeric path", _stats, ("file", "path"), _SCAN),
    "get_distribution": Tool("Histogram of a numeric path", _distribution, ("file", "path"),
                             ("buckets",) + _SCAN),
    "find_relationships": Tool("Detect join keys between two files", _relationships,
                               ("left_file", "right_file"), ("min_coverage", "verbose", "sub_path")),
    "join_files": Tool("Join two files, optionally aggregating the pairs", _join, ("left_file", "right_file"),
                       ("left_key", "right_key", "select", "limit", "aggregates", "group_by") + _SCAN),
    "describe_dataset": Tool("Overview of every JSON file in a directory", _describe, ("directory",),
                             ("sub_path",)),
    "run_report": Tool("Canned analytics report", _report, ("directory", "report"), ("format",),
                       {"reports": AVAILABLE_REPORTS}),
}


class BadArguments(ValueError):
    pass


def check_arguments(name: str, tool: Tool, arguments: Dict[str, Any]) -> None:
    missing = [a for a in tool.required if a not in arguments]
    unknown = [a for a in arguments if a not in tool.required and a not in tool.optional]
    if missing:
        raise BadArguments(f"{name}: missing argument(s) {', '.join(missing)}")
    if unknown:
        raise BadArguments(f"{name}: unknown argument(s) {', '.join(unknown)}")


_STATUS = (
    (SourceUnavailableError, 404),
    (StreamParseError, 422),
    (RelationshipNotFoundError, 409),
    (InvalidFilterError, 400),
    (ValueError, 400),
)


def status_for(error: Exception) -> int:
    for kind, status in _STATUS:
        if isinstance(error, kind):
            return status
    return 500


@app.get("/health", tags=["ops"])
def health():
    return {"status": "healthy"}


@app.get("/metrics", tags=["ops"])
def metrics():
    return StreamingResponse(iter([generate_latest()]), media_type=CONTENT_TYPE_LATEST)


@app.get("/tools", tags=["tools"])
def list_tools():
    return {"tools": [tool.describe(name) for name, tool in TOOLS.items()]}


@app.post("/tools/{name}", tags=["tools"])
async def call_tool(name: str, arguments: Dict[str, Any] = Body(default={})):
    tool = TOOLS.get(name)
    if tool is None:
        request_counter.labels(tool=name, status="404").inc()
        raise HTTPException(status_code=404, detail=f"Unknown tool: {name}")

    start = time.time()
    try:
        check_arguments(name, tool, arguments)
        result = await tool.run(**arguments)
    except (JsonLensError, ValueError) as e:
        status = status_for(e)
        request_counter.labels(tool=name, status=str(status)).inc()
        logger.warning(f"tool {name} failed with {status}: {e}")
        raise HTTPException(status_code=status, detail=str(e))
    finally:
        process_duration.labels(tool=name).observe(time.time() - start)

    request_counter.labels(tool=name, status="200").inc()
    return JSONResponse(result)


@app.post("/process/file", tags=["process"])
async def process_file(file: UploadFile = File(...), sub_path: Optional[str] = None):
    """Upload a JSON document and get its entity count and schema back."""
    chunk_size = 8*1024*1024  # 8 MB
    with tempfile.NamedTemporaryFile(delete=False, suffix=".json") as tmp:
        total = 0
        while True:
            chunk = await file.read(chunk_size)
            if not chunk:
                break
            tmp.write(chunk)
            total += len(chunk)
        tmp_path = tmp.name
    start = time.time()
    try:
        counted = await count(tmp_path, sub_path=_sub_path(sub_path))
        schema = await extract_schema(tmp_path, max_depth=5, max_samples=5)
        request_counter.labels(tool="process_file", status="200").inc()
        return JSONResponse({"filename": file.filename, "bytes": total, "records": counted.total,
                             "schema": format_schema_yaml(schema)})
    except JsonLensError as e:
        status = status_for(e)
        request_counter.labels(tool="process_file", status=str(status)).inc()
        raise HTTPException(status_code=status, detail=str(e))
    finally:
        process_duration.labels(tool="process_file").observe(time.time() - start)
        Path(tmp_path).unlink()


def run():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)


if __name__ == "__main__":
    run()
