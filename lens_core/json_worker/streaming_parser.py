#!/usr/bin/env python3
"""Constant‑memory streaming JSON reader built on ijson's async parser."""
import logging
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Optional

import aiofiles
import ijson
from ijson.common import ObjectBuilder

from shared.config import DEFAULT_SUB_PATH, get_settings
from shared.errors import SourceUnavailableError, StreamParseError

logger = logging.getLogger(__name__)

_STARTS = ("start_map", "start_array")
_ENDS = ("end_map", "end_array")


class EventKind(str, Enum):
    OBJECT_START = "start_map"
    OBJECT_END = "end_map"
    ARRAY_START = "start_array"
    ARRAY_END = "end_array"
    KEY = "map_key"
    SCALAR = "scalar"


@dataclass(frozen=True)
class ParseEvent:
    """One token of the document.

    ``prefix`` is the ijson prefix the token was found at (``entities.item``
    for the elements of the ``entities`` array). ``scalar_kind`` is one of
    ``string``, ``number``, ``boolean`` or ``null`` for scalar events.
    """
    kind: EventKind
    prefix: str
    value: Any = None
    scalar_kind: Optional[str] = None

    @property
    def ijson_event(self) -> str:
        return self.scalar_kind if self.kind is EventKind.SCALAR else self.kind.value


@dataclass(frozen=True)
class StreamItem:
    index: int
    value: Any


def _to_event(prefix: str, event: str, value: Any) -> ParseEvent:
    if event in ("string", "number", "boolean", "null"):
        return ParseEvent(EventKind.SCALAR, prefix, value, event)
    return ParseEvent(EventKind(event), prefix, value)


def _within(prefix: str, sub_path: str) -> bool:
    return prefix == sub_path or prefix.startswith(sub_path + ".")


class StreamingJSONParser:
    def __init__(self, buf_size: Optional[int] = None):
        self.buf_size = buf_size or get_settings().buf_size

    def auto_detect_json_structure(self, path) -> str:
        """Return 'array', 'object', or 'unknown'."""
        try:
            with open(path, 'rb') as f:
                while True:
                    ch = f.read(1)
                    if not ch:
                        return 'unknown'
                    if not ch.isspace():
                        if ch == b'[':
                            return 'array'
                        if ch == b'{':
                            return 'object'
                        return 'unknown'
        except OSError as e:
            logger.error(f"detect structure failed: {e}")
            return 'unknown'

    async def iter_events(self, path, sub_path: Optional[str] = None) -> AsyncIterator[ParseEvent]:
        """Yield parse events in document order.

        With ``sub_path`` only the events of that top-level value are
        produced. The rest of the document is still parsed once the value
        is closed, so a truncated or malformed tail raises before the
        sequence ends. Chunks are read from disk only when the consumer asks
        for the next event.
        """
        try:
            async with aiofiles.open(path, 'rb') as f:
                events = ijson.parse_async(f, buf_size=self.buf_size, use_float=True)
                closed = False
                async for prefix, event, value in events:
                    if not sub_path:
                        yield _to_event(prefix, event, value)
                        continue
                    if closed or not _within(prefix, sub_path):
                        continue
                    yield _to_event(prefix, event, value)
                    if prefix == sub_path and event not in _STARTS and event != "map_key":
                        logger.debug(f"{sub_path!r} closed in {path}; validating the remainder")
                        closed = True
        except (ijson.JSONError, UnicodeDecodeError) as e:
            logger.error(f"stream parse failed for {path}: {e}")
            raise StreamParseError(path, e) from e
        except OSError as e:
            logger.error(f"cannot open {path}: {e}")
            raise SourceUnavailableError(path, e) from e

    async def iter_records(self, path, sub_path: Optional[str] = DEFAULT_SUB_PATH) -> AsyncIterator[StreamItem]:
        """Yield the elements of the array at ``sub_path`` one at a time.

        ``sub_path=None`` streams a root-level array. A missing sub-path
        yields nothing.
        """
        container = sub_path or ""
        target = f"{container}.item" if container else "item"
        found = found_end = False
        builder = None
        depth = 0
        index = 0

        async with aclosing(self.iter_events(path, sub_path or None)) as events:
            async for ev in events:
                name = ev.ijson_event
                if builder is not None:
                    builder.event(name, ev.value)
                    if name in _STARTS:
                        depth += 1
                    elif name in _ENDS:
                        depth -= 1
                    if depth == 0:
                        yield StreamItem(index, builder.value)
                        index += 1
                        builder = None
                    continue

                if ev.prefix == container and name == "start_array":
                    found = True
                elif ev.prefix == container and name == "end_array":
                    # keep pulling so a corrupt tail still raises
                    found_end = True
                elif ev.prefix == target and found and not found_end:
                    if name in _STARTS:
                        builder = ObjectBuilder()
                        builder.event(name, ev.value)
                        depth = 1
                    else:
                        yield StreamItem(index, ev.value)
                        index += 1

        if not found:
            logger.warning(f"no array at {sub_path or '<root>'!r} in {path}; nothing to stream")
        else:
            logger.debug(f"streamed {index} elements from {path}")


async def iter_array(path, sub_path: Optional[str] = DEFAULT_SUB_PATH,
                     buf_size: Optional[int] = None) -> AsyncIterator[StreamItem]:
    """Module level shortcut for ``StreamingJSONParser().iter_records``."""
    async with aclosing(StreamingJSONParser(buf_size).iter_records(path, sub_path)) as records:
        async for item in records:
            yield item


async def iter_values(path, sub_path: Optional[str] = DEFAULT_SUB_PATH,
                      buf_size: Optional[int] = None) -> AsyncIterator[Any]:
    async with aclosing(iter_array(path, sub_path, buf_size)) as items:
        async for item in items:
            yield item.value
