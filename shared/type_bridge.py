#!/usr/bin/env python3
"""Resolve ``$type`` names against a code knowledge-base server over MCP stdio.

    async with TypeBridge(["codebase-kb", "serve"]) as bridge:
        resolution = await bridge.resolve("Game.Models.Player", project="game")
"""
import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from shared.config import get_settings
from shared.errors import TypeBridgeError

logger = logging.getLogger(__name__)


@dataclass
class MemberInfo:
    name: str
    kind: str
    signature: Optional[str] = None
    attributes: List[str] = field(default_factory=list)
    modifiers: List[str] = field(default_factory=list)


@dataclass
class TypeInfo:
    name: str
    full_name: str
    kind: str = "unknown"
    namespace: Optional[str] = None
    bases: List[str] = field(default_factory=list)
    attributes: List[str] = field(default_factory=list)
    members: List[MemberInfo] = field(default_factory=list)
    file: Optional[str] = None
    line: Optional[int] = None


@dataclass
class TypeResolution:
    type: Optional[TypeInfo]
    dependencies: List[TypeInfo] = field(default_factory=list)
    error: Optional[str] = None


def _strings(value: Any) -> List[str]:
    return [str(v) for v in value] if isinstance(value, list) else []


def parse_type_info(data: Any) -> Optional[TypeInfo]:
    if not isinstance(data, dict) or not isinstance(data.get("name"), str) or not data["name"]:
        return None

    members = [
        MemberInfo(
            name=str(m.get("name", "")),
            kind=str(m.get("kind", "unknown")),
            signature=str(m["signature"]) if m.get("signature") else None,
            attributes=_strings(m.get("attributes")),
            modifiers=_strings(m.get("modifiers")),
        )
        for m in data.get("members") or []
        if isinstance(m, dict)
    ]
    namespace = str(data["namespace"]) if data.get("namespace") else None
    full_name = data.get("fullName") or (f"{namespace}.{data['name']}" if namespace else data["name"])
    line = data.get("line")
    return TypeInfo(
        name=data["name"],
        full_name=str(full_name),
        kind=str(data.get("kind", "unknown")),
        namespace=namespace,
        bases=_strings(data.get("bases")),
        attributes=_strings(data.get("attributes")),
        members=members,
        file=str(data["file"]) if data.get("file") else None,
        line=line if isinstance(line, int) and not isinstance(line, bool) else None,
    )


def parse_dependencies(data: Any) -> List[TypeInfo]:
    """Flatten ``{"incoming": [...], "outgoing": [...]}`` into unique TypeInfos."""
    if not isinstance(data, dict):
        return []
    seen = set()
    types = []
    for ref in list(data.get("incoming") or []) + list(data.get("outgoing") or []):
        if not isinstance(ref, dict) or not ref.get("symbol"):
            continue
        symbol = str(ref["symbol"])
        if symbol in seen:
            continue
        seen.add(symbol)
        namespace = str(ref["namespace"]) if ref.get("namespace") else None
        types.append(TypeInfo(
            name=symbol,
            full_name=f"{namespace}.{symbol}" if namespace else symbol,
            namespace=namespace,
            file=str(ref["file"]) if ref.get("file") else None,
        ))
    return types


def tool_payload(result: Any) -> Optional[Dict[str, Any]]:
    """JSON object carried by the first text content of a tool result, if any."""
    for content in getattr(result, "content", None) or []:
        if getattr(content, "type", None) != "text":
            continue
        try:
            payload = json.loads(content.text)
        except ValueError:
            logger.debug(f"non-JSON tool output: {content.text[:80]}")
            return None
        if not isinstance(payload, dict) or payload.get("error"):
            return None
        return payload
    return None


def split_type_name(type_name: str):
    """``"A.B.Player"`` -> ``("Player", "A.B")``."""
    namespace, _, short = type_name.rpartition(".")
    return short, namespace or None


class TypeBridge:
    """Owns one stdio session with the knowledge-base server.

    ``command`` defaults to ``JSONLENS_KB_COMMAND``. Use as an async
    context manager; the server process is stopped on exit.
    """

    def __init__(self, command: Optional[Sequence[str]] = None, env: Optional[Dict[str, str]] = None):
        command = list(command or get_settings().kb_command)
        if not command:
            raise TypeBridgeError("no knowledge-base command configured (set JSONLENS_KB_COMMAND)")
        self.params = StdioServerParameters(command=command[0], args=command[1:], env=env)
        self._stack: Optional[AsyncExitStack] = None
        self.session: Optional[ClientSession] = None

    async def __aenter__(self) -> "TypeBridge":
        self._stack = AsyncExitStack()
        try:
            read, write = await self._stack.enter_async_context(stdio_client(self.params))
            self.session = await self._stack.enter_async_context(ClientSession(read, write))
            await self.session.initialize()
        except Exception as e:
            await self._stack.aclose()
            raise TypeBridgeError(f"cannot start knowledge-base server {self.params.command}: {e}") from e
        logger.debug(f"Connected to knowledge-base server {self.params.command}")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self.session = None

    async def _call(self, name: str, arguments: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self.session is None:
            raise TypeBridgeError("TypeBridge used outside of its async context")
        return tool_payload(await self.session.call_tool(name, arguments))

    async def resolve(self, type_name: str, project: str, show_deps: bool = False) -> TypeResolution:
        short, namespace = split_type_name(type_name)
        arguments = {"project": project, "name": short}
        if namespace:
            arguments["namespace"] = namespace
        logger.debug(f"Looking up symbol {short} (namespace={namespace}) in project {project}")

        try:
            info = parse_type_info(await self._call("get_symbol", arguments))
        except TypeBridgeError:
            raise
        except Exception as e:
            return TypeResolution(type=None, error=f"Failed to resolve type: {e}")
        if info is None:
            return TypeResolution(type=None, error=f"Type '{type_name}' not found in project '{project}'")

        dependencies: List[TypeInfo] = []
        if show_deps:
            try:
                dependencies = parse_dependencies(
                    await self._call("get_dependencies", {"project": project, "symbol": short}))
            except Exception as e:
                # Dependencies are optional extra detail.
                logger.warning(f"Failed to get dependencies for {short}: {e}")
        return TypeResolution(type=info, dependencies=dependencies)
