"""
Tool registry: per-server tool catalogs merged under a collision-free namespace.

Every tool is addressed as ``server/tool`` (its qualified name); user-facing
output shows ``@server/tool``. Two servers exporting a tool with the same
name therefore never shadow each other.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from mcp.types import Tool
from pydantic import ValidationError

from ..exceptions import AmbiguousToolError, ProtocolViolation, RemoteError, ToolNotFoundError

if TYPE_CHECKING:
    from .connection import ServerConnection

logger = logging.getLogger(__name__)

# JSON-RPC "method not found": the server has no tools capability
METHOD_NOT_FOUND = -32601

# Safety bound on tools/list pagination
MAX_PAGES = 100


@dataclass(frozen=True)
class ToolDescriptor:
    """One tool offered by one server."""

    server_name: str
    tool_name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    title: str | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.server_name}/{self.tool_name}"

    @property
    def reference(self) -> str:
        """Display form, as typed by users."""
        return f"@{self.qualified_name}"

    def to_dict(self) -> dict[str, Any]:
        data = {
            "server": self.server_name,
            "name": self.tool_name,
            "qualified_name": self.qualified_name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
        if self.title:
            data["title"] = self.title
        return data


def parse_tool(server_name: str, raw: Any) -> ToolDescriptor | None:
    """
    Build a descriptor from one entry of a tools/list result.

    Returns None (with a warning) when the entry is malformed. The input
    schema is stored as-is; only its top-level type is checked.
    """
    try:
        # Wire names are stable across SDK releases; attribute names are not
        fields = Tool.model_validate(raw).model_dump(by_alias=True)
    except ValidationError as e:
        logger.warning(f"[{server_name}] Dropping malformed tool descriptor: {e.error_count()} error(s)")
        logger.debug(f"[{server_name}] Malformed descriptor {raw!r}: {e}")
        return None
    except (TypeError, ValueError) as e:
        logger.warning(f"[{server_name}] Dropping unreadable tool descriptor: {e}")
        return None

    name = fields.get("name")
    if not isinstance(name, str) or not name or "/" in name:
        logger.warning(f"[{server_name}] Dropping tool with invalid name {name!r}")
        return None
    schema = fields.get("inputSchema")
    if not isinstance(schema, dict) or schema.get("type") != "object":
        logger.warning(
            f"[{server_name}] Dropping tool '{name}': inputSchema must be an object schema"
        )
        return None
    description = fields.get("description")
    title = fields.get("title")

    return ToolDescriptor(
        server_name=server_name,
        tool_name=name,
        description=description if isinstance(description, str) else "",
        input_schema=dict(schema),
        title=title if isinstance(title, str) else None,
    )


async def discover(connection: "ServerConnection") -> list[ToolDescriptor]:
    """
    Fetch the complete tool list of a Ready connection.

    Follows nextCursor until the server stops returning one. A server that
    does not implement tools/list has an empty catalog.

    Raises:
        ProtocolViolation: If a page is not shaped like a tools/list result
        McpHubError: Any transport or remote failure other than -32601
    """
    server = connection.name
    tools: list[ToolDescriptor] = []
    seen_names: set[str] = set()
    seen_cursors: set[str] = set()
    cursor: str | None = None

    for _ in range(MAX_PAGES):
        try:
            page = await connection.list_tools(cursor)
        except RemoteError as e:
            if e.code == METHOD_NOT_FOUND:
                logger.info(f"[{server}] Server does not support tools/list")
                return []
            raise

        entries = page.get("tools", [])
        if not isinstance(entries, list):
            raise ProtocolViolation("tools/list result has no tools array", server=server)

        for raw in entries:
            descriptor = parse_tool(server, raw)
            if descriptor is None:
                continue
            if descriptor.tool_name in seen_names:
                logger.warning(f"[{server}] Dropping duplicate tool '{descriptor.tool_name}'")
                continue
            seen_names.add(descriptor.tool_name)
            tools.append(descriptor)

        cursor = page.get("nextCursor")
        if not cursor:
            break
        if cursor in seen_cursors:
            logger.warning(f"[{server}] tools/list repeated cursor {cursor!r}; stopping")
            break
        seen_cursors.add(cursor)
    else:
        logger.warning(f"[{server}] tools/list exceeded {MAX_PAGES} pages; stopping")

    logger.debug(f"[{server}] Discovered {len(tools)} tools")
    return tools


def split_reference(reference: str) -> tuple[str, str | None]:
    """Split ``@server/tool``, ``server/tool``, ``@server`` or ``server``."""
    ref = reference.strip()
    if ref.startswith("@"):
        ref = ref[1:]
    server, sep, tool = ref.partition("/")
    return server, (tool if sep else None)


class ToolRegistry:
    """
    Aggregate tool catalog across all servers.

    Catalogs are replaced whole: readers always see either the previous or
    the new catalog of a server, never a partial one.
    """

    def __init__(self) -> None:
        self._by_server: dict[str, tuple[ToolDescriptor, ...]] = {}
        self._snapshot: Mapping[str, ToolDescriptor] = MappingProxyType({})

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, qualified_name: str) -> bool:
        return qualified_name in self._snapshot

    @property
    def servers(self) -> list[str]:
        return sorted(self._by_server)

    def _rebuild(self) -> None:
        merged: dict[str, ToolDescriptor] = {}
        for server in sorted(self._by_server):
            for descriptor in self._by_server[server]:
                merged[descriptor.qualified_name] = descriptor
        self._snapshot = MappingProxyType(merged)

    def publish(self, server_name: str, descriptors: Iterable[ToolDescriptor]) -> None:
        """Replace a server's catalog."""
        catalog = tuple(sorted(descriptors, key=lambda d: d.tool_name))
        for descriptor in catalog:
            if descriptor.server_name != server_name:
                raise ValueError(
                    f"Descriptor {descriptor.qualified_name} published under '{server_name}'"
                )
        self._by_server[server_name] = catalog
        self._rebuild()
        logger.debug(f"[{server_name}] Published {len(catalog)} tools")

    def withdraw(self, server_name: str) -> bool:
        """Remove a server's catalog. Returns False if it had none."""
        if self._by_server.pop(server_name, None) is None:
            return False
        self._rebuild()
        logger.debug(f"[{server_name}] Withdrew tools")
        return True

    def list(self, server_name: str | None = None) -> list[ToolDescriptor]:
        """Descriptors ordered by server, then tool name."""
        if server_name is not None:
            return list(self._by_server.get(server_name, ()))
        return list(self._snapshot.values())

    def catalog(self) -> Mapping[str, ToolDescriptor]:
        """Read-only snapshot keyed by qualified name."""
        return self._snapshot

    def get(self, qualified_name: str) -> ToolDescriptor | None:
        return self._snapshot.get(qualified_name)

    def resolve(self, reference: str) -> ToolDescriptor:
        """
        Resolve a user reference to exactly one tool.

        Args:
            reference: ``server/tool`` or ``server`` with an optional leading @

        Raises:
            ToolNotFoundError: No tool matches
            AmbiguousToolError: A bare server reference names several tools
        """
        server, tool = split_reference(reference)
        if tool is not None:
            descriptor = self._snapshot.get(f"{server}/{tool}")
            if descriptor is None:
                raise ToolNotFoundError(f"Tool not found: {reference}", reference=reference)
            return descriptor

        candidates = self._by_server.get(server, ())
        if not candidates:
            raise ToolNotFoundError(f"No tools for server: {reference}", reference=reference)
        if len(candidates) > 1:
            raise AmbiguousToolError(reference, [d.reference for d in candidates])
        return candidates[0]

    def expand(self, reference: str) -> list[ToolDescriptor]:
        """All tools a reference covers: one for ``server/tool``, all of a server otherwise."""
        server, tool = split_reference(reference)
        if tool is not None:
            return [self.resolve(reference)]
        candidates = self._by_server.get(server, ())
        if not candidates:
            raise ToolNotFoundError(f"No tools for server: {reference}", reference=reference)
        return list(candidates)
