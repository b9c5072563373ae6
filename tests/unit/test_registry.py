"""Tests for the namespaced tool registry and tool discovery."""

import pytest

from mcphub.exceptions import AmbiguousToolError, RemoteError, ToolNotFoundError
from mcphub.mcp.registry import ToolDescriptor, ToolRegistry, discover, parse_tool, split_reference


def descriptor(server, tool):
    return ToolDescriptor(
        server_name=server,
        tool_name=tool,
        description=f"{tool} on {server}",
        input_schema={"type": "object"},
    )


class FakeListingConnection:
    """Serves tools/list pages from a dict keyed by cursor."""

    def __init__(self, pages, name="srv", error=None):
        self.name = name
        self.pages = pages
        self.error = error
        self.cursors = []

    async def list_tools(self, cursor=None):
        self.cursors.append(cursor)
        if self.error is not None:
            raise self.error
        return self.pages[cursor]


class TestToolDescriptor:
    """Test descriptor naming."""

    def test_names(self):
        """Test qualified name and display reference."""
        tool = descriptor("fs", "read")
        assert tool.qualified_name == "fs/read"
        assert tool.reference == "@fs/read"
        assert tool.to_dict()["qualified_name"] == "fs/read"


class TestParseTool:
    """Test descriptor shape validation."""

    def test_valid(self, tool_factory):
        """Test a well-formed descriptor keeps its schema verbatim."""
        raw = tool_factory("echo")
        raw["title"] = "Echo"
        tool = parse_tool("s", raw)
        assert tool.tool_name == "echo"
        assert tool.title == "Echo"
        assert tool.input_schema == raw["inputSchema"]

    @pytest.mark.parametrize(
        "raw",
        [
            {"description": "no name", "inputSchema": {"type": "object"}},
            {"name": "no_schema"},
            {"name": "array_schema", "inputSchema": {"type": "array"}},
            {"name": "bad/name", "inputSchema": {"type": "object"}},
            "not an object",
        ],
    )
    def test_malformed_dropped(self, raw):
        """Test malformed descriptors are dropped."""
        assert parse_tool("s", raw) is None

    def test_reads_wire_field_names(self):
        """Test descriptor fields come from the wire names, extras ignored."""
        raw = {
            "name": "search",
            "title": "Search",
            "description": "Full text search",
            "inputSchema": {"type": "object", "properties": {"q": {"type": "string"}}},
            "annotations": {"readOnlyHint": True},
            "x-vendor": 1,
        }
        tool = parse_tool("s", raw)
        assert tool.tool_name == "search"
        assert tool.title == "Search"
        assert tool.description == "Full text search"
        assert tool.input_schema["properties"]["q"] == {"type": "string"}

    def test_optional_fields_default(self):
        """Test a descriptor without description or title."""
        tool = parse_tool("s", {"name": "bare", "inputSchema": {"type": "object"}})
        assert tool.description == ""
        assert tool.title is None


class TestDiscover:
    """Test paginated discovery."""

    @pytest.mark.asyncio
    async def test_pagination(self, tool_factory):
        """Test discovery follows nextCursor across pages."""
        connection = FakeListingConnection(
            {
                None: {"tools": [tool_factory("a")], "nextCursor": "p2"},
                "p2": {"tools": [tool_factory("b")]},
            }
        )
        tools = await discover(connection)
        assert [t.tool_name for t in tools] == ["a", "b"]
        assert connection.cursors == [None, "p2"]

    @pytest.mark.asyncio
    async def test_repeated_cursor_stops(self, tool_factory):
        """Test a cursor loop ends discovery instead of spinning."""
        connection = FakeListingConnection(
            {
                None: {"tools": [tool_factory("a")], "nextCursor": "loop"},
                "loop": {"tools": [], "nextCursor": "loop"},
            }
        )
        tools = await discover(connection)
        assert [t.tool_name for t in tools] == ["a"]
        assert connection.cursors == [None, "loop"]

    @pytest.mark.asyncio
    async def test_malformed_and_duplicate_dropped(self, tool_factory):
        """Test one bad descriptor does not abort discovery of the rest."""
        connection = FakeListingConnection(
            {
                None: {
                    "tools": [
                        tool_factory("a"),
                        {"name": "broken", "inputSchema": "nope"},
                        tool_factory("a"),
                        tool_factory("b"),
                    ]
                }
            }
        )
        tools = await discover(connection)
        assert [t.tool_name for t in tools] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_method_not_found_is_empty(self):
        """Test a server without tools/list has an empty catalog."""
        connection = FakeListingConnection({}, error=RemoteError(-32601, "Method not found"))
        assert await discover(connection) == []

    @pytest.mark.asyncio
    async def test_other_remote_errors_propagate(self):
        """Test other JSON-RPC errors are not swallowed."""
        connection = FakeListingConnection({}, error=RemoteError(-32603, "Internal error"))
        with pytest.raises(RemoteError):
            await discover(connection)


class TestToolRegistry:
    """Test catalog aggregation and resolution."""

    def test_namespace_integrity(self):
        """Test same-named tools on two servers stay distinct."""
        registry = ToolRegistry()
        registry.publish("serverA", [descriptor("serverA", "search")])
        registry.publish("serverB", [descriptor("serverB", "search")])

        assert set(registry.catalog()) == {"serverA/search", "serverB/search"}
        resolved = registry.resolve("serverA/search")
        assert resolved.server_name == "serverA"

    def test_list_is_ordered(self):
        """Test list() orders by server, then tool name."""
        registry = ToolRegistry()
        registry.publish("b", [descriptor("b", "z"), descriptor("b", "a")])
        registry.publish("a", [descriptor("a", "m")])
        assert [t.qualified_name for t in registry.list()] == ["a/m", "b/a", "b/z"]

    def test_publish_replaces_atomically(self):
        """Test an old snapshot is unaffected by a later publish."""
        registry = ToolRegistry()
        registry.publish("s", [descriptor("s", "old")])
        snapshot = registry.catalog()

        registry.publish("s", [descriptor("s", "new")])

        assert list(snapshot) == ["s/old"]
        assert list(registry.catalog()) == ["s/new"]

    def test_snapshot_is_read_only(self):
        """Test the catalog cannot be mutated by readers."""
        registry = ToolRegistry()
        registry.publish("s", [descriptor("s", "t")])
        with pytest.raises(TypeError):
            registry.catalog()["s/x"] = descriptor("s", "x")

    def test_withdraw(self):
        """Test withdrawing removes exactly one server's tools."""
        registry = ToolRegistry()
        registry.publish("a", [descriptor("a", "t")])
        registry.publish("b", [descriptor("b", "t")])

        assert registry.withdraw("a")
        assert not registry.withdraw("a")
        assert list(registry.catalog()) == ["b/t"]

    def test_publish_rejects_foreign_descriptor(self):
        """Test a descriptor cannot be published under another server."""
        registry = ToolRegistry()
        with pytest.raises(ValueError):
            registry.publish("a", [descriptor("b", "t")])

    def test_resolve_forms(self):
        """Test @-prefixed and bare server references."""
        registry = ToolRegistry()
        registry.publish("solo", [descriptor("solo", "only")])
        assert registry.resolve("@solo/only").tool_name == "only"
        assert registry.resolve("solo").tool_name == "only"
        assert registry.resolve("@solo").tool_name == "only"

    def test_resolve_ambiguous(self):
        """Test a bare server reference with several tools is ambiguous."""
        registry = ToolRegistry()
        registry.publish("fs", [descriptor("fs", "read"), descriptor("fs", "write")])
        with pytest.raises(AmbiguousToolError) as exc_info:
            registry.resolve("@fs")
        assert exc_info.value.candidates == ["@fs/read", "@fs/write"]

    def test_resolve_not_found(self):
        """Test unknown tools and servers raise ToolNotFoundError."""
        registry = ToolRegistry()
        registry.publish("fs", [descriptor("fs", "read")])
        with pytest.raises(ToolNotFoundError):
            registry.resolve("fs/delete")
        with pytest.raises(ToolNotFoundError):
            registry.resolve("web")

    def test_expand(self):
        """Test expand returns every tool of a server."""
        registry = ToolRegistry()
        registry.publish("fs", [descriptor("fs", "read"), descriptor("fs", "write")])
        assert [t.tool_name for t in registry.expand("@fs")] == ["read", "write"]
        assert [t.tool_name for t in registry.expand("fs/read")] == ["read"]

    def test_split_reference(self):
        """Test reference parsing."""
        assert split_reference("@a/b") == ("a", "b")
        assert split_reference("a") == ("a", None)
        assert split_reference("a/b/c") == ("a", "b/c")
