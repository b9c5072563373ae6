"""Pytest configuration for all mcphub tests.

Ensures the project root is on sys.path and provides an in-memory MCP server
that the connection, registry and pool tests talk to through a fake
transport.
"""

import asyncio
import json
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path
_root = Path(__file__).resolve().parents[1]
if _root not in [Path(p) for p in sys.path]:
    sys.path.insert(0, str(_root))

from mcphub.exceptions import TransportError  # noqa: E402
from mcphub.mcp.config import RetryPolicy, ServerConfig  # noqa: E402

FIXTURES = Path(__file__).resolve().parent / "fixtures"

FAST_RETRY = RetryPolicy(max_attempts=2, initial_delay=0.01, max_delay=0.02)


def echo_tool(name="echo"):
    return {
        "name": name,
        "description": f"{name} the input back",
        "inputSchema": {"type": "object", "properties": {"text": {"type": "string"}}},
    }


class FakeTransport:
    """In-memory transport wired to a FakeServer."""

    def __init__(self, server: "FakeServer") -> None:
        self.server = server
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        if self.server.fail_connect:
            raise TransportError("connection refused")
        self.connected = True

    async def send(self, payload: bytes) -> None:
        if self.closed:
            raise TransportError("transport closed")
        assert b"\n" not in payload
        message = json.loads(payload)
        self.server.received.append(message)
        self.server.handle(self, message)

    async def receive(self):
        while True:
            item = await self.inbound.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True
        self.inbound.put_nowait(None)

    def push(self, message) -> None:
        self.inbound.put_nowait(json.dumps(message).encode())

    def push_raw(self, data: bytes) -> None:
        self.inbound.put_nowait(data)

    def break_connection(self, error: BaseException | None = None) -> None:
        self.inbound.put_nowait(error or TransportError("connection reset"))


class FakeServer:
    """
    Scripted MCP server.

    handlers maps a method to a callable taking params and returning either
    {"result": ...}, {"error": {...}}, or None to never answer.
    """

    def __init__(self, tools=None, protocol_version="2025-06-18", handlers=None) -> None:
        self.tools = [echo_tool()] if tools is None else tools
        self.protocol_version = protocol_version
        self.handlers = dict(handlers or {})
        self.received: list[dict] = []
        self.transports: list[FakeTransport] = []
        self.fail_connect = False

    def factory(self, config) -> FakeTransport:
        transport = FakeTransport(self)
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]

    @property
    def methods(self) -> list[str]:
        return [m["method"] for m in self.received if "method" in m]

    def _default(self, method, params):
        if method == "initialize":
            result = {
                "capabilities": {"tools": {"listChanged": True}},
                "serverInfo": {"name": "fake", "version": "1.0"},
            }
            if self.protocol_version is not None:
                result["protocolVersion"] = self.protocol_version
            return {"result": result}
        if method == "tools/list":
            return {"result": {"tools": self.tools}}
        if method == "tools/call":
            arguments = params.get("arguments", {})
            return {"result": {"content": [{"type": "text", "text": json.dumps(arguments)}]}}
        if method == "ping":
            return {"result": {}}
        return {"error": {"code": -32601, "message": f"Method not found: {method}"}}

    def handle(self, transport: FakeTransport, message: dict) -> None:
        method = message.get("method")
        if method is None or "id" not in message:
            return
        params = message.get("params") or {}
        if method in self.handlers:
            reply = self.handlers[method](params)
        else:
            reply = self._default(method, params)
        if reply is None:
            return
        transport.push({"jsonrpc": "2.0", "id": message["id"], **reply})


def make_config(name="fake", **overrides) -> ServerConfig:
    settings = {
        "name": name,
        "command": "fake-server",
        "timeout": 2.0,
        "handshake_timeout": 0.5,
        "retry": FAST_RETRY,
    }
    settings.update(overrides)
    return ServerConfig(**settings)


@pytest.fixture
def fake_server():
    """A FakeServer exporting a single echo tool."""
    return FakeServer()


@pytest.fixture
def server_config():
    """Factory for fast-failing stdio-style server configs."""
    return make_config


@pytest.fixture
def server_factory():
    """Factory for FakeServer instances."""
    return FakeServer


@pytest.fixture
def echo_server_config():
    """Config that runs tests/fixtures/echo_server.py over stdio."""

    def _make(name="serverX", **overrides):
        overrides.setdefault("handshake_timeout", 10.0)
        overrides.setdefault("timeout", 10.0)
        return make_config(
            name,
            command=sys.executable,
            args=(str(FIXTURES / "echo_server.py"), *overrides.pop("extra_args", ())),
            **overrides,
        )

    return _make


@pytest.fixture
def tool_factory():
    """Factory for well-formed tool descriptors as a server sends them."""
    return echo_tool
