"""
Transport capability shared by all MCP transports.

A transport moves framed messages in and out of exactly one server
connection:

- connect(): open the channel (spawn the process, open the HTTP session)
- send(payload): write one framed message
- receive(): lazy, infinite, non-restartable sequence of inbound frames
- close(): release every resource; the instance cannot be reused

The connection state machine only depends on this capability, never on a
concrete variant.
"""

from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .config import ServerConfig

if TYPE_CHECKING:
    from ..subprocess_manager import SubprocessRegistry


@runtime_checkable
class Transport(Protocol):
    """Byte-level channel to one MCP server."""

    async def connect(self) -> None:
        ...

    async def send(self, payload: bytes) -> None:
        ...

    def receive(self) -> AsyncIterator[bytes]:
        ...

    async def close(self) -> None:
        ...


# Builds a fresh transport for a server; called once per (re)connect
TransportFactory = Callable[[ServerConfig], Transport]


def create_transport(
    config: ServerConfig, subprocesses: "SubprocessRegistry | None" = None
) -> Transport:
    """Create the transport variant that matches the server's configuration."""
    if config.is_remote():
        from .http import StreamableHttpTransport

        return StreamableHttpTransport(config)

    from .stdio import StdioTransport

    return StdioTransport(config, subprocesses=subprocesses)
