"""
MCP Server Pool.

Owns one connection per configured server and supervises them independently:
a slow or failing server never delays catalog availability or dispatch for
the others.

Features:
- Non-blocking start; one supervisor task per server
- Handshake retry per server RetryPolicy
- Catalog refresh on (re)entering Ready and on tools/list_changed
- Catalog withdrawal when a server leaves Ready
- Scoped ownership of every subprocess and HTTP session
"""

import asyncio
import logging
from collections.abc import Coroutine, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..events import CatalogChanged, Event, EventBus, ServerStateChanged
from ..exceptions import (
    ConfigError,
    HandshakeFailure,
    McpHubError,
    ServerUnavailableError,
    ToolNotFoundError,
)
from ..subprocess_manager import SubprocessRegistry
from .codec import Notification
from .config import ServerConfig
from .connection import ConnectionState, ServerConnection
from .protocol import NOTIFICATION_TOOLS_CHANGED
from .registry import ToolDescriptor, ToolRegistry, discover, split_reference
from .transport import Transport, TransportFactory, create_transport

logger = logging.getLogger(__name__)


@dataclass
class ServerEntry:
    """Pool-side bookkeeping for one configured server."""

    config: ServerConfig
    connection: ServerConnection | None = None
    supervisor: asyncio.Task | None = None
    attempts: int = 0
    error: str | None = None
    settled: asyncio.Event = field(default_factory=asyncio.Event)
    refresh_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def state(self) -> ConnectionState:
        if not self.config.enabled:
            return ConnectionState.CLOSED
        if self.connection is None:
            return ConnectionState.DISCONNECTED
        return self.connection.state


class ServerPool:
    """
    Coordinates connections to many MCP servers.

    Usage:
        async with ServerPool(configs) as pool:
            await pool.wait_until_settled(10)
            result = await pool.invoke("fs/read_file", {"path": "README.md"})
    """

    def __init__(
        self,
        configs: Iterable[ServerConfig] | Mapping[str, ServerConfig] = (),
        transport_factory: TransportFactory | None = None,
        bus: EventBus | None = None,
        client_info: dict[str, str] | None = None,
    ) -> None:
        """
        Initialize the pool. No server is contacted until start().

        Args:
            configs: Server configurations, as a sequence or a name mapping
            transport_factory: Builds a transport per (re)connect; defaults to
                the stdio/HTTP variant matching each config
            bus: Event bus receiving server_state and catalog_changed events
            client_info: clientInfo sent in the initialize request
        """
        if isinstance(configs, Mapping):
            configs = configs.values()
        self.registry = ToolRegistry()
        self.bus = bus or EventBus()
        self.subprocesses = SubprocessRegistry()
        self._transport_factory = transport_factory
        self._client_info = client_info
        self._servers: dict[str, ServerEntry] = {}
        self._tasks: set[asyncio.Task] = set()
        self._started = False
        self._closed = False

        for config in configs:
            if config.name in self._servers:
                raise ConfigError(f"Duplicate server name: {config.name}", server=config.name)
            self._servers[config.name] = ServerEntry(config=config)

    async def __aenter__(self) -> "ServerPool":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # ── lifecycle ──

    def start(self) -> None:
        """Begin connecting every enabled server; returns immediately."""
        if self._closed:
            raise McpHubError("Server pool has been shut down")
        if self._started:
            return
        self._started = True
        for entry in self._servers.values():
            self._launch(entry)
        logger.info(f"Server pool starting {len(self._servers)} server(s)")

    def _launch(self, entry: ServerEntry) -> None:
        if not entry.config.enabled:
            logger.debug(f"[{entry.name}] Disabled; not starting")
            entry.settled.set()
            return
        entry.supervisor = asyncio.create_task(
            self._supervise(entry), name=f"mcp-supervisor-{entry.name}"
        )

    def _create_transport(self, config: ServerConfig) -> Transport:
        if self._transport_factory is not None:
            return self._transport_factory(config)
        return create_transport(config, self.subprocesses)

    async def _supervise(self, entry: ServerEntry) -> None:
        """Bring one server to Ready, retrying the handshake per its policy."""
        policy = entry.config.retry
        try:
            for attempt in range(1, policy.max_attempts + 1):
                entry.attempts = attempt
                connection = ServerConnection(
                    entry.config,
                    transport_factory=self._create_transport,
                    client_info=self._client_info,
                )
                connection.add_state_listener(self._on_state_change)
                connection.add_notification_listener(self._on_notification)
                entry.connection = connection
                try:
                    await connection.start()
                except HandshakeFailure as e:
                    entry.error = str(e)
                    if attempt >= policy.max_attempts:
                        logger.error(
                            f"[{entry.name}] Handshake failed after {attempt} attempt(s): {e}"
                        )
                        return
                    delay = policy.delay_for(attempt)
                    logger.warning(
                        f"[{entry.name}] Handshake failed ({e}); retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue

                entry.error = None
                await self._refresh_catalog(entry, connection)
                return
        finally:
            entry.settled.set()

    def _entry_for(self, connection: ServerConnection) -> ServerEntry | None:
        entry = self._servers.get(connection.name)
        if entry is None or entry.connection is not connection:
            return None
        return entry

    def _on_state_change(
        self, connection: ServerConnection, old: ConnectionState, new: ConnectionState
    ) -> None:
        entry = self._entry_for(connection)
        if entry is None:
            return

        if new in (ConnectionState.DEGRADED, ConnectionState.CLOSED):
            if connection.last_error is not None:
                entry.error = str(connection.last_error)
            if self.registry.withdraw(entry.name):
                self._emit(CatalogChanged(server=entry.name, tools=0))
        elif new == ConnectionState.READY and entry.settled.is_set():
            # Back from a reconnect; the supervisor handles the first Ready
            entry.error = None
            self._spawn(self._refresh_catalog(entry, connection), f"mcp-refresh-{entry.name}")

        self._emit(
            ServerStateChanged(server=entry.name, old=old.value, new=new.value, error=entry.error)
        )

    def _on_notification(self, connection: ServerConnection, notification: Notification) -> None:
        if notification.method != NOTIFICATION_TOOLS_CHANGED:
            return
        entry = self._entry_for(connection)
        if entry is not None and connection.is_ready:
            self._spawn(self._refresh_catalog(entry, connection), f"mcp-refresh-{entry.name}")

    async def _refresh_catalog(self, entry: ServerEntry, connection: ServerConnection) -> None:
        async with entry.refresh_lock:
            if entry.connection is not connection or not connection.is_ready:
                return
            try:
                tools = await discover(connection)
            except McpHubError as e:
                logger.warning(f"[{entry.name}] Tool discovery failed: {e}")
                entry.error = str(e)
                return
            except Exception as e:
                logger.exception(f"[{entry.name}] Unexpected error during tool discovery")
                entry.error = f"Tool discovery failed: {e}"
                return
            # The connection may have degraded while discovery was in flight
            if entry.connection is not connection or not connection.is_ready:
                return
            self.registry.publish(entry.name, tools)
        logger.info(f"[{entry.name}] {len(tools)} tool(s) available")
        self._emit(CatalogChanged(server=entry.name, tools=len(tools)))

    def _emit(self, event: Event) -> None:
        if self._closed and isinstance(event, CatalogChanged):
            return
        if not self.bus.has_subscribers(event.event_type):
            return
        self._spawn(self.bus.publish(event), f"mcp-event-{event.event_type}")

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_until_settled(self, timeout: float | None = None) -> bool:
        """
        Wait until every server has either reached Ready or given up.

        Returns:
            False if the timeout elapsed first
        """
        waits = [entry.settled.wait() for entry in self._servers.values()]
        if not waits:
            return True
        try:
            await asyncio.wait_for(asyncio.gather(*waits), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def shutdown(self) -> None:
        """Close every connection and release subprocesses and sockets."""
        if self._closed:
            return
        self._closed = True
        entries = list(self._servers.values())
        await asyncio.gather(*(self._stop(entry) for entry in entries), return_exceptions=True)
        for entry in entries:
            self.registry.withdraw(entry.name)

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.subprocesses.cleanup_all()
        logger.info("Server pool shut down")

    async def _stop(self, entry: ServerEntry) -> None:
        supervisor = entry.supervisor
        if supervisor and not supervisor.done():
            supervisor.cancel()
            try:
                await supervisor
            except asyncio.CancelledError:
                pass
        if entry.connection is not None:
            await entry.connection.shutdown()
        entry.settled.set()

    # ── configuration at runtime ──

    async def add_server(self, config: ServerConfig) -> None:
        """Add a server; it is started right away if the pool is running."""
        if self._closed:
            raise McpHubError("Server pool has been shut down")
        if config.name in self._servers:
            raise ConfigError(f"Server already exists: {config.name}", server=config.name)
        entry = ServerEntry(config=config)
        self._servers[config.name] = entry
        logger.debug(f"Added MCP server: {config.name}")
        if self._started:
            self._launch(entry)

    async def remove_server(self, name: str) -> bool:
        """Shut a server down and forget it. Returns False if unknown."""
        entry = self._servers.get(name)
        if entry is None:
            return False
        await self._stop(entry)
        del self._servers[name]
        if self.registry.withdraw(name):
            self._emit(CatalogChanged(server=name, tools=0))
        logger.debug(f"Removed MCP server: {name}")
        return True

    # ── queries ──

    @property
    def server_names(self) -> list[str]:
        return list(self._servers)

    def connection(self, name: str) -> ServerConnection | None:
        entry = self._servers.get(name)
        return entry.connection if entry else None

    def catalog(self) -> Mapping[str, ToolDescriptor]:
        """Snapshot of every tool on a Ready server, keyed by qualified name."""
        return self.registry.catalog()

    def tools(self, server_name: str | None = None) -> list[ToolDescriptor]:
        return self.registry.list(server_name)

    def status(self) -> dict[str, dict[str, Any]]:
        """
        Get status of all servers.

        Returns:
            Dictionary mapping server name to status info
        """
        status = {}
        for name, entry in self._servers.items():
            connection = entry.connection
            session = connection.session if connection else None
            status[name] = {
                "state": entry.state.value,
                "transport": entry.config.transport,
                "tools": len(self.registry.list(name)),
                "attempts": entry.attempts,
                "protocol_version": session.protocol_version if session else None,
                "error": entry.error,
            }
        return status

    # ── dispatch ──

    async def invoke(
        self,
        reference: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Invoke a tool by reference and return the server's result payload.

        Args:
            reference: ``server/tool`` (optionally ``@``-prefixed), or a bare
                server name when that server has exactly one tool
            arguments: Tool arguments
            timeout: Seconds to wait; the server's configured timeout if None

        Raises:
            ToolNotFoundError: No such tool
            AmbiguousToolError: A bare server reference with several tools
            ServerUnavailableError: The owning server is not Ready
            RequestTimeoutError: No response in time
            RemoteError: The server answered with a JSON-RPC error
            TransportError: The connection failed while waiting
        """
        try:
            descriptor = self.registry.resolve(reference)
        except ToolNotFoundError as e:
            server_name, _ = split_reference(reference)
            entry = self._servers.get(server_name)
            if entry is not None and entry.state != ConnectionState.READY:
                raise ServerUnavailableError(
                    f"Server '{server_name}' is not available (state: {entry.state.value})",
                    server=server_name,
                    state=entry.state.value,
                ) from e
            raise

        entry = self._servers.get(descriptor.server_name)
        connection = entry.connection if entry else None
        if connection is None or not connection.is_ready:
            state = connection.state.value if connection else "disconnected"
            raise ServerUnavailableError(
                f"Server '{descriptor.server_name}' is not available (state: {state})",
                server=descriptor.server_name,
                state=state,
            )
        logger.debug(f"Invoking {descriptor.reference}")
        return await connection.call_tool(descriptor.tool_name, arguments, timeout=timeout)
