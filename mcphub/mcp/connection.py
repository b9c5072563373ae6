"""
Connection state machine for one MCP server.

    Disconnected --start--> Handshaking --initialize/initialized--> Ready
    Handshaking --timeout/error--> Closed            (initial handshake)
    Ready --transport error--> Degraded --reconnect--> Handshaking
    Handshaking --error during reconnect--> Degraded
    Degraded --attempts exhausted--> Closed
    any --shutdown--> Closed                          (terminal)

The connection owns one transport and one request correlator at a time.
Per connection there is one reader task (draining transport.receive()), one
timeout sweeper task, and, while degraded, one reconnect task.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .. import __version__
from ..exceptions import (
    ConnectionClosedError,
    DecodeError,
    FramingError,
    HandshakeFailure,
    McpHubError,
    NotReadyError,
    ProtocolViolation,
    RemoteError,
    RequestTimeoutError,
    TransportError,
)
from . import codec
from .codec import ErrorObject, Message, Notification, Request, Response
from .config import ServerConfig
from .correlator import RequestCorrelator
from .protocol import (
    LATEST_PROTOCOL_VERSION,
    METHOD_INITIALIZE,
    METHOD_INITIALIZED,
    METHOD_PING,
    METHOD_TOOLS_CALL,
    METHOD_TOOLS_LIST,
    NOTIFICATION_CANCELLED,
    NOTIFICATION_MESSAGE,
    NOTIFICATION_PROGRESS,
    NOTIFICATION_TOOLS_CHANGED,
    negotiate_protocol_version,
)
from .transport import Transport, TransportFactory, create_transport

logger = logging.getLogger(__name__)

# JSON-RPC "method not found"
METHOD_NOT_FOUND = -32601

CLIENT_INFO = {"name": "mcphub", "version": __version__}


class ConnectionState(str, Enum):
    """Lifecycle state of one server connection."""

    DISCONNECTED = "disconnected"
    HANDSHAKING = "handshaking"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.HANDSHAKING, ConnectionState.CLOSED}),
    ConnectionState.HANDSHAKING: frozenset(
        {ConnectionState.READY, ConnectionState.DEGRADED, ConnectionState.CLOSED}
    ),
    ConnectionState.READY: frozenset({ConnectionState.DEGRADED, ConnectionState.CLOSED}),
    ConnectionState.DEGRADED: frozenset({ConnectionState.HANDSHAKING, ConnectionState.CLOSED}),
    ConnectionState.CLOSED: frozenset(),
}


@dataclass(frozen=True)
class Session:
    """What was negotiated during one successful handshake."""

    protocol_version: str
    session_id: str | None = None
    server_name: str = ""
    server_version: str = ""
    capabilities: dict[str, Any] = field(default_factory=dict)
    instructions: str | None = None

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


# Listener signatures
StateListener = Callable[["ServerConnection", ConnectionState, ConnectionState], Any]
NotificationListener = Callable[["ServerConnection", Notification], Any]


class ServerConnection:
    """
    Drives one server through its lifecycle.

    Requests other than initialize are only accepted while Ready; earlier
    submissions are rejected with NotReadyError rather than queued.
    """

    def __init__(
        self,
        config: ServerConfig,
        transport_factory: TransportFactory | None = None,
        client_info: dict[str, str] | None = None,
    ) -> None:
        self.config = config
        self.name = config.name
        self._transport_factory = transport_factory or create_transport
        self._client_info = client_info or CLIENT_INFO

        self._state = ConnectionState.DISCONNECTED
        self._session: Session | None = None
        self._transport: Transport | None = None
        self._correlator: RequestCorrelator | None = None
        self._reader_task: asyncio.Task | None = None
        self._sweeper_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._closing = False

        self.last_error: BaseException | None = None
        self._state_listeners: list[StateListener] = []
        self._notification_listeners: list[NotificationListener] = []

    def __repr__(self) -> str:
        return f"ServerConnection(name={self.name!r}, state={self._state.value})"

    # ── observable state ──

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_ready(self) -> bool:
        return self._state == ConnectionState.READY

    @property
    def pending_requests(self) -> int:
        return len(self._correlator) if self._correlator else 0

    def add_state_listener(self, listener: StateListener) -> None:
        """Called synchronously as listener(connection, old, new) on every transition."""
        self._state_listeners.append(listener)

    def add_notification_listener(self, listener: NotificationListener) -> None:
        """Called synchronously for every notification the server sends."""
        self._notification_listeners.append(listener)

    def _transition(self, new: ConnectionState) -> None:
        old = self._state
        if old == new:
            return
        if new not in _TRANSITIONS[old]:
            raise ProtocolViolation(
                f"Illegal state transition {old.value} -> {new.value}", server=self.name
            )
        self._state = new
        logger.debug(f"[{self.name}] {old.value} -> {new.value}")
        for listener in list(self._state_listeners):
            try:
                listener(self, old, new)
            except Exception:
                logger.error(
                    f"[{self.name}] State listener {listener!r} failed", exc_info=True
                )

    # ── lifecycle ──

    async def start(self) -> Session:
        """
        Connect and perform the initialize handshake.

        Returns:
            The negotiated session

        Raises:
            HandshakeFailure: If the transport cannot be opened or the
                handshake fails; the connection is then Closed
        """
        if self._state != ConnectionState.DISCONNECTED:
            raise ProtocolViolation(
                f"start() called in state {self._state.value}", server=self.name
            )
        self._transition(ConnectionState.HANDSHAKING)
        try:
            return await self._establish()
        except HandshakeFailure as e:
            self.last_error = e
            await self._teardown(e)
            self._transition(ConnectionState.CLOSED)
            raise

    async def _establish(self) -> Session:
        """Open a fresh transport and handshake over it. State must be Handshaking."""
        transport = self._transport_factory(self.config)
        correlator = RequestCorrelator(self.name, default_timeout=self.config.timeout)
        self._transport = transport
        self._correlator = correlator
        self._session = None

        try:
            await transport.connect()
        except McpHubError as e:
            raise HandshakeFailure(f"Failed to connect: {e}", server=self.name) from e
        except OSError as e:
            raise HandshakeFailure(f"Failed to connect: {e}", server=self.name) from e

        self._reader_task = asyncio.create_task(
            self._read_loop(transport, correlator), name=f"mcp-reader-{self.name}"
        )
        self._sweeper_task = asyncio.create_task(
            correlator.run_sweeper(), name=f"mcp-sweeper-{self.name}"
        )

        params = {
            "protocolVersion": LATEST_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": self._client_info,
        }
        try:
            result = await self._call(
                METHOD_INITIALIZE, params, timeout=self.config.handshake_timeout
            )
        except RequestTimeoutError as e:
            raise HandshakeFailure(
                f"initialize timed out after {self.config.handshake_timeout}s", server=self.name
            ) from e
        except RemoteError as e:
            raise HandshakeFailure(f"initialize rejected: {e}", server=self.name) from e
        except McpHubError as e:
            raise HandshakeFailure(f"initialize failed: {e}", server=self.name) from e

        if not isinstance(result, dict):
            raise HandshakeFailure("initialize returned a non-object result", server=self.name)

        server_version = result.get("protocolVersion")
        negotiated = negotiate_protocol_version(server_version)
        if negotiated != server_version:
            logger.info(
                f"[{self.name}] Server reported protocol {server_version!r}, using {negotiated}"
            )
        server_info = result.get("serverInfo") or {}
        capabilities = result.get("capabilities") or {}
        session = Session(
            protocol_version=negotiated,
            session_id=getattr(transport, "session_id", None),
            server_name=str(server_info.get("name", "")) if isinstance(server_info, dict) else "",
            server_version=str(server_info.get("version", ""))
            if isinstance(server_info, dict)
            else "",
            capabilities=capabilities if isinstance(capabilities, dict) else {},
            instructions=result.get("instructions"),
        )

        try:
            await self._send(Notification(method=METHOD_INITIALIZED))
        except McpHubError as e:
            raise HandshakeFailure(f"initialized notification failed: {e}", server=self.name) from e

        self._session = session
        self._transition(ConnectionState.READY)
        logger.info(
            f"[{self.name}] Connected to {session.server_name or 'server'} "
            f"{session.server_version} (protocol {session.protocol_version})"
        )
        return session

    async def shutdown(self) -> None:
        """Close the connection for good, failing every pending request."""
        if self._state == ConnectionState.CLOSED:
            return
        self._closing = True
        if self._reconnect_task and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        await self._teardown(ConnectionClosedError("Connection shut down", server=self.name))
        if self._state != ConnectionState.CLOSED:
            self._transition(ConnectionState.CLOSED)
        logger.debug(f"[{self.name}] Shut down")

    async def _teardown(self, reason: BaseException) -> None:
        """Release the current transport and its tasks; fail what is pending."""
        if self._correlator is not None:
            self._correlator.fail_all(reason)

        current = asyncio.current_task()
        for task in (self._sweeper_task, self._reader_task):
            if task and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._sweeper_task = None
        self._reader_task = None

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await transport.close()
            except (McpHubError, OSError) as e:
                logger.debug(f"[{self.name}] Error closing transport: {e}")

    # ── failure and recovery ──

    def _on_transport_failure(self, error: BaseException) -> None:
        """Called from the reader task when the channel breaks."""
        if self._closing or self._state in (ConnectionState.CLOSED, ConnectionState.DEGRADED):
            return
        self.last_error = error
        if self._correlator is not None:
            self._correlator.fail_all(
                error if isinstance(error, TransportError)
                else TransportError(str(error), server=self.name)
            )
        if self._state == ConnectionState.HANDSHAKING:
            # The handshake in progress sees its initialize request fail
            return
        logger.warning(f"[{self.name}] Connection degraded: {error}")
        self._transition(ConnectionState.DEGRADED)
        self._reconnect_task = asyncio.create_task(
            self._reconnect(), name=f"mcp-reconnect-{self.name}"
        )

    async def _reconnect(self) -> None:
        policy = self.config.retry
        await self._teardown(TransportError("Connection lost", server=self.name))

        for attempt in range(1, policy.max_attempts + 1):
            delay = policy.delay_for(attempt)
            logger.info(
                f"[{self.name}] Reconnecting in {delay:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            await asyncio.sleep(delay)
            if self._closing:
                return

            self._transition(ConnectionState.HANDSHAKING)
            try:
                await self._establish()
                return
            except HandshakeFailure as e:
                self.last_error = e
                logger.warning(f"[{self.name}] Reconnect attempt {attempt} failed: {e}")
                await self._teardown(e)
                self._transition(ConnectionState.DEGRADED)

        logger.error(
            f"[{self.name}] Giving up after {policy.max_attempts} reconnect attempts"
        )
        self._transition(ConnectionState.CLOSED)

    # ── inbound ──

    async def _read_loop(self, transport: Transport, correlator: RequestCorrelator) -> None:
        try:
            async for frame in transport.receive():
                try:
                    messages = codec.decode_batch(frame)
                except DecodeError as e:
                    logger.warning(f"[{self.name}] Discarding undecodable message: {e}")
                    continue
                for message in messages:
                    await self._dispatch(message, correlator)
        except asyncio.CancelledError:
            raise
        except (FramingError, TransportError) as e:
            self._on_transport_failure(e)
            return
        except OSError as e:
            self._on_transport_failure(TransportError(str(e), server=self.name))
            return

        if not self._closing and transport is self._transport:
            self._on_transport_failure(
                TransportError("Server closed the message stream", server=self.name)
            )

    async def _dispatch(self, message: Message, correlator: RequestCorrelator) -> None:
        if isinstance(message, Response):
            correlator.resolve(message)
        elif isinstance(message, Notification):
            self._handle_notification(message)
        else:
            await self._handle_server_request(message)

    def _handle_notification(self, notification: Notification) -> None:
        method = notification.method
        params = notification.params if isinstance(notification.params, dict) else {}
        if method == NOTIFICATION_MESSAGE:
            level = str(params.get("level", "info")).upper()
            log_level = getattr(logging, level, logging.INFO)
            logger.log(log_level, f"[{self.name}] server: {params.get('data')}")
        elif method == NOTIFICATION_TOOLS_CHANGED:
            logger.debug(f"[{self.name}] Tool list changed")
        elif method in (NOTIFICATION_PROGRESS, NOTIFICATION_CANCELLED):
            logger.debug(f"[{self.name}] {method}: {params}")
        else:
            logger.debug(f"[{self.name}] Unhandled notification {method}")

        for listener in list(self._notification_listeners):
            try:
                listener(self, notification)
            except Exception:
                logger.error(
                    f"[{self.name}] Notification listener {listener!r} failed", exc_info=True
                )

    async def _handle_server_request(self, request: Request) -> None:
        if request.method == METHOD_PING:
            reply = Response(id=request.id, result={})
        else:
            logger.debug(f"[{self.name}] Rejecting server request {request.method}")
            reply = Response(
                id=request.id,
                error=ErrorObject(
                    code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}"
                ),
            )
        try:
            await self._send(reply)
        except McpHubError as e:
            logger.debug(f"[{self.name}] Could not answer {request.method}: {e}")

    # ── outbound ──

    async def _send(self, message: Message) -> None:
        transport = self._transport
        if transport is None:
            raise TransportError("Not connected", server=self.name)
        try:
            await transport.send(codec.encode(message))
        except FramingError as e:
            self._on_transport_failure(e)
            raise
        except TransportError as e:
            if e.fatal:
                self._on_transport_failure(e)
            raise

    async def _call(
        self, method: str, params: dict[str, Any] | None, timeout: float | None
    ) -> Any:
        correlator = self._correlator
        if correlator is None:
            raise TransportError("Not connected", server=self.name)

        handle = correlator.register(method=method, timeout=timeout)
        try:
            # An HTTP POST may carry the response itself, so the send is bounded too
            await asyncio.wait_for(
                self._send(Request(id=handle.id, method=method, params=params)),
                timeout=handle.timeout,
            )
        except asyncio.TimeoutError:
            # Settled below: by a response that raced the send, or by this timeout
            if not handle.done:
                correlator.fail(
                    handle.id,
                    RequestTimeoutError(
                        f"Request '{method}' timed out after {handle.timeout}s",
                        server=self.name,
                        request_id=handle.id,
                        method=method,
                    ),
                )
        except McpHubError as e:
            correlator.fail(handle.id, e)
            raise
        except asyncio.CancelledError:
            correlator.cancel(handle.id)
            raise

        response = await handle
        if response.error is not None:
            raise RemoteError(
                response.error.code, response.error.message, response.error.data, server=self.name
            )
        return response.result

    async def request(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        """
        Send a request and wait for its result.

        Raises:
            NotReadyError: If the connection is not Ready
            RequestTimeoutError: If no response arrives within the timeout
            RemoteError: If the server answers with an error
            TransportError: If the connection fails while waiting
        """
        if method == METHOD_INITIALIZE:
            raise ProtocolViolation("initialize is sent by start() only", server=self.name)
        if self._state != ConnectionState.READY:
            raise NotReadyError(
                f"Server '{self.name}' is not ready (state: {self._state.value})",
                server=self.name,
                state=self._state.value,
            )
        return await self._call(method, params, timeout if timeout is not None else self.config.timeout)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        if self._state != ConnectionState.READY:
            raise NotReadyError(
                f"Server '{self.name}' is not ready (state: {self._state.value})",
                server=self.name,
                state=self._state.value,
            )
        await self._send(Notification(method=method, params=params))

    async def ping(self, timeout: float | None = None) -> None:
        await self.request(METHOD_PING, timeout=timeout)

    async def list_tools(self, cursor: str | None = None) -> dict[str, Any]:
        """One page of tools/list; the raw result object."""
        params = {"cursor": cursor} if cursor else {}
        result = await self.request(METHOD_TOOLS_LIST, params)
        if not isinstance(result, dict):
            raise ProtocolViolation("tools/list returned a non-object result", server=self.name)
        return result

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        """Invoke a tool and return the server's result payload unchanged."""
        params = {"name": name, "arguments": arguments or {}}
        return await self.request(METHOD_TOOLS_CALL, params, timeout=timeout)
