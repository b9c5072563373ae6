"""
Streamable HTTP transport.

One endpoint serves three verbs:
- POST carries every outgoing message; the reply is empty (202), a JSON
  body, or an event stream that ends once the response has been sent
- GET opens an event stream for server-initiated messages
- DELETE terminates the session

Every request carries the MCP-Protocol-Version header and, once the server
has issued one, the Mcp-Session-Id header. Interrupted event streams are
resumed with Last-Event-ID so that no event is lost or delivered twice.
"""

import asyncio
import json
import logging
from collections import deque
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from ..exceptions import HttpStatusError, SessionExpiredError, TransportError
from .config import ServerConfig
from .protocol import (
    DEFAULT_PROTOCOL_VERSION,
    HEADER_LAST_EVENT_ID,
    HEADER_PROTOCOL_VERSION,
    HEADER_SESSION_ID,
    LATEST_PROTOCOL_VERSION,
    METHOD_INITIALIZE,
    METHOD_INITIALIZED,
    negotiate_protocol_version,
)
from .sse import SSEDecoder, SSEEvent

logger = logging.getLogger(__name__)

_MAX_ERROR_BODY = 512
_SEEN_EVENT_IDS = 4096
_INBOUND_QUEUE_SIZE = 256

# Sentinel placed in the inbound queue by close()
_CLOSED = object()


class StreamableHttpTransport:
    """
    Transport over MCP Streamable HTTP using aiohttp.

    Inbound frames from POST responses and from event streams are funneled
    into one bounded queue that receive() drains, so a slow consumer
    throttles the stream readers.
    """

    def __init__(self, config: ServerConfig, session: aiohttp.ClientSession | None = None) -> None:
        if not config.url:
            raise TransportError("HTTP transport requires a url", server=config.name)
        self.config = config
        self.url = config.url
        self._http = session
        self._owns_session = session is None
        self._inbound: asyncio.Queue[Any] = asyncio.Queue(maxsize=_INBOUND_QUEUE_SIZE)
        self._tasks: set[asyncio.Task] = set()
        self._standalone_started = False
        self._receiving = False
        self._connected = False
        self._closed = False

        # Handshake observations
        self._initialize_id: Any = None
        self._requested_version = LATEST_PROTOCOL_VERSION
        self.protocol_version: str | None = None
        self.session_id: str | None = None

        # Resume bookkeeping
        self._seen_event_ids: set[str] = set()
        self._seen_order: deque[str] = deque()
        self.last_event_id: str | None = None

    # ── lifecycle ──

    async def connect(self) -> None:
        if self._closed:
            raise TransportError(
                "Transport is closed; create a new instance", server=self.config.name
            )
        if self._connected:
            return
        if self._http is None:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=None, sock_connect=self.config.handshake_timeout
                )
            )
        self._connected = True
        logger.debug(f"[{self.config.name}] HTTP transport ready for {self.url}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._http is not None:
            if self.session_id and self._connected:
                try:
                    async with self._http.delete(
                        self.url,
                        headers=self._base_headers(),
                        timeout=aiohttp.ClientTimeout(total=5),
                    ) as resp:
                        logger.debug(
                            f"[{self.config.name}] Session terminated (HTTP {resp.status})"
                        )
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.debug(f"[{self.config.name}] Session DELETE failed: {e}")
            if self._owns_session:
                await self._http.close()

        # Unblock the consumer; pending frames are irrelevant after close
        while not self._inbound.empty():
            self._inbound.get_nowait()
        self._inbound.put_nowait(_CLOSED)

    # ── outgoing ──

    def _base_headers(self) -> dict[str, str]:
        headers = self.config.resolved_headers()
        headers[HEADER_PROTOCOL_VERSION] = self.protocol_version or self._requested_version
        if self.session_id:
            headers[HEADER_SESSION_ID] = self.session_id
        return headers

    def _observe_outgoing(self, payload: bytes) -> str | None:
        """Note handshake messages; returns the method of the payload, if any."""
        try:
            message = json.loads(payload)
        except ValueError:
            return None
        if not isinstance(message, dict):
            return None
        method = message.get("method")
        if method == METHOD_INITIALIZE and "id" in message:
            self._initialize_id = message["id"]
            params = message.get("params") or {}
            requested = params.get("protocolVersion") if isinstance(params, dict) else None
            if isinstance(requested, str) and requested:
                self._requested_version = requested
            # A fresh handshake renegotiates everything
            self.protocol_version = None
        return method if isinstance(method, str) else None

    async def send(self, payload: bytes) -> None:
        if self._closed or not self._connected or self._http is None:
            raise TransportError("HTTP transport not connected", server=self.config.name)

        method = self._observe_outgoing(payload)
        headers = self._base_headers()
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "application/json, text/event-stream"

        try:
            response = await self._http.post(
                self.url,
                data=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(
                    total=None,
                    sock_connect=self.config.handshake_timeout,
                    sock_read=self.config.timeout,
                ),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"POST to {self.url} failed: {e}", server=self.config.name
            ) from e

        new_session_id = response.headers.get(HEADER_SESSION_ID)
        if new_session_id and new_session_id != self.session_id:
            self.session_id = new_session_id
            logger.debug(f"[{self.config.name}] Session id issued: {new_session_id}")

        if response.status >= 400:
            body = await self._read_error_body(response)
            if response.status == 404 and self.session_id and method != METHOD_INITIALIZE:
                raise SessionExpiredError(
                    "HTTP session expired", server=self.config.name, status_code=404
                )
            raise HttpStatusError(response.status, body, server=self.config.name)

        content_type = response.headers.get("Content-Type", "")
        if response.status == 202 or response.content_length == 0:
            response.release()
        elif content_type.startswith("text/event-stream"):
            self._spawn(self._stream_loop(response, standalone=False), "post-stream")
        elif "json" in content_type:
            try:
                body = await response.read()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise TransportError(
                    f"Failed to read response body: {e}", server=self.config.name
                ) from e
            finally:
                response.release()
            if body.strip():
                await self._deliver(body)
        else:
            response.release()
            logger.warning(
                f"[{self.config.name}] Ignoring response with content type '{content_type}'"
            )

        if method == METHOD_INITIALIZED and not self._standalone_started:
            self._standalone_started = True
            self._spawn(self._stream_loop(None, standalone=True), "get-stream")

    async def _read_error_body(self, response: aiohttp.ClientResponse) -> str:
        try:
            text = await response.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError):
            text = ""
        finally:
            response.release()
        if len(text) > _MAX_ERROR_BODY:
            text = text[:_MAX_ERROR_BODY] + "..."
        return text

    # ── incoming ──

    async def receive(self) -> AsyncIterator[bytes]:
        if self._receiving:
            raise TransportError("receive() can only be consumed once", server=self.config.name)
        self._receiving = True
        while True:
            item = await self._inbound.get()
            if item is _CLOSED:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    def _observe_inbound(self, frame: bytes) -> None:
        if self._initialize_id is None or self.protocol_version is not None:
            return
        try:
            decoded = json.loads(frame)
        except ValueError:
            return
        for message in decoded if isinstance(decoded, list) else [decoded]:
            if not isinstance(message, dict) or message.get("id") != self._initialize_id:
                continue
            result = message.get("result")
            if isinstance(result, dict):
                server_version = result.get("protocolVersion")
                if not server_version:
                    logger.debug(
                        f"[{self.config.name}] Server omitted protocolVersion, "
                        f"assuming {DEFAULT_PROTOCOL_VERSION}"
                    )
                self.protocol_version = negotiate_protocol_version(
                    server_version, self._requested_version
                )

    async def _deliver(self, frame: bytes) -> None:
        self._observe_inbound(frame)
        await self._inbound.put(frame)

    def _fail(self, error: TransportError) -> None:
        if self._closed:
            return
        logger.warning(f"[{self.config.name}] {error}")
        try:
            self._inbound.put_nowait(error)
        except asyncio.QueueFull:
            self._spawn(self._inbound.put(error), "fail")

    def _spawn(self, coro, label: str) -> None:
        task = asyncio.create_task(coro, name=f"mcp-http-{label}-{self.config.name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ── event streams ──

    def _already_delivered(self, event_id: str, stream_last_id: str | None) -> bool:
        if event_id in self._seen_event_ids:
            return True
        if stream_last_id is not None and event_id.isdigit() and stream_last_id.isdigit():
            return int(event_id) <= int(stream_last_id)
        return False

    def _remember(self, event_id: str) -> None:
        self._seen_event_ids.add(event_id)
        self._seen_order.append(event_id)
        if len(self._seen_order) > _SEEN_EVENT_IDS:
            self._seen_event_ids.discard(self._seen_order.popleft())

    async def _open_get_stream(self, last_event_id: str | None) -> aiohttp.ClientResponse:
        assert self._http is not None
        headers = self._base_headers()
        headers["Accept"] = "text/event-stream"
        if last_event_id is not None:
            headers[HEADER_LAST_EVENT_ID] = last_event_id
        response = await self._http.get(
            self.url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(
                total=None, sock_connect=self.config.handshake_timeout, sock_read=None
            ),
        )
        if response.status >= 400:
            body = await self._read_error_body(response)
            if response.status == 404 and self.session_id:
                raise SessionExpiredError(
                    "HTTP session expired", server=self.config.name, status_code=404
                )
            raise HttpStatusError(response.status, body, server=self.config.name)
        if not response.headers.get("Content-Type", "").startswith("text/event-stream"):
            response.release()
            raise HttpStatusError(
                response.status, "GET did not return an event stream", server=self.config.name
            )
        return response

    async def _consume(self, response: aiohttp.ClientResponse, cursor: "_StreamCursor") -> None:
        """
        Read events until the stream ends.

        The cursor is updated as events are consumed, so it stays accurate
        when the stream is interrupted by aiohttp.ClientError or
        asyncio.TimeoutError.
        """
        decoder = SSEDecoder()
        async for chunk in response.content.iter_any():
            for event in decoder.feed(chunk):
                if event.retry is not None:
                    cursor.retry_ms = event.retry
                if event.id is not None:
                    if self._already_delivered(event.id, cursor.last_id):
                        logger.debug(f"[{self.config.name}] Skipping replayed event {event.id}")
                        continue
                    self._remember(event.id)
                    cursor.last_id = event.id
                    self.last_event_id = event.id
                if await self._handle_event(event):
                    cursor.delivered += 1

    async def _handle_event(self, event: SSEEvent) -> bool:
        if event.event != "message":
            logger.debug(f"[{self.config.name}] Ignoring SSE event type '{event.event}'")
            return False
        if not event.data.strip():
            # Priming events carry only an id
            return False
        await self._deliver(event.data.encode("utf-8"))
        return True

    async def _stream_loop(
        self, response: aiohttp.ClientResponse | None, standalone: bool
    ) -> None:
        """
        Drive one logical event stream, resuming it after interruptions.

        A POST stream ends normally once the server has sent its response;
        the standalone GET stream is reopened whenever the server closes it
        after delivering something.
        """
        cursor = _StreamCursor()
        failures = 0

        while not self._closed:
            if response is None:
                failure: Exception | None = None
                try:
                    response = await self._open_get_stream(cursor.last_id)
                except SessionExpiredError as e:
                    self._fail(e)
                    return
                except HttpStatusError as e:
                    if e.status_code == 405 and standalone and cursor.last_id is None:
                        logger.debug(f"[{self.config.name}] Server offers no GET event stream")
                        return
                    if not e.fatal and e.status_code != 405:
                        self._fail(e)
                        return
                    failure = e
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    failure = e
                if response is None:
                    failures += 1
                    if failures > self.config.max_resume_attempts:
                        self._fail(
                            TransportError(
                                f"Event stream lost after {failures - 1} resume attempts: "
                                f"{failure}",
                                server=self.config.name,
                            )
                        )
                        return
                    await asyncio.sleep(self._resume_delay(failures, cursor.retry_ms))
                    continue

            delivered_before = cursor.delivered
            interrupted: Exception | None = None
            try:
                await self._consume(response, cursor)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                interrupted = e
            finally:
                response.release()
                response = None

            progressed = cursor.delivered > delivered_before
            if progressed:
                failures = 0

            if interrupted is None:
                if not standalone or not progressed:
                    return
                continue

            if cursor.last_id is None:
                if standalone:
                    logger.warning(
                        f"[{self.config.name}] Event stream interrupted before any event id; "
                        f"not resuming: {interrupted}"
                    )
                    return
                self._fail(
                    TransportError(
                        f"Response stream interrupted before any event id: {interrupted}",
                        server=self.config.name,
                    )
                )
                return

            failures += 1
            if failures > self.config.max_resume_attempts:
                self._fail(
                    TransportError(
                        f"Event stream lost after {failures - 1} resume attempts: {interrupted}",
                        server=self.config.name,
                    )
                )
                return
            logger.info(
                f"[{self.config.name}] Event stream interrupted, resuming after {cursor.last_id} "
                f"(attempt {failures}/{self.config.max_resume_attempts})"
            )
            await asyncio.sleep(self._resume_delay(failures, cursor.retry_ms))

    def _resume_delay(self, attempt: int, retry_ms: int | None) -> float:
        if retry_ms is not None:
            return retry_ms / 1000
        return self.config.retry.delay_for(attempt)


class _StreamCursor:
    """Position within one logical event stream."""

    def __init__(self) -> None:
        self.last_id: str | None = None
        self.delivered = 0
        self.retry_ms: int | None = None
