"""
Request correlation for one MCP connection.

Every outgoing request is registered under a fresh id and gets a
single-resolution handle. Responses are matched back by id, whatever order
they arrive in; requests that outlive their timeout are failed by a sweeper
task; fail_all() settles everything still pending when the connection goes
away.
"""

import asyncio
import itertools
import logging
import time
from collections.abc import Generator
from enum import Enum
from typing import Any

from ..exceptions import RequestTimeoutError
from .codec import RequestId, Response

logger = logging.getLogger(__name__)


class ResolveOutcome(Enum):
    """What happened to a response handed to resolve()."""

    RESOLVED = "resolved"
    LATE = "late"  # Issued by us, but already resolved (timeout, duplicate)
    UNKNOWN = "unknown"  # Never issued on this connection


class PendingRequest:
    """
    Awaitable handle for one outstanding request.

    Awaiting it returns the matching Response or raises the error it was
    failed with. Cancelling the awaiting task removes the entry from its
    correlator.
    """

    def __init__(
        self,
        correlator: "RequestCorrelator",
        request_id: RequestId,
        method: str,
        timeout: float | None,
    ) -> None:
        self.id = request_id
        self.method = method
        self.issued_at = time.monotonic()
        self.timeout = timeout
        self.future: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        self._correlator = correlator

    @property
    def deadline(self) -> float | None:
        if self.timeout is None:
            return None
        return self.issued_at + self.timeout

    @property
    def done(self) -> bool:
        return self.future.done()

    async def wait(self) -> Response:
        try:
            return await asyncio.shield(self.future)
        except asyncio.CancelledError:
            if not self.future.done():
                self._correlator.cancel(self.id)
            raise

    def __await__(self) -> Generator[Any, None, Response]:
        return self.wait().__await__()

    def __repr__(self) -> str:
        state = "done" if self.done else "pending"
        return f"PendingRequest(id={self.id!r}, method={self.method!r}, {state})"


class RequestCorrelator:
    """
    Table of outstanding requests for one connection.

    Ids are generated monotonically and never reused. Each entry is settled
    exactly once: by its response, by a timeout, by cancellation, or by
    fail_all().
    """

    def __init__(self, server_name: str = "", default_timeout: float | None = None) -> None:
        self.server_name = server_name
        self.default_timeout = default_timeout
        self._ids = itertools.count(1)
        self._highest_id = 0
        self._pending: dict[RequestId, PendingRequest] = {}
        self._wakeup = asyncio.Event()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: RequestId) -> bool:
        return request_id in self._pending

    @property
    def pending_ids(self) -> list[RequestId]:
        return list(self._pending)

    def next_id(self) -> int:
        request_id = next(self._ids)
        self._highest_id = request_id
        return request_id

    def register(
        self,
        request_id: RequestId | None = None,
        method: str = "",
        timeout: float | None = None,
    ) -> PendingRequest:
        """
        Register a request and return its handle.

        Args:
            request_id: Id to register; a fresh one is generated when omitted
            method: Method name, for diagnostics
            timeout: Seconds before the request fails; default_timeout if None

        Raises:
            ValueError: If the id is already pending
        """
        if request_id is None:
            request_id = self.next_id()
        elif request_id in self._pending:
            raise ValueError(f"Request id {request_id!r} is already pending")

        handle = PendingRequest(
            self,
            request_id,
            method,
            timeout if timeout is not None else self.default_timeout,
        )
        self._pending[request_id] = handle
        if handle.deadline is not None:
            self._wakeup.set()
        return handle

    def _was_issued(self, request_id: RequestId) -> bool:
        return isinstance(request_id, int) and 0 < request_id <= self._highest_id

    def resolve(self, response: Response) -> ResolveOutcome:
        """Hand a response to the request waiting for it."""
        handle = self._pending.pop(response.id, None)
        if handle is None:
            if self._was_issued(response.id):
                logger.debug(
                    f"[{self.server_name}] Discarding late or duplicate response for id "
                    f"{response.id!r}"
                )
                return ResolveOutcome.LATE
            logger.warning(
                f"[{self.server_name}] Discarding response for unknown request id "
                f"{response.id!r}"
            )
            return ResolveOutcome.UNKNOWN

        handle.future.set_result(response)
        return ResolveOutcome.RESOLVED

    def fail(self, request_id: RequestId, error: BaseException) -> bool:
        """Fail one pending request. Returns False if it was not pending."""
        handle = self._pending.pop(request_id, None)
        if handle is None:
            return False
        handle.future.set_exception(error)
        # The waiter may already be gone; don't warn about an unretrieved exception
        handle.future.exception()
        return True

    def cancel(self, request_id: RequestId) -> bool:
        """Drop a pending request whose caller gave up."""
        handle = self._pending.pop(request_id, None)
        if handle is None:
            return False
        handle.future.cancel()
        logger.debug(f"[{self.server_name}] Request {request_id!r} ({handle.method}) cancelled")
        return True

    def fail_all(self, reason: BaseException) -> int:
        """Fail every pending request with the same error. Returns how many."""
        pending = list(self._pending)
        for request_id in pending:
            self.fail(request_id, reason)
        if pending:
            logger.debug(f"[{self.server_name}] Failed {len(pending)} pending requests: {reason}")
        return len(pending)

    def sweep_timeouts(self, now: float | None = None) -> list[RequestId]:
        """Fail every request whose deadline has passed. Returns their ids."""
        if now is None:
            now = time.monotonic()
        expired = [
            request_id
            for request_id, handle in self._pending.items()
            if handle.deadline is not None and handle.deadline <= now
        ]
        for request_id in expired:
            handle = self._pending[request_id]
            self.fail(
                request_id,
                RequestTimeoutError(
                    f"Request '{handle.method}' timed out after {handle.timeout}s",
                    server=self.server_name or None,
                    request_id=request_id,
                    method=handle.method,
                ),
            )
        if expired:
            logger.info(f"[{self.server_name}] {len(expired)} request(s) timed out")
        return expired

    def _next_deadline(self) -> float | None:
        deadlines = [h.deadline for h in self._pending.values() if h.deadline is not None]
        return min(deadlines) if deadlines else None

    async def run_sweeper(self) -> None:
        """Sleep until the nearest deadline (or a new registration), then sweep. Runs forever."""
        while True:
            self._wakeup.clear()
            deadline = self._next_deadline()
            delay = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            self.sweep_timeouts()
