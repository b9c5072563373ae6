"""Tests for request correlation."""

import asyncio

import pytest

from mcphub.exceptions import ConnectionClosedError, RequestTimeoutError
from mcphub.mcp.codec import Response
from mcphub.mcp.correlator import RequestCorrelator, ResolveOutcome


class TestRegistration:
    """Test id generation and registration."""

    @pytest.mark.asyncio
    async def test_ids_are_monotonic(self):
        """Test generated ids increase and are never reused."""
        correlator = RequestCorrelator("s")
        ids = [correlator.register(method="m").id for _ in range(5)]
        assert ids == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_duplicate_pending_id_rejected(self):
        """Test registering an id that is still pending fails."""
        correlator = RequestCorrelator("s")
        correlator.register(request_id="a")
        with pytest.raises(ValueError):
            correlator.register(request_id="a")

    @pytest.mark.asyncio
    async def test_default_timeout_applies(self):
        """Test the correlator default timeout is used when none is given."""
        correlator = RequestCorrelator("s", default_timeout=5.0)
        handle = correlator.register(method="m")
        assert handle.timeout == 5.0
        assert handle.deadline == pytest.approx(handle.issued_at + 5.0)


class TestResolution:
    """Test matching responses to requests."""

    @pytest.mark.asyncio
    async def test_out_of_order_responses(self):
        """Test responses match their requests whatever the arrival order."""
        correlator = RequestCorrelator("s")
        first = correlator.register(method="a")
        second = correlator.register(method="b")

        assert correlator.resolve(Response(id=second.id, result="B")) == ResolveOutcome.RESOLVED
        assert correlator.resolve(Response(id=first.id, result="A")) == ResolveOutcome.RESOLVED

        assert (await first).result == "A"
        assert (await second).result == "B"
        assert len(correlator) == 0

    @pytest.mark.asyncio
    async def test_duplicate_response_is_late(self):
        """Test a second response for the same id is discarded as late."""
        correlator = RequestCorrelator("s")
        handle = correlator.register()
        correlator.resolve(Response(id=handle.id, result=1))
        assert correlator.resolve(Response(id=handle.id, result=2)) == ResolveOutcome.LATE
        assert (await handle).result == 1

    @pytest.mark.asyncio
    async def test_unknown_response(self):
        """Test a response for an id never issued is reported as unknown."""
        correlator = RequestCorrelator("s")
        assert correlator.resolve(Response(id=99, result=None)) == ResolveOutcome.UNKNOWN
        assert correlator.resolve(Response(id="zz", result=None)) == ResolveOutcome.UNKNOWN

    @pytest.mark.asyncio
    async def test_fail_all(self):
        """Test fail_all settles every pending request with the same error."""
        correlator = RequestCorrelator("s")
        handles = [correlator.register() for _ in range(3)]
        error = ConnectionClosedError("closed")

        assert correlator.fail_all(error) == 3
        for handle in handles:
            with pytest.raises(ConnectionClosedError):
                await handle
        assert len(correlator) == 0

    @pytest.mark.asyncio
    async def test_fail_unwaited_does_not_warn(self):
        """Test failing a request nobody awaits leaves no unretrieved exception."""
        correlator = RequestCorrelator("s")
        handle = correlator.register()
        assert correlator.fail(handle.id, ConnectionClosedError("x"))
        assert handle.future.done()
        assert not correlator.fail(handle.id, ConnectionClosedError("x"))


class TestTimeouts:
    """Test per-request timeouts."""

    @pytest.mark.asyncio
    async def test_sweep_timeouts(self):
        """Test sweeping fails only the requests past their deadline."""
        correlator = RequestCorrelator("s")
        short = correlator.register(method="short", timeout=1.0)
        long = correlator.register(method="long", timeout=100.0)

        expired = correlator.sweep_timeouts(now=short.issued_at + 2.0)

        assert expired == [short.id]
        with pytest.raises(RequestTimeoutError):
            await short
        assert long.id in correlator

    @pytest.mark.asyncio
    async def test_sweeper_task(self):
        """Test the sweeper fails an unanswered request without touching others."""
        correlator = RequestCorrelator("s")
        sweeper = asyncio.create_task(correlator.run_sweeper())
        try:
            slow = correlator.register(method="slow", timeout=0.05)
            other = correlator.register(method="other", timeout=10.0)

            with pytest.raises(RequestTimeoutError) as exc_info:
                await asyncio.wait_for(slow.wait(), timeout=2.0)
            assert isinstance(exc_info.value, TimeoutError)
            assert other.id in correlator

            correlator.resolve(Response(id=other.id, result="ok"))
            assert (await other).result == "ok"
        finally:
            sweeper.cancel()
            with pytest.raises(asyncio.CancelledError):
                await sweeper

    @pytest.mark.asyncio
    async def test_late_response_after_timeout(self):
        """Test a response arriving after the timeout is discarded as late."""
        correlator = RequestCorrelator("s")
        handle = correlator.register(timeout=0.5)
        correlator.sweep_timeouts(now=handle.issued_at + 1.0)
        assert correlator.resolve(Response(id=handle.id, result=1)) == ResolveOutcome.LATE


class TestCancellation:
    """Test caller cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_waiter_removes_entry(self):
        """Test cancelling the awaiting task drops the correlator entry."""
        correlator = RequestCorrelator("s")
        handle = correlator.register(method="m")
        waiter = asyncio.create_task(handle.wait())
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert handle.id not in correlator
        assert correlator.resolve(Response(id=handle.id, result=1)) == ResolveOutcome.LATE
