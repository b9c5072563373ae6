"""
Utilities for async execution with proper error handling.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _suppress_shutdown_errors(loop, context):
    """
    Exception handler that keeps expected shutdown noise out of the console.

    Subprocess transports may try to clean up after the loop has closed;
    those errors are logged at debug level only.
    """
    exc = context.get("exception")
    if isinstance(exc, RuntimeError) and "Event loop is closed" in str(exc):
        logger.debug(f"Suppressing expected subprocess cleanup error: {exc}")
        return
    if isinstance(exc, (BrokenPipeError, ConnectionResetError)):
        logger.debug(f"Suppressing pipe error during shutdown: {exc}")
        return
    loop.default_exception_handler(context)


def _cancel_pending(loop: asyncio.AbstractEventLoop) -> None:
    pending = asyncio.all_tasks(loop)
    for task in pending:
        task.cancel()
    if pending:
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))


def safe_async_run(coro: Awaitable[T]) -> T:
    """
    Run an async coroutine on a fresh event loop and tear it down cleanly.

    Pending tasks are cancelled and async generators closed before the loop
    is closed, so no subprocess or socket outlives the command.

    Args:
        coro: The coroutine to run

    Returns:
        The result of the coroutine
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    try:
        loop.set_exception_handler(_suppress_shutdown_errors)
        return loop.run_until_complete(coro)
    finally:
        try:
            _cancel_pending(loop)
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.run_until_complete(loop.shutdown_default_executor())
        except RuntimeError as e:
            logger.debug(f"Error during cleanup (suppressed): {e}")
        finally:
            asyncio.set_event_loop(None)
            loop.close()
