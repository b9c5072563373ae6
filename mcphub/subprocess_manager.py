"""
Subprocess lifecycle management for mcphub.

Stdio servers are long-lived child processes. Each server pool owns one
SubprocessRegistry; transports register the processes they spawn so the pool
can guarantee that none outlives it, even when a transport's own close path
was never reached.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


async def terminate_process(process: asyncio.subprocess.Process, timeout: float = 2.0) -> None:
    """
    Stop a process: wait for a graceful exit, then terminate, then kill.

    Args:
        process: Process to stop
        timeout: Seconds to wait at each step
    """
    if process.returncode is not None:
        return

    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
        return
    except asyncio.TimeoutError:
        pass

    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except ProcessLookupError:
        return
    except asyncio.TimeoutError:
        try:
            process.kill()
            await asyncio.wait_for(process.wait(), timeout=1.0)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            logger.warning(f"Process {process.pid} did not exit after kill")


class SubprocessRegistry:
    """
    Registry for tracking active server subprocesses.

    This ensures all subprocesses are cleaned up before the pool shuts down.
    """

    def __init__(self):
        self._processes: set[asyncio.subprocess.Process] = set()

    def register(self, process: asyncio.subprocess.Process) -> None:
        """Register a subprocess for tracking."""
        self._processes.add(process)

    def unregister(self, process: asyncio.subprocess.Process) -> None:
        """Unregister a subprocess (when it completes)."""
        self._processes.discard(process)

    def __len__(self) -> int:
        return len(self._processes)

    async def cleanup_all(self, timeout: float = 2.0) -> None:
        """
        Terminate all registered subprocesses.

        Args:
            timeout: Maximum time to wait for processes to terminate gracefully
        """
        if not self._processes:
            return

        processes_to_cleanup = list(self._processes)
        self._processes.clear()

        for process in processes_to_cleanup:
            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    continue
                except OSError as e:
                    logger.debug(f"Error terminating process {process.pid}: {e}")

        await asyncio.gather(
            *[terminate_process(p, timeout=timeout) for p in processes_to_cleanup],
            return_exceptions=True,
        )
