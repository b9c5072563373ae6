"""
Stdio transport: the server runs as a subprocess and exchanges one JSON
message per line on its stdin/stdout. Its stderr is diagnostics only.
"""

import asyncio
import logging
import os
from collections import deque
from collections.abc import AsyncIterator

from ..exceptions import FramingError, TransportError
from ..subprocess_manager import SubprocessRegistry, terminate_process
from .config import ServerConfig

logger = logging.getLogger(__name__)

# Longest accepted stdout line; tool lists can be large
MAX_LINE_BYTES = 16 * 1024 * 1024

# Number of stderr lines kept for error reports
STDERR_TAIL_LINES = 50


class StdioTransport:
    """
    Transport over a child process's stdin/stdout.

    Architecture:
    - receive() reads stdout line by line; the consumer pulls, so a slow
      consumer applies back-pressure to the server
    - send() writes one line under a lock so frames never interleave
    - a background task drains stderr into a bounded tail and the debug log
    """

    def __init__(
        self,
        config: ServerConfig,
        subprocesses: SubprocessRegistry | None = None,
    ) -> None:
        self.config = config
        self._subprocesses = subprocesses
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._write_lock = asyncio.Lock()
        self._receiving = False
        self._closed = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def stderr_tail(self) -> list[str]:
        """Most recent stderr lines of the server process."""
        return list(self._stderr_tail)

    async def connect(self) -> None:
        if self._closed:
            raise TransportError(
                "Transport is closed; create a new instance", server=self.config.name
            )
        if self._process is not None:
            return

        env = dict(os.environ)
        env.update(self.config.env)

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.config.command,
                *self.config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=MAX_LINE_BYTES,
            )
        except OSError as e:
            raise TransportError(
                f"Failed to start '{self.config.command}': {e}", server=self.config.name
            ) from e

        if self._subprocesses is not None:
            self._subprocesses.register(self._process)
        self._stderr_task = asyncio.create_task(
            self._drain_stderr(), name=f"mcp-stderr-{self.config.name}"
        )
        logger.debug(f"[{self.config.name}] Started server process pid={self._process.pid}")

    async def _drain_stderr(self) -> None:
        assert self._process and self._process.stderr
        while True:
            try:
                line = await self._process.stderr.readline()
            except (asyncio.LimitOverrunError, ValueError):
                # Overlong diagnostic line; skip what is buffered and go on
                continue
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug(f"[{self.config.name}] stderr: {text}")

    async def send(self, payload: bytes) -> None:
        if b"\n" in payload or b"\r" in payload:
            raise FramingError(
                "Message contains an embedded newline", server=self.config.name
            )
        if self._closed or self._process is None:
            raise TransportError("Stdio transport not connected", server=self.config.name)
        if self._process.returncode is not None:
            raise TransportError(
                f"Server process exited with code {self._process.returncode}",
                server=self.config.name,
                stderr=self.stderr_tail,
            )

        assert self._process.stdin
        async with self._write_lock:
            try:
                self._process.stdin.write(payload + b"\n")
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise TransportError(
                    f"Failed to write to server: {e}", server=self.config.name
                ) from e

    async def receive(self) -> AsyncIterator[bytes]:
        if self._receiving:
            raise TransportError("receive() can only be consumed once", server=self.config.name)
        if self._process is None:
            raise TransportError("Stdio transport not connected", server=self.config.name)
        self._receiving = True

        assert self._process.stdout
        stdout = self._process.stdout
        while True:
            try:
                line = await stdout.readline()
            except (asyncio.LimitOverrunError, ValueError) as e:
                raise FramingError(
                    f"Line exceeds {MAX_LINE_BYTES} bytes", server=self.config.name
                ) from e

            if not line:
                if self._closed:
                    return
                code = await self._process.wait()
                raise TransportError(
                    f"Server process exited with code {code}",
                    server=self.config.name,
                    stderr=self.stderr_tail,
                )

            frame = line.strip()
            if frame:
                yield frame

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        process = self._process
        if process is not None:
            if process.stdin and not process.stdin.is_closing():
                try:
                    process.stdin.close()
                except (BrokenPipeError, ConnectionResetError):
                    pass

            await terminate_process(process)
            if self._subprocesses is not None:
                self._subprocesses.unregister(process)
            logger.debug(
                f"[{self.config.name}] Server process {process.pid} exited "
                f"with code {process.returncode}"
            )

        if self._stderr_task and not self._stderr_task.done():
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
