"""Custom exception hierarchy for mcphub.

Every fault that can reach a caller of the server pool is one of these types,
so the agent loop can tell a failed tool call from a server that is gone.
All of them carry the name of the server involved (when known) and arbitrary
keyword context.
"""

from typing import Any


class McpHubError(Exception):
    """Base exception for all mcphub errors.

    Attributes:
        message: The error message.
        server: Optional name of the server the error relates to.
        context: Arbitrary keyword arguments providing additional error context.

    Example:
        >>> raise McpHubError("Server not running", server="fs", state="closed")
    """

    def __init__(self, message: str, server: str | None = None, **context: Any) -> None:
        """Initialize an McpHubError.

        Args:
            message: Human-readable error message.
            server: Optional server name for tracking.
            **context: Additional contextual information as keyword arguments.
        """
        super().__init__(message)
        self.message = message
        self.server = server
        self.context = context

    def __str__(self) -> str:
        """Return the error message."""
        return self.message

    def __repr__(self) -> str:
        """Return a detailed representation of the error."""
        parts = [f"message={self.message!r}"]

        if self.server:
            parts.append(f"server={self.server!r}")

        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            parts.append(f"context={{{ctx_str}}}")

        return f"{self.__class__.__name__}({', '.join(parts)})"


class ConfigError(McpHubError):
    """Exception raised for configuration errors.

    Use this for:
    - Missing command (stdio) or URL (http)
    - Unknown transport kinds
    - Malformed store files
    """


class DecodeError(McpHubError):
    """Malformed wire data.

    The offending message is logged and discarded; the connection continues.
    """


class ProtocolViolation(McpHubError):
    """The peer broke the protocol (ordering, framing)."""


class FramingError(ProtocolViolation):
    """A message could not be framed as exactly one line of the stream."""


class HandshakeFailure(McpHubError):
    """The initialize exchange failed. Fatal for that connection."""


class TransportError(McpHubError):
    """The channel to the server failed (process exit, socket close).

    Attributes:
        fatal: Whether the connection is unusable after this error.
    """

    def __init__(
        self, message: str, server: str | None = None, fatal: bool = True, **context: Any
    ) -> None:
        super().__init__(message, server=server, **context)
        self.fatal = fatal


class HttpStatusError(TransportError):
    """Non-2xx HTTP response with status code and body preview."""

    def __init__(
        self, status_code: int, body_preview: str = "", server: str | None = None
    ) -> None:
        super().__init__(
            f"http {status_code}: {body_preview}",
            server=server,
            fatal=status_code >= 500,
            status_code=status_code,
        )
        self.status_code = status_code
        self.body_preview = body_preview

    @property
    def is_retryable(self) -> bool:
        return self.status_code >= 500 or self.status_code == 429


class SessionExpiredError(TransportError):
    """The HTTP server no longer recognizes our session id."""


class ConnectionClosedError(TransportError):
    """The connection was shut down while a request was pending."""


class RequestTimeoutError(McpHubError, TimeoutError):
    """A single request exceeded its timeout. Connection health is unaffected."""


class NotReadyError(McpHubError):
    """A request was submitted before the connection reached Ready."""


class ServerUnavailableError(McpHubError):
    """The server owning a tool is not connected."""


class RemoteError(McpHubError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(
        self, code: int, message: str, data: Any = None, server: str | None = None
    ) -> None:
        super().__init__(f"mcp error {code}: {message}", server=server, code=code)
        self.code = code
        self.data = data


class ToolResolutionError(McpHubError):
    """A tool reference could not be resolved to exactly one tool."""

    def __init__(self, message: str, reference: str, **context: Any) -> None:
        super().__init__(message, reference=reference, **context)
        self.reference = reference


class ToolNotFoundError(ToolResolutionError):
    """No tool matches the reference."""


class AmbiguousToolError(ToolResolutionError):
    """The reference matches more than one tool."""

    def __init__(self, reference: str, candidates: list[str]) -> None:
        super().__init__(
            f"Ambiguous tool reference '{reference}': matches {', '.join(candidates)}",
            reference=reference,
        )
        self.candidates = candidates
