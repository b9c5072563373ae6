"""Error classification for mcphub."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from .exceptions import (
    AmbiguousToolError,
    ConfigError,
    HandshakeFailure,
    HttpStatusError,
    NotReadyError,
    ProtocolViolation,
    RemoteError,
    RequestTimeoutError,
    ServerUnavailableError,
    ToolNotFoundError,
    TransportError,
)

logger = logging.getLogger(__name__)

# JSON-RPC codes that mean "the call itself was wrong"
_INVALID_REQUEST_CODES = (-32600, -32601, -32602)


class ErrorCategory(str, Enum):
    """Categories of errors that can reach a caller."""
    RETRYABLE = "retryable"  # Timeout, transient transport failure - retry the call
    SERVER_GONE = "server_gone"  # Connection closed or never came up - don't retry
    INVALID_REQUEST = "invalid_request"  # Bad reference or arguments - don't retry
    NOT_FOUND = "not_found"  # Tool reference did not resolve
    REMOTE = "remote"  # Server reported an error for this call
    CONFIG = "config"  # Server configuration is wrong
    UNKNOWN = "unknown"


@dataclass
class ErrorInfo:
    """Structured error information."""
    category: ErrorCategory
    retryable: bool
    user_message: str
    technical_details: str
    suggestions: list[str]
    server: str | None = None


def classify_error(exception: BaseException) -> ErrorInfo:
    """
    Classify an exception raised by the pool into a category with a
    user-friendly message.

    Args:
        exception: The exception that occurred

    Returns:
        ErrorInfo with classification and user-friendly message
    """
    server = getattr(exception, "server", None)
    details = f"{type(exception).__name__}: {exception}"

    if isinstance(exception, ToolNotFoundError):
        return ErrorInfo(
            category=ErrorCategory.NOT_FOUND,
            retryable=False,
            user_message=f"No tool matches '{exception.reference}'.",
            technical_details=details,
            suggestions=[
                "Run 'mcphub mcp tools' to see available tools",
                "Check that the server providing the tool is connected",
            ],
            server=server,
        )

    if isinstance(exception, AmbiguousToolError):
        return ErrorInfo(
            category=ErrorCategory.INVALID_REQUEST,
            retryable=False,
            user_message=f"'{exception.reference}' matches several tools.",
            technical_details=details,
            suggestions=[f"Use one of: {', '.join(exception.candidates)}"],
            server=server,
        )

    if isinstance(exception, RequestTimeoutError):
        return ErrorInfo(
            category=ErrorCategory.RETRYABLE,
            retryable=True,
            user_message="The tool call timed out.",
            technical_details=details,
            suggestions=[
                "Try again with a longer timeout",
                "Check whether the server is overloaded",
            ],
            server=server,
        )

    if isinstance(exception, HttpStatusError) and not exception.fatal:
        return ErrorInfo(
            category=ErrorCategory.RETRYABLE if exception.is_retryable else ErrorCategory.INVALID_REQUEST,
            retryable=exception.is_retryable,
            user_message=f"The server rejected the request (HTTP {exception.status_code}).",
            technical_details=details,
            suggestions=["Check the server URL and configured headers"],
            server=server,
        )

    if isinstance(exception, (TransportError, HandshakeFailure, ServerUnavailableError,
                              ProtocolViolation)):
        return ErrorInfo(
            category=ErrorCategory.SERVER_GONE,
            retryable=False,
            user_message="The MCP server is not available.",
            technical_details=details,
            suggestions=[
                "Check mcphub.log for the server's stderr output",
                "Verify the server command or URL with 'mcphub mcp list'",
            ],
            server=server,
        )

    if isinstance(exception, NotReadyError):
        return ErrorInfo(
            category=ErrorCategory.RETRYABLE,
            retryable=True,
            user_message="The MCP server is still connecting.",
            technical_details=details,
            suggestions=["Wait a moment and try again"],
            server=server,
        )

    if isinstance(exception, RemoteError):
        invalid = exception.code in _INVALID_REQUEST_CODES
        return ErrorInfo(
            category=ErrorCategory.INVALID_REQUEST if invalid else ErrorCategory.REMOTE,
            retryable=False,
            user_message="The MCP server returned an error.",
            technical_details=details,
            suggestions=["Check the tool arguments against its input schema"]
            if invalid
            else ["Check the server's own logs"],
            server=server,
        )

    if isinstance(exception, ConfigError):
        return ErrorInfo(
            category=ErrorCategory.CONFIG,
            retryable=False,
            user_message="The MCP server configuration is invalid.",
            technical_details=details,
            suggestions=["Fix the entry with 'mcphub mcp remove' and 'mcphub mcp add'"],
            server=server,
        )

    if isinstance(exception, (asyncio.TimeoutError, OSError, ConnectionError)):
        return ErrorInfo(
            category=ErrorCategory.RETRYABLE,
            retryable=True,
            user_message="Network error. Please check your connection.",
            technical_details=details,
            suggestions=["Try again in a moment"],
            server=server,
        )

    logger.debug(f"Unclassified error: {details}")
    return ErrorInfo(
        category=ErrorCategory.UNKNOWN,
        retryable=False,
        user_message="An unexpected error occurred.",
        technical_details=details,
        suggestions=[
            "Check mcphub.log for more details",
            "Report this issue if it persists",
        ],
        server=server,
    )


def format_user_friendly_error(error_info: ErrorInfo) -> str:
    """Format error info as user-friendly message."""
    prefix = f"[{error_info.server}] " if error_info.server else ""
    lines = [
        f"\nError: {prefix}{error_info.user_message}",
        f"\nDetails: {error_info.technical_details}",
    ]

    if error_info.suggestions:
        lines.append("\nSuggestions:")
        for i, suggestion in enumerate(error_info.suggestions, 1):
            lines.append(f"  {i}. {suggestion}")

    return "\n".join(lines)
