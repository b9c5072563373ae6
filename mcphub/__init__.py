"""mcphub: a multi-server Model Context Protocol client."""

__version__ = "0.1.0"

from .errors import ErrorCategory, ErrorInfo, classify_error, format_user_friendly_error
from .events import CatalogChanged, EventBus, ServerStateChanged
from .exceptions import (
    AmbiguousToolError,
    ConfigError,
    HandshakeFailure,
    McpHubError,
    NotReadyError,
    RemoteError,
    RequestTimeoutError,
    ServerUnavailableError,
    ToolNotFoundError,
    TransportError,
)
from .mcp import ServerConfig, ServerPool, ToolDescriptor

__all__ = [
    "__version__",
    # Pool
    "ServerPool",
    "ServerConfig",
    "ToolDescriptor",
    "EventBus",
    "ServerStateChanged",
    "CatalogChanged",
    # Errors
    "McpHubError",
    "ConfigError",
    "HandshakeFailure",
    "TransportError",
    "RequestTimeoutError",
    "NotReadyError",
    "ServerUnavailableError",
    "RemoteError",
    "ToolNotFoundError",
    "AmbiguousToolError",
    "ErrorCategory",
    "ErrorInfo",
    "classify_error",
    "format_user_friendly_error",
]
