"""
Model Context Protocol client.

This module provides:
- JSON-RPC message codec
- Stdio and Streamable HTTP transports
- Per-server connection state machine with request correlation
- Namespaced tool registry
- Server pool supervising many servers at once
- Persisted server store
"""

from .codec import ErrorObject, Notification, Request, Response, decode, decode_batch, encode
from .config import TRANSPORT_HTTP, TRANSPORT_STDIO, RetryPolicy, ServerConfig
from .connection import ConnectionState, ServerConnection, Session
from .correlator import PendingRequest, RequestCorrelator, ResolveOutcome
from .protocol import LATEST_PROTOCOL_VERSION, SUPPORTED_PROTOCOL_VERSIONS
from .registry import ToolDescriptor, ToolRegistry, discover
from .server_pool import ServerPool
from .store import ServerStore, load_claude_mcp_servers
from .transport import Transport, create_transport

__all__ = [
    # Codec
    "Request",
    "Response",
    "Notification",
    "ErrorObject",
    "encode",
    "decode",
    "decode_batch",
    # Config
    "ServerConfig",
    "RetryPolicy",
    "TRANSPORT_STDIO",
    "TRANSPORT_HTTP",
    "ServerStore",
    "load_claude_mcp_servers",
    # Transport
    "Transport",
    "create_transport",
    # Connection
    "ServerConnection",
    "ConnectionState",
    "Session",
    "RequestCorrelator",
    "PendingRequest",
    "ResolveOutcome",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LATEST_PROTOCOL_VERSION",
    # Tools
    "ToolDescriptor",
    "ToolRegistry",
    "discover",
    # Pool
    "ServerPool",
]
