"""MCP protocol constants and version negotiation."""

import re

# Oldest first; dates compare correctly as strings
SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18", "2025-11-25")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[-1]

# Assumed when a server's handshake response does not state a version
DEFAULT_PROTOCOL_VERSION = "2025-03-26"

METHOD_INITIALIZE = "initialize"
METHOD_INITIALIZED = "notifications/initialized"
METHOD_PING = "ping"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"
NOTIFICATION_TOOLS_CHANGED = "notifications/tools/list_changed"
NOTIFICATION_MESSAGE = "notifications/message"
NOTIFICATION_PROGRESS = "notifications/progress"
NOTIFICATION_CANCELLED = "notifications/cancelled"

HEADER_PROTOCOL_VERSION = "MCP-Protocol-Version"
HEADER_SESSION_ID = "Mcp-Session-Id"
HEADER_LAST_EVENT_ID = "Last-Event-ID"

# Protocol versions are release dates
_VERSION_FORMAT = re.compile(r"\d{4}-\d{2}-\d{2}")


def negotiate_protocol_version(server_version: object, client_version: str = LATEST_PROTOCOL_VERSION) -> str:
    """
    Pick the protocol version for a session.

    The result is the newest version this client supports that is no newer
    than both what the client asked for and what the server reported. A
    missing or malformed server version is read as the documented default;
    a server older than every supported version gets the oldest one. The
    result is always one of SUPPORTED_PROTOCOL_VERSIONS.
    """
    if not isinstance(server_version, str) or not _VERSION_FORMAT.fullmatch(server_version):
        server_version = DEFAULT_PROTOCOL_VERSION
    ceiling = min(server_version, client_version)
    candidates = [v for v in SUPPORTED_PROTOCOL_VERSIONS if v <= ceiling]
    return candidates[-1] if candidates else SUPPORTED_PROTOCOL_VERSIONS[0]
