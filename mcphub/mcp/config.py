"""
MCP server configuration.

A server is reached over one of two transports:
- stdio: a local subprocess started from command/args/env
- http: a remote Streamable HTTP endpoint at url, with optional headers
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import ConfigError

logger = logging.getLogger(__name__)

TRANSPORT_STDIO = "stdio"
TRANSPORT_HTTP = "http"

# Legacy "type" values accepted in config files
_TYPE_ALIASES = {
    "local": TRANSPORT_STDIO,
    "stdio": TRANSPORT_STDIO,
    "remote": TRANSPORT_HTTP,
    "http": TRANSPORT_HTTP,
    "streamable-http": TRANSPORT_HTTP,
}

DEFAULT_TIMEOUT = 60.0  # seconds
DEFAULT_HANDSHAKE_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_RESUME_ATTEMPTS = 3


@dataclass(frozen=True)
class RetryPolicy:
    """Reconnect/backoff policy for one server."""

    max_attempts: int = 3
    initial_delay: float = 0.5  # seconds
    max_delay: float = 10.0  # seconds
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the given attempt (1-indexed)."""
        if attempt <= 1:
            return min(self.initial_delay, self.max_delay)
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RetryPolicy":
        data = data or {}
        return cls(
            max_attempts=int(data.get("max_attempts", 3)),
            initial_delay=float(data.get("initial_delay", 0.5)),
            max_delay=float(data.get("max_delay", 10.0)),
            multiplier=float(data.get("multiplier", 2.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "multiplier": self.multiplier,
        }


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for a single MCP server.

    Immutable once loaded; the server pool shares it read-only with the
    connection it creates for the server.
    """

    name: str
    transport: str = TRANSPORT_STDIO

    # Stdio server config
    command: str = ""
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)

    # HTTP server config
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    bearer_token_env_var: str | None = None

    # Common
    enabled: bool = True
    timeout: float = DEFAULT_TIMEOUT
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    max_resume_attempts: int = DEFAULT_MAX_RESUME_ATTEMPTS

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Server name must not be empty")
        if "/" in self.name or self.name.startswith("@"):
            raise ConfigError(
                f"Invalid server name '{self.name}': must not contain '/' or start with '@'",
                server=self.name,
            )
        if self.transport not in (TRANSPORT_STDIO, TRANSPORT_HTTP):
            raise ConfigError(f"Unknown transport '{self.transport}'", server=self.name)
        if self.transport == TRANSPORT_STDIO and not self.command:
            raise ConfigError("stdio server requires a command", server=self.name)
        if self.transport == TRANSPORT_HTTP and not self.url:
            raise ConfigError("http server requires a url", server=self.name)
        if self.timeout <= 0 or self.handshake_timeout <= 0:
            raise ConfigError("Timeouts must be positive", server=self.name)

    def is_remote(self) -> bool:
        """Check if this is a remote (HTTP) server."""
        return self.transport == TRANSPORT_HTTP

    def resolved_headers(self) -> dict[str, str]:
        """Configured headers plus a bearer token read from the environment."""
        headers = dict(self.headers)
        if self.bearer_token_env_var:
            token = os.environ.get(self.bearer_token_env_var)
            if token:
                headers["Authorization"] = f"Bearer {token}"
            else:
                logger.warning(
                    f"[{self.name}] Environment variable {self.bearer_token_env_var} is not set"
                )
        return headers

    def summary(self) -> str:
        """One-line description, e.g. 'stdio npx -y server' or 'http https://...'."""
        if self.is_remote():
            return f"http {self.url}"
        return " ".join(["stdio", self.command, *self.args]).strip()

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "ServerConfig":
        """
        Build a config from a settings mapping.

        Accepts "transport" or the legacy "type" key (local/remote), a
        list-valued "command", and infers the transport from url/command
        when neither key is present.

        Raises:
            ConfigError: If the settings are incomplete or malformed
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Server '{name}' settings must be a mapping", server=name)

        kind = data.get("transport") or data.get("type")
        if kind is None:
            kind = TRANSPORT_HTTP if data.get("url") else TRANSPORT_STDIO
        transport = _TYPE_ALIASES.get(str(kind).lower())
        if transport is None:
            raise ConfigError(f"Unknown transport '{kind}'", server=name)

        # Support both "command" as string and as list
        command = data.get("command") or ""
        args = list(data.get("args") or [])
        if isinstance(command, list):
            if command:
                args = command[1:] + args
                command = command[0]
            else:
                command = ""

        headers = data.get("headers", data.get("http_headers")) or {}
        timeout = data.get("timeout", data.get("timeout_sec", DEFAULT_TIMEOUT))

        try:
            return cls(
                name=name,
                transport=transport,
                command=str(command),
                args=tuple(str(a) for a in args),
                env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
                url=data.get("url"),
                headers={str(k): str(v) for k, v in headers.items()},
                bearer_token_env_var=data.get("bearer_token_env_var"),
                enabled=bool(data.get("enabled", True)),
                timeout=float(timeout),
                handshake_timeout=float(data.get("handshake_timeout", DEFAULT_HANDSHAKE_TIMEOUT)),
                retry=RetryPolicy.from_dict(data.get("retry")),
                max_resume_attempts=int(
                    data.get("max_resume_attempts", DEFAULT_MAX_RESUME_ATTEMPTS)
                ),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid settings for server '{name}': {e}", server=name) from e

    def to_dict(self, mask_secrets: bool = False) -> dict[str, Any]:
        """Convert to dictionary (the inverse of from_dict)."""
        result: dict[str, Any] = {"transport": self.transport}

        if self.transport == TRANSPORT_STDIO:
            result["command"] = self.command
            if self.args:
                result["args"] = list(self.args)
            if self.env:
                result["env"] = (
                    {k: "***" for k in self.env} if mask_secrets else dict(self.env)
                )
        else:
            result["url"] = self.url
            if self.headers:
                result["headers"] = (
                    {k: "***" for k in self.headers} if mask_secrets else dict(self.headers)
                )
            if self.bearer_token_env_var:
                result["bearer_token_env_var"] = self.bearer_token_env_var

        if not self.enabled:
            result["enabled"] = False
        if self.timeout != DEFAULT_TIMEOUT:
            result["timeout"] = self.timeout
        if self.handshake_timeout != DEFAULT_HANDSHAKE_TIMEOUT:
            result["handshake_timeout"] = self.handshake_timeout
        if self.retry != RetryPolicy():
            result["retry"] = self.retry.to_dict()
        if self.max_resume_attempts != DEFAULT_MAX_RESUME_ATTEMPTS:
            result["max_resume_attempts"] = self.max_resume_attempts
        return result
