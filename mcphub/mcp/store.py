"""
Persisted MCP server store.

Servers live in a YAML file under the ``mcp_servers`` key:

    mcp_servers:
      fs:
        command: npx
        args: [-y, "@modelcontextprotocol/server-filesystem", "."]
      search:
        transport: http
        url: https://example.com/mcp
        bearer_token_env_var: SEARCH_TOKEN

Claude Desktop style JSON (``mcpServers``) can be imported.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from ..exceptions import ConfigError
from .config import ServerConfig

logger = logging.getLogger(__name__)

STORE_KEY = "mcp_servers"
DEFAULT_STORE_PATH = Path(".mcphub") / "mcp.yaml"


class ServerStore:
    """Load, edit and save server configurations in one YAML file."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path else DEFAULT_STORE_PATH

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.path}: {e}", path=str(self.path)) from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path} must contain a mapping", path=str(self.path))
        return data

    def load(self) -> dict[str, ServerConfig]:
        """
        Load all servers, in file order.

        Raises:
            ConfigError: If the file or any server entry is malformed
        """
        raw = self._read().get(STORE_KEY) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"'{STORE_KEY}' in {self.path} must be a mapping")
        return {name: ServerConfig.from_dict(str(name), settings) for name, settings in raw.items()}

    def save(self, servers: dict[str, ServerConfig]) -> None:
        """Write servers back, keeping any other top-level keys in the file."""
        data = self._read()
        data[STORE_KEY] = {name: config.to_dict() for name, config in servers.items()}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        tmp_path.replace(self.path)
        logger.debug(f"Saved {len(servers)} MCP server(s) to {self.path}")

    def add(self, config: ServerConfig, replace: bool = False) -> None:
        """
        Add a server.

        Raises:
            ConfigError: If a server with that name exists and replace is False
        """
        servers = self.load()
        if config.name in servers and not replace:
            raise ConfigError(f"MCP server '{config.name}' already exists", server=config.name)
        servers[config.name] = config
        self.save(servers)

    def remove(self, name: str) -> bool:
        """Remove a server. Returns False if it was not in the store."""
        servers = self.load()
        if name not in servers:
            return False
        del servers[name]
        self.save(servers)
        return True

    def get(self, name: str) -> ServerConfig | None:
        return self.load().get(name)


def load_claude_mcp_servers(config_path: Path | str) -> dict[str, ServerConfig]:
    """
    Load MCP server configurations from a Claude Desktop style JSON file.

    Entries that fail to parse are skipped with a warning.

    Args:
        config_path: Path to a JSON file with an ``mcpServers`` object

    Returns:
        Dictionary mapping server name to ServerConfig
    """
    path = Path(config_path)
    try:
        with open(path, encoding="utf-8") as f:
            config_data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read {path}: {e}", path=str(path)) from e

    servers_data = config_data.get("mcpServers", {}) if isinstance(config_data, dict) else {}
    servers = {}
    for name, server_config in servers_data.items():
        try:
            servers[name] = ServerConfig.from_dict(name, server_config)
            logger.debug(f"Loaded MCP server config: {name}")
        except ConfigError as e:
            logger.warning(f"Failed to parse MCP server {name}: {e}")

    logger.info(f"Loaded {len(servers)} MCP server configs from {path}")
    return servers
