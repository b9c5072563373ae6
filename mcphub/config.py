"""Configuration management for mcphub."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError
from .mcp.config import DEFAULT_TIMEOUT
from .mcp.store import DEFAULT_STORE_PATH

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "mcphub.log"


def default_config_path() -> Path:
    return Path.home() / ".mcphub" / "config.yaml"


@dataclass
class Config:
    """Application settings.

    Priority: environment variables > config file > defaults.
    """

    log_level: str = "WARNING"
    client_name: str = "mcphub"
    default_timeout: float = DEFAULT_TIMEOUT
    store_path: Path = field(default_factory=lambda: DEFAULT_STORE_PATH)
    # Debug log; None places it beside the server store
    log_file: Path | None = None

    @property
    def log_path(self) -> Path:
        return self.log_file or self.store_path.parent / LOG_FILE_NAME

    @classmethod
    def _load_config_file(cls, path: Path) -> dict[str, Any]:
        """Load configuration from a YAML file; a missing file is empty."""
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config file {path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {path}: not a mapping")
            return {}
        return data

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """
        Load configuration.

        Args:
            path: Config file; MCPHUB_CONFIG or ~/.mcphub/config.yaml if None

        Raises:
            ConfigError: If a value has the wrong type
        """
        if path is None:
            path = os.getenv("MCPHUB_CONFIG") or default_config_path()
        data = cls._load_config_file(Path(path))

        log_level = os.getenv("MCPHUB_LOG_LEVEL") or data.get("log_level", "WARNING")
        store_path = os.getenv("MCPHUB_STORE") or data.get("store_path") or DEFAULT_STORE_PATH
        timeout = os.getenv("MCPHUB_TIMEOUT") or data.get("default_timeout", DEFAULT_TIMEOUT)
        log_file = os.getenv("MCPHUB_LOG_FILE") or data.get("log_file")

        try:
            default_timeout = float(timeout)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid default_timeout: {timeout!r}") from e
        if default_timeout <= 0:
            raise ConfigError(f"default_timeout must be positive, got {default_timeout}")

        return cls(
            log_level=str(log_level).upper(),
            client_name=str(data.get("client_name", "mcphub")),
            default_timeout=default_timeout,
            store_path=Path(store_path).expanduser(),
            log_file=Path(log_file).expanduser() if log_file else None,
        )
