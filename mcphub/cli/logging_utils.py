"""
Logging setup for the mcphub CLI.

Records go to two places: a DEBUG-level file log kept beside the server store
(or wherever ``log_file`` points), and stderr at the configured level. Every
connection logs with a ``[server]`` prefix, so one server's traffic can be
picked out of the file with grep.
"""

import logging
import sys
from pathlib import Path

from mcphub.config import Config

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

# Loggers that flood the file log at DEBUG without saying anything useful
QUIET_LOGGERS = ("asyncio", "aiohttp.access")


def resolve_level(name: str | None) -> int:
    """Map a level name to its number; unknown names mean WARNING."""
    level = logging.getLevelName((name or "WARNING").upper())
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(config: Config, log_level: str | None = None) -> Path | None:
    """
    Configure the root logger for a CLI run.

    Args:
        config: Application config; supplies the log file and default level
        log_level: Console level overriding config.log_level (--log-level)

    Returns:
        The debug log path, or None if it could not be opened
    """
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(resolve_level(log_level or config.log_level))
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    log_path = config.log_path
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as e:
        # A read-only location costs the debug log, not the command
        root_logger.warning(f"Debug log disabled: cannot open {log_path}: {e}")
        return None
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    root_logger.addHandler(file_handler)
    return log_path
