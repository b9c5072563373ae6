"""CLI package for mcphub."""

from mcphub.cli.logging_utils import setup_logging
from mcphub.cli.main import main

__all__ = ["main", "setup_logging"]
