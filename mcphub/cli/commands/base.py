import argparse
from abc import ABC, abstractmethod

from rich.console import Console

from mcphub.cli.exit_codes import ExitCode
from mcphub.config import Config
from mcphub.errors import ErrorCategory, classify_error, format_user_friendly_error
from mcphub.mcp.store import ServerStore

# Exit code per error category; anything unlisted is a generic error
EXIT_CODES = {
    ErrorCategory.NOT_FOUND: ExitCode.TOOL_ERROR,
    ErrorCategory.INVALID_REQUEST: ExitCode.TOOL_ERROR,
    ErrorCategory.REMOTE: ExitCode.TOOL_ERROR,
    ErrorCategory.SERVER_GONE: ExitCode.SERVER_ERROR,
    ErrorCategory.RETRYABLE: ExitCode.SERVER_ERROR,
    ErrorCategory.CONFIG: ExitCode.CONFIG_ERROR,
}


class BaseCommand(ABC):
    """
    Base class for all CLI commands.

    Holds the application config, the server store it points at, and the
    consoles results and diagnostics are printed to.
    """

    def __init__(
        self,
        config: Config | None = None,
        console: Console | None = None,
        err_console: Console | None = None,
    ) -> None:
        self.config = config or Config.load()
        self.console = console or Console()
        # A caller-supplied console receives diagnostics too
        self.err_console = err_console or (console if console is not None else Console(stderr=True))

    @property
    @abstractmethod
    def name(self) -> str:
        """Command name (e.g., 'mcp add')."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Command description for help text."""
        pass

    @abstractmethod
    def execute(self, args: argparse.Namespace) -> int:
        """
        Execute the command.

        Args:
            args: Parsed command arguments

        Returns:
            Exit code (0 = success, non-zero = failure)
        """
        pass

    @property
    def store(self) -> ServerStore:
        return ServerStore(self.config.store_path)

    def client_info(self) -> dict[str, str]:
        """Identity sent to servers in the initialize handshake."""
        from mcphub import __version__

        return {"name": self.config.client_name, "version": __version__}

    def fail(self, error: BaseException) -> int:
        """Print a user-facing error and map it to an exit code."""
        info = classify_error(error)
        self.err_console.print(
            format_user_friendly_error(info), style="red", markup=False, highlight=False
        )
        return EXIT_CODES.get(info.category, ExitCode.ERROR)
