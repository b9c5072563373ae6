"""
Exit code definitions for the mcphub CLI.

All commands MUST use these constants instead of magic numbers.

Exit Codes:
    0   - SUCCESS: Command completed successfully
    1   - ERROR: General error (invalid arguments, runtime error)
    2   - TOOL_ERROR: Tool reference not found, ambiguous, or the call failed
    3   - SERVER_ERROR: Server could not be reached or is not ready
    4   - CONFIG_ERROR: Invalid or missing server configuration
    130 - INTERRUPTED: User pressed Ctrl+C (SIGINT)

Usage:
    from mcphub.cli.exit_codes import ExitCode

    return ExitCode.SUCCESS
"""


class ExitCode:
    """Exit code constants for the mcphub CLI."""

    SUCCESS = 0
    """Command completed successfully."""

    ERROR = 1
    """General error: invalid arguments, runtime error, etc."""

    TOOL_ERROR = 2
    """Tool reference not found or ambiguous, or the server reported an error."""

    SERVER_ERROR = 3
    """Server could not be started or is not ready."""

    CONFIG_ERROR = 4
    """Invalid config, unknown server name, etc."""

    INTERRUPTED = 130
    """User pressed Ctrl+C (128 + SIGINT=2)."""
