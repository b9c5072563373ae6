"""
Main CLI entry point for mcphub.

This module builds the argument parser and dispatches to command classes.
"""

import argparse
import sys
from pathlib import Path

from mcphub.cli.commands.mcp import DEFAULT_STARTUP_TIMEOUT, McpCommandGroup
from mcphub.cli.exit_codes import ExitCode
from mcphub.cli.logging_utils import setup_logging
from mcphub.config import Config
from mcphub.exceptions import ConfigError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcphub", description="Connect to MCP servers and use their tools."
    )
    parser.add_argument("--log-level", help="Console log level (default: MCPHUB_LOG_LEVEL or WARNING)")
    parser.add_argument("--config", help="Config file (default: ~/.mcphub/config.yaml)")
    parser.add_argument("--store", help="Server store file (default: ./.mcphub/mcp.yaml)")

    commands = parser.add_subparsers(dest="command")
    mcp = commands.add_parser("mcp", help="Manage and use MCP servers")
    sub = mcp.add_subparsers(dest="subcommand")

    add = sub.add_parser(
        "add",
        help="Add a server",
        usage="mcphub mcp add NAME [options] (--url URL | -- COMMAND [ARGS ...])",
    )
    add.add_argument("name", help="Server name, used as the tool namespace")
    add.add_argument("--url", help="Streamable HTTP endpoint of a remote server")
    add.add_argument("--env", action="append", metavar="KEY=VALUE", help="Environment for stdio servers")
    add.add_argument("--header", action="append", metavar="KEY=VALUE", help="HTTP header")
    add.add_argument("--bearer-env", metavar="VAR", help="Environment variable holding a bearer token")
    add.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    add.add_argument("--replace", action="store_true", help="Overwrite an existing server")

    ls = sub.add_parser("list", help="List servers")
    ls.add_argument("--json", action="store_true", help="Print JSON (secrets masked)")

    remove = sub.add_parser("remove", help="Remove a server")
    remove.add_argument("name")

    imp = sub.add_parser("import", help="Import servers from a Claude Desktop style JSON file")
    imp.add_argument("file", help="JSON file with an mcpServers object")
    imp.add_argument("--replace", action="store_true", help="Overwrite existing servers")

    tools = sub.add_parser("tools", help="List tools of one or all servers")
    tools.add_argument("name", nargs="?")
    tools.add_argument("--startup-timeout", type=float, default=DEFAULT_STARTUP_TIMEOUT)

    call = sub.add_parser("call", help="Invoke a tool")
    call.add_argument("reference", help="@server/tool")
    call.add_argument("--args", help="Tool arguments as a JSON object")
    call.add_argument("--timeout", type=float, help="Call timeout in seconds")
    call.add_argument("--startup-timeout", type=float, default=DEFAULT_STARTUP_TIMEOUT)

    return parser


def split_server_command(argv: list[str]) -> tuple[list[str], list[str]]:
    """Split off the stdio server command given after the first '--'."""
    if "--" not in argv:
        return argv, []
    index = argv.index("--")
    return argv[:index], argv[index + 1 :]


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else list(argv)
    argv, server_command = split_server_command(argv)
    args = parser.parse_args(argv)
    args.server_command = server_command

    try:
        config = Config.load(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return ExitCode.CONFIG_ERROR
    if args.store:
        config.store_path = Path(args.store).expanduser()
    setup_logging(config, args.log_level)

    if args.command != "mcp" or not args.subcommand:
        parser.print_help()
        return ExitCode.ERROR

    try:
        return McpCommandGroup(config=config).execute(args)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return ExitCode.INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
