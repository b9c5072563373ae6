"""mcphub mcp: manage and use configured MCP servers."""

import argparse
import json
from typing import Any

from rich.table import Table

from mcphub.cli.async_utils import safe_async_run
from mcphub.cli.commands.base import BaseCommand
from mcphub.cli.exit_codes import ExitCode
from mcphub.exceptions import ConfigError, McpHubError
from mcphub.mcp.config import ServerConfig
from mcphub.mcp.registry import split_reference
from mcphub.mcp.server_pool import ServerPool
from mcphub.mcp.store import load_claude_mcp_servers

# How long tools/call wait for servers to come up
DEFAULT_STARTUP_TIMEOUT = 30.0


def _parse_pairs(pairs: list[str] | None, option: str) -> dict[str, str]:
    """Parse repeated K=V options."""
    result = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigError(f"{option} expects KEY=VALUE, got '{pair}'")
        result[key] = value
    return result


class McpAddCommand(BaseCommand):
    """mcphub mcp add NAME [--url URL | -- COMMAND ARGS...]"""

    @property
    def name(self) -> str:
        return "mcp add"

    @property
    def description(self) -> str:
        return "Add an MCP server to the store"

    def validate_args(self, args: argparse.Namespace) -> tuple[bool, str]:
        command = self._command(args)
        if args.url and command:
            return (False, "Use either --url or a command, not both")
        if not args.url and not command:
            return (False, "Provide a command after '--' or --url URL")
        if args.url and args.env:
            return (False, "--env only applies to stdio servers")
        if command and (args.header or args.bearer_env):
            return (False, "--header and --bearer-env only apply to --url servers")
        return (True, "")

    @staticmethod
    def _command(args: argparse.Namespace) -> list[str]:
        return list(getattr(args, "server_command", None) or [])

    def build_config(self, args: argparse.Namespace) -> ServerConfig:
        settings: dict[str, Any] = {}
        if args.url:
            settings["transport"] = "http"
            settings["url"] = args.url
            settings["headers"] = _parse_pairs(args.header, "--header")
            if args.bearer_env:
                settings["bearer_token_env_var"] = args.bearer_env
        else:
            settings["transport"] = "stdio"
            settings["command"] = self._command(args)
            settings["env"] = _parse_pairs(args.env, "--env")
        settings["timeout"] = args.timeout if args.timeout is not None else self.config.default_timeout
        return ServerConfig.from_dict(args.name, settings)

    def execute(self, args: argparse.Namespace) -> int:
        valid, message = self.validate_args(args)
        if not valid:
            self.err_console.print(f"[red]Error:[/red] {message}")
            return ExitCode.ERROR
        try:
            config = self.build_config(args)
            self.store.add(config, replace=args.replace)
        except ConfigError as e:
            return self.fail(e)
        self.console.print(f"[green]✓[/green] Added MCP server '{config.name}' ({config.summary()})")
        return ExitCode.SUCCESS


class McpListCommand(BaseCommand):
    """mcphub mcp list"""

    @property
    def name(self) -> str:
        return "mcp list"

    @property
    def description(self) -> str:
        return "List configured MCP servers"

    def execute(self, args: argparse.Namespace) -> int:
        store = self.store
        try:
            servers = store.load()
        except ConfigError as e:
            return self.fail(e)

        if not servers:
            self.console.print(f"No MCP servers configured in {store.path}")
            self.console.print("Use 'mcphub mcp add' to add one.")
            return ExitCode.SUCCESS

        if getattr(args, "json", False):
            data = {name: config.to_dict(mask_secrets=True) for name, config in servers.items()}
            self.console.print_json(json.dumps(data))
            return ExitCode.SUCCESS

        table = Table(title="MCP servers")
        table.add_column("Name", style="cyan")
        table.add_column("Transport")
        table.add_column("Target")
        table.add_column("Enabled")
        for name, config in servers.items():
            target = config.url if config.is_remote() else " ".join([config.command, *config.args])
            table.add_row(name, config.transport, target, "yes" if config.enabled else "no")
        self.console.print(table)
        return ExitCode.SUCCESS


class McpRemoveCommand(BaseCommand):
    """mcphub mcp remove NAME"""

    @property
    def name(self) -> str:
        return "mcp remove"

    @property
    def description(self) -> str:
        return "Remove an MCP server from the store"

    def execute(self, args: argparse.Namespace) -> int:
        try:
            removed = self.store.remove(args.name)
        except ConfigError as e:
            return self.fail(e)
        if not removed:
            self.err_console.print(f"[red]Error:[/red] No MCP server named '{args.name}'")
            return ExitCode.CONFIG_ERROR
        self.console.print(f"[green]✓[/green] Removed MCP server '{args.name}'")
        return ExitCode.SUCCESS


class McpImportCommand(BaseCommand):
    """mcphub mcp import FILE"""

    @property
    def name(self) -> str:
        return "mcp import"

    @property
    def description(self) -> str:
        return "Import servers from a Claude Desktop style JSON file"

    def execute(self, args: argparse.Namespace) -> int:
        store = self.store
        try:
            imported = load_claude_mcp_servers(args.file)
            servers = store.load()
            added, skipped = [], []
            for name, config in imported.items():
                if name in servers and not args.replace:
                    skipped.append(name)
                    continue
                servers[name] = config
                added.append(name)
            if added:
                store.save(servers)
        except ConfigError as e:
            return self.fail(e)

        for name in added:
            self.console.print(f"[green]✓[/green] Imported MCP server '{name}'")
        for name in skipped:
            self.err_console.print(
                f"[yellow]![/yellow] Skipped '{name}': already exists (use --replace)"
            )
        if not imported:
            self.console.print(f"No MCP servers found in {args.file}")
        return ExitCode.SUCCESS


class McpToolsCommand(BaseCommand):
    """mcphub mcp tools [NAME]"""

    @property
    def name(self) -> str:
        return "mcp tools"

    @property
    def description(self) -> str:
        return "Connect to servers and list their tools as @server/tool"

    def _select(self, args: argparse.Namespace) -> dict[str, ServerConfig]:
        servers = self.store.load()
        if args.name:
            if args.name not in servers:
                raise ConfigError(f"No MCP server named '{args.name}'", server=args.name)
            return {args.name: servers[args.name]}
        return {name: config for name, config in servers.items() if config.enabled}

    async def _collect(self, servers: dict[str, ServerConfig], timeout: float):
        async with ServerPool(servers, client_info=self.client_info()) as pool:
            await pool.wait_until_settled(timeout)
            return pool.tools(), pool.status()

    def execute(self, args: argparse.Namespace) -> int:
        try:
            servers = self._select(args)
        except ConfigError as e:
            return self.fail(e)
        if not servers:
            self.console.print("No enabled MCP servers configured.")
            return ExitCode.SUCCESS

        tools, status = safe_async_run(self._collect(servers, args.startup_timeout))

        table = Table(title="MCP tools")
        table.add_column("Tool", style="cyan")
        table.add_column("Description")
        for tool in tools:
            description = tool.title or tool.description
            table.add_row(tool.reference, description.splitlines()[0] if description else "")
        self.console.print(table)

        failed = {name: info for name, info in status.items() if info["state"] != "ready"}
        for name, info in failed.items():
            detail = info["error"] or info["state"]
            self.err_console.print(f"[yellow]![/yellow] @{name}: {detail}")
        return ExitCode.SERVER_ERROR if failed and args.name else ExitCode.SUCCESS


class McpCallCommand(BaseCommand):
    """mcphub mcp call REFERENCE [--args JSON]"""

    @property
    def name(self) -> str:
        return "mcp call"

    @property
    def description(self) -> str:
        return "Invoke a tool and print its result"

    def _arguments(self, args: argparse.Namespace) -> dict[str, Any]:
        if not args.args:
            return {}
        try:
            arguments = json.loads(args.args)
        except json.JSONDecodeError as e:
            raise ConfigError(f"--args is not valid JSON: {e}") from e
        if not isinstance(arguments, dict):
            raise ConfigError("--args must be a JSON object")
        return arguments

    async def _invoke(
        self, config: ServerConfig, reference: str, arguments: dict[str, Any], args: argparse.Namespace
    ) -> Any:
        async with ServerPool([config], client_info=self.client_info()) as pool:
            await pool.wait_until_settled(args.startup_timeout)
            # Without --timeout the server's stored timeout applies
            return await pool.invoke(reference, arguments, timeout=args.timeout)

    def execute(self, args: argparse.Namespace) -> int:
        server_name, _ = split_reference(args.reference)
        try:
            arguments = self._arguments(args)
            config = self.store.get(server_name)
            if config is None:
                raise ConfigError(f"No MCP server named '{server_name}'", server=server_name)
            result = safe_async_run(self._invoke(config, args.reference, arguments, args))
        except McpHubError as e:
            return self.fail(e)

        self.console.print_json(json.dumps(result, ensure_ascii=False))
        if isinstance(result, dict) and result.get("isError"):
            return ExitCode.TOOL_ERROR
        return ExitCode.SUCCESS


class McpCommandGroup(BaseCommand):
    """MCP server command group."""

    subcommands = {
        "add": McpAddCommand,
        "list": McpListCommand,
        "remove": McpRemoveCommand,
        "import": McpImportCommand,
        "tools": McpToolsCommand,
        "call": McpCallCommand,
    }

    @property
    def name(self) -> str:
        return "mcp"

    @property
    def description(self) -> str:
        return "Manage and use MCP servers"

    def execute(self, args: argparse.Namespace) -> int:
        """Route to subcommand."""
        command_cls = self.subcommands.get(args.subcommand)
        if command_cls is None:
            self.err_console.print(f"[red]Error:[/red] Unknown subcommand '{args.subcommand}'")
            self.err_console.print(f"Available subcommands: {', '.join(self.subcommands)}")
            return ExitCode.ERROR
        command = command_cls(config=self.config, console=self.console, err_console=self.err_console)
        return command.execute(args)
