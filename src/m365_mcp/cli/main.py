"""Command-line interface for m365-mcp."""

import asyncio
import json
import sys
from typing import Any

import click

from m365_mcp.__version__ import __version__


def _load_settings(cli_command: str | None = None) -> Any:
    """Read settings from the environment, applying command-line overrides."""
    from m365_mcp.config import M365Settings
    from m365_mcp.errors import ConfigurationError

    try:
        settings = M365Settings.from_env()
    except ConfigurationError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)

    if cli_command:
        settings = settings.model_copy(update={"cli_command": cli_command})
    return settings


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Microsoft 365 MCP Server - Connect agents to Outlook mail and calendar.

    Tools:
    - Mail (latest message, list, unread, reply, mark read, attachments)
    - Calendar (list events, create events and Teams meetings)

    Authentication is delegated to the CLI for Microsoft 365.
    Run 'm365 login' once before using any command.
    """
    pass


@main.command()
@click.option("--cli-command", envvar="M365_CLI_COMMAND", help="m365 CLI executable")
def mcp(cli_command: str | None) -> None:
    """Start the MCP server over stdio.

    Acquires a first Graph token at startup, so a missing login is reported
    immediately rather than on the first tool call.

    This command is typically invoked by an MCP client via the MCP protocol.
    """
    from m365_mcp.server import main as server_main

    settings = _load_settings(cli_command)
    try:
        click.echo("Starting Microsoft 365 MCP server...", err=True)
        server_main(settings)
    except KeyboardInterrupt:
        click.echo("\nServer stopped.", err=True)
    except Exception as e:
        click.echo(f"❌ Server error: {e}", err=True)
        sys.exit(1)


@main.command()
def tools() -> None:
    """Print the tool manifest as JSON.

    Tools of disabled capabilities (M365_ENABLE_MAIL / M365_ENABLE_CALENDAR)
    are left out.
    """
    from m365_mcp.tools import create_manifest

    settings = _load_settings()
    click.echo(json.dumps(create_manifest(settings), indent=2))


@main.command()
@click.argument("name")
@click.option("--args", "arguments", default="{}", help="Tool arguments as a JSON object")
@click.option("--cli-command", envvar="M365_CLI_COMMAND", help="m365 CLI executable")
def call(name: str, arguments: str, cli_command: str | None) -> None:
    """Invoke a single tool and print its JSON result.

    Example:

        m365-mcp call mail.messages.list --args '{"maxResults": 5}'
    """
    from m365_mcp.server import ToolServer

    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        click.echo(f"❌ --args is not valid JSON: {e}", err=True)
        sys.exit(2)

    settings = _load_settings(cli_command)

    async def run() -> dict[str, Any]:
        async with ToolServer(settings) as server:
            return await server.call_tool(name, parsed)

    try:
        result = asyncio.run(run())
    except Exception as e:
        click.echo(f"❌ {name} failed: {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(result, indent=2, default=str))


@main.command()
@click.option("--cli-command", envvar="M365_CLI_COMMAND", help="m365 CLI executable")
def doctor(cli_command: str | None) -> None:
    """Check installation and authentication status.

    Verifies:
    1. Configuration is valid
    2. The m365 CLI can be found
    3. A Graph token can be acquired for the bootstrap scopes
    """
    from m365_mcp.auth import CliCredentialProvider, CredentialStatus

    click.echo("Microsoft 365 MCP Status:")
    click.echo("")

    settings = _load_settings(cli_command)
    click.echo("Configuration:")
    click.echo(f"  CLI command: {settings.cli_command}")
    click.echo(f"  Bootstrap scopes: {', '.join(settings.bootstrap_scopes) or '(default)'}")
    click.echo(f"  Enabled tools: {', '.join(sorted(settings.enabled_namespaces())) or 'none'}")
    if settings.reply_redirect_to:
        click.echo(f"  ⚠️  Replies are redirected to {settings.reply_redirect_to}")
    click.echo("")

    provider = CliCredentialProvider(settings)
    status, error = asyncio.run(provider.get_status(settings.bootstrap_scopes))

    click.echo("Authentication:")
    if status == CredentialStatus.CLI_MISSING:
        click.echo(f"  ❌ {error}")
        sys.exit(1)
    elif status == CredentialStatus.FAILED:
        click.echo("  ✓ m365 CLI found")
        click.echo(f"  ❌ Token acquisition failed: {error}")
        click.echo("")
        click.echo("Run 'm365 login' to authenticate.")
        sys.exit(1)

    click.echo("  ✓ m365 CLI found")
    click.echo("  ✓ Token acquired")
    if not provider.scopes_option_supported:
        click.echo("  ⚠️  CLI does not support --scope; default scopes are used")
    click.echo("")
    click.echo("✓ Ready to use!")


if __name__ == "__main__":
    main()
