"""Click command group for mssql-mcp."""

import asyncio
import os
import sys
from importlib.metadata import PackageNotFoundError, version

import click
from rich.console import Console
from rich.table import Table

from mssql_mcp.config import get_settings, reset_settings
from mssql_mcp.db.manager import ConnectionManager
from mssql_mcp.errors import MssqlMcpError
from mssql_mcp.tools import get_tools

console = Console()


def _get_cli_version() -> str:
    """Installed package version, or "unknown" from a source checkout."""
    try:
        return version("mssql-mcp")
    except PackageNotFoundError:
        return "unknown"


@click.group()
@click.version_option(version=_get_cli_version())
def main():
    """mssql-mcp - Microsoft SQL Server MCP server."""
    pass


@main.command()
@click.option(
    "--transport",
    type=click.Choice(["stdio", "http"]),
    default=None,
    help="Override MCP_TRANSPORT.",
)
@click.option("--readonly", is_flag=True, default=False, help="Expose only read tools.")
def start(transport: str | None, readonly: bool):
    """Start the MCP server."""
    if transport:
        os.environ["MCP_TRANSPORT"] = transport
    if readonly:
        os.environ["READONLY"] = "true"
    reset_settings()

    from mssql_mcp.server import main as server_main

    server_main()


async def _check() -> dict:
    manager = ConnectionManager(get_settings())
    try:
        await manager.ensure_connection()
        return manager.status()
    finally:
        await manager.close()


@main.command()
def check():
    """Resolve credentials and open one connection."""
    settings = get_settings()
    console.print(
        f"Connecting to [bold]{settings.server_name or '<unset>'}[/bold]/"
        f"[bold]{settings.database_name or '<unset>'}[/bold] "
        f"using [cyan]{settings.auth_type}[/cyan] authentication..."
    )
    try:
        status = asyncio.run(_check())
    except MssqlMcpError as e:
        console.print(f"[red]{e.category}:[/red] {e}")
        sys.exit(1)

    table = Table(title="Connection")
    table.add_column("Setting", style="bold", no_wrap=True)
    table.add_column("Value")
    for key, value in (status.get("descriptor") or {}).items():
        table.add_row(key, str(value))
    if status.get("token_expires_at"):
        table.add_row("token_expires_at", status["token_expires_at"])
    console.print(table)
    console.print("[green]Connection OK[/green]")


@main.command()
def tools():
    """List the tools the server would register."""
    settings = get_settings()
    table = Table(title="Read-only tools" if settings.readonly else "Tools")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Kind", no_wrap=True)
    table.add_column("Description")
    for tool in get_tools(settings.readonly).values():
        table.add_row(tool.name, tool.kind.value, tool.description)
    console.print(table)


if __name__ == "__main__":
    main()
