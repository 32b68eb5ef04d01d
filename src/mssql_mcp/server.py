"""FastMCP server for mssql-mcp."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from mssql_mcp.config import Settings, get_settings
from mssql_mcp.db.manager import ConnectionManager
from mssql_mcp.dispatch import ToolDispatcher
from mssql_mcp.tools import get_tools

logger = logging.getLogger(__name__)


INSTRUCTIONS = """
Microsoft SQL Server access over MCP.

## Workflow

1. `list_table()` to see the tables, `describe_table(table="dbo.Customers")`
   for their columns.
2. `read_data` with a `filter` that restricts rows, e.g.
   `read_data(table="dbo.Customers", filter="City = 'Redmond'")`.
3. `insert_data`, `update_data`, `delete_data` and the DDL tools when the
   server is not read-only.

## Safety rules

- `read_data`, `update_data` and `delete_data` REQUIRE a filter. A missing
  filter, or one that is always true (`1=1`), is rejected.
- Filters are single SQL expressions: no `;`, no comments, no statements.
"""


def _create_server(
    settings: Settings | None = None,
    manager: ConnectionManager | None = None,
) -> FastMCP:
    """Create the MCP server and register the tools allowed by the settings."""
    settings = settings or get_settings()
    manager = manager or ConnectionManager(settings)
    dispatcher = ToolDispatcher(manager, get_tools(settings.readonly))

    @asynccontextmanager
    async def server_lifespan(server: FastMCP) -> AsyncIterator[None]:
        """Release the shared connection when the session ends."""
        try:
            yield
        finally:
            await manager.reset()
            logger.info("Shared connection released")

    server = FastMCP(
        name="mssql-mcp",
        lifespan=server_lifespan,
        instructions=INSTRUCTIONS,
    )

    async def _call(tool_name: str, arguments: dict[str, Any]) -> dict:
        response = await dispatcher.dispatch(tool_name, arguments)
        if response.is_error:
            raise ToolError(response.text)
        return response.data

    # =========================================================================
    # Core tools - always available
    # =========================================================================

    async def _ping() -> dict:
        """Health check - verify server is running (does not connect)."""
        return {
            "status": "ok",
            "readonly": settings.readonly,
            "tools": sorted(dispatcher.tools),
            "connection": manager.status(),
        }

    server.tool(name="ping")(_ping)

    # =========================================================================
    # Data tools
    # =========================================================================

    async def _read_data(
        table: str,
        filter: str | None = None,
        columns: list[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int = 100,
    ) -> dict:
        """Read rows from a table.

        Args:
            table: Table name, optionally schema-qualified (dbo.Customers).
            filter: REQUIRED SQL WHERE expression, e.g. "City = 'Redmond'".
            columns: Columns to return (all when omitted).
            order_by: Column to sort by.
            descending: Sort descending.
            limit: Maximum rows to return (1-1000).
        """
        return await _call(
            "read_data",
            {
                "table": table,
                "filter": filter,
                "columns": columns,
                "order_by": order_by,
                "descending": descending,
                "limit": limit,
            },
        )

    async def _insert_data(table: str, data: dict[str, Any] | list[dict[str, Any]]) -> dict:
        """Insert one row, or a list of rows with the same columns.

        Args:
            table: Table name, optionally schema-qualified.
            data: Column -> value mapping, or a list of them.
        """
        return await _call("insert_data", {"table": table, "data": data})

    async def _update_data(
        table: str, updates: dict[str, Any], where: str | None = None
    ) -> dict:
        """Update rows matching a WHERE expression.

        Args:
            table: Table name, optionally schema-qualified.
            updates: Column -> new value.
            where: REQUIRED SQL WHERE expression selecting the rows.
        """
        return await _call("update_data", {"table": table, "updates": updates, "where": where})

    async def _delete_data(table: str, where: str | None = None) -> dict:
        """Delete rows matching a WHERE expression.

        Args:
            table: Table name, optionally schema-qualified.
            where: REQUIRED SQL WHERE expression selecting the rows.
        """
        return await _call("delete_data", {"table": table, "where": where})

    # =========================================================================
    # Schema tools
    # =========================================================================

    async def _create_table(table: str, columns: list[dict[str, str]]) -> dict:
        """Create a table.

        Args:
            table: Table name, optionally schema-qualified.
            columns: List of {"name": ..., "type": ...}, e.g.
                {"name": "Id", "type": "int IDENTITY(1,1) PRIMARY KEY"}.
        """
        return await _call("create_table", {"table": table, "columns": columns})

    async def _create_index(
        table: str,
        index_name: str,
        columns: list[str],
        unique: bool = False,
        clustered: bool = False,
    ) -> dict:
        """Create an index on a table."""
        return await _call(
            "create_index",
            {
                "table": table,
                "index_name": index_name,
                "columns": columns,
                "unique": unique,
                "clustered": clustered,
            },
        )

    async def _drop_table(table: str) -> dict:
        """Drop a table."""
        return await _call("drop_table", {"table": table})

    async def _list_table(schemas: list[str] | None = None) -> dict:
        """List the tables in the database.

        Args:
            schemas: Only list tables in these schemas.
        """
        return await _call("list_table", {"schemas": schemas})

    async def _describe_table(table: str) -> dict:
        """Describe the columns of a table.

        Args:
            table: Table name, optionally schema-qualified.
        """
        return await _call("describe_table", {"table": table})

    handlers = {
        "read_data": _read_data,
        "insert_data": _insert_data,
        "update_data": _update_data,
        "delete_data": _delete_data,
        "create_table": _create_table,
        "create_index": _create_index,
        "drop_table": _drop_table,
        "list_table": _list_table,
        "describe_table": _describe_table,
    }
    # Read-only mode registers only the tools the dispatcher knows
    for name in dispatcher.tools:
        server.tool(name=name)(handlers[name])

    return server


def _configure_logging(level: str = "INFO") -> None:
    """Configure logging before anything else (stderr, stdout belongs to stdio)."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main():
    """Run the MCP server."""
    settings = get_settings()
    _configure_logging(settings.log_level)

    logger.info(
        f"Starting mssql-mcp for {settings.server_name or '<unset>'}/"
        f"{settings.database_name or '<unset>'} "
        f"(auth: {settings.auth_type}, readonly: {settings.readonly})"
    )
    server = _create_server(settings)

    if settings.mcp_transport == "http":
        server.run(
            transport="http",
            host=settings.mcp_host,
            port=settings.mcp_port,
            path=settings.mcp_path,
        )
    else:
        # Default: stdio for local clients
        server.run()


if __name__ == "__main__":
    main()
