"""The SQL Server tool set.

Each tool pairs a pydantic argument model with a synchronous ``run`` function
that receives a checked-out SQLAlchemy connection. Tools never connect on
their own; the dispatcher lends them the shared connection.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from mssql_mcp.intent import OperationKind
from mssql_mcp.tools.data import (
    DeleteDataArgs,
    InsertDataArgs,
    ReadDataArgs,
    UpdateDataArgs,
    delete_data,
    insert_data,
    read_data,
    update_data,
)
from mssql_mcp.tools.schema import (
    CreateIndexArgs,
    CreateTableArgs,
    DescribeTableArgs,
    DropTableArgs,
    ListTableArgs,
    create_index,
    create_table,
    describe_table,
    drop_table,
    list_table,
)


@dataclass(frozen=True)
class Tool:
    name: str
    kind: OperationKind
    description: str
    args_model: type[BaseModel]
    run: Callable[[Any, Any], dict[str, Any]]
    # Argument holding the WHERE expression, for kinds that require one
    predicate_arg: str | None = None

    def parse_args(self, arguments: dict[str, Any]) -> BaseModel:
        """Validate raw arguments (raises pydantic.ValidationError)."""
        return self.args_model.model_validate(arguments)

    def argument_schema(self) -> dict[str, Any]:
        return self.args_model.model_json_schema()


ALL_TOOLS: tuple[Tool, ...] = (
    Tool(
        name="read_data",
        kind=OperationKind.READ,
        description="Read rows from a table. A restrictive 'filter' is required.",
        args_model=ReadDataArgs,
        run=read_data,
        predicate_arg="filter",
    ),
    Tool(
        name="insert_data",
        kind=OperationKind.INSERT,
        description="Insert one row, or several rows with the same columns, into a table.",
        args_model=InsertDataArgs,
        run=insert_data,
    ),
    Tool(
        name="update_data",
        kind=OperationKind.UPDATE,
        description="Update rows in a table. A restrictive 'where' expression is required.",
        args_model=UpdateDataArgs,
        run=update_data,
        predicate_arg="where",
    ),
    Tool(
        name="delete_data",
        kind=OperationKind.DELETE,
        description="Delete rows from a table. A restrictive 'where' expression is required.",
        args_model=DeleteDataArgs,
        run=delete_data,
        predicate_arg="where",
    ),
    Tool(
        name="create_table",
        kind=OperationKind.DDL,
        description="Create a table from a list of column definitions.",
        args_model=CreateTableArgs,
        run=create_table,
    ),
    Tool(
        name="create_index",
        kind=OperationKind.DDL,
        description="Create an index on one or more columns of a table.",
        args_model=CreateIndexArgs,
        run=create_index,
    ),
    Tool(
        name="drop_table",
        kind=OperationKind.DDL,
        description="Drop a table.",
        args_model=DropTableArgs,
        run=drop_table,
    ),
    Tool(
        name="list_table",
        kind=OperationKind.CATALOG,
        description="List the tables in the database, optionally limited to some schemas.",
        args_model=ListTableArgs,
        run=list_table,
    ),
    Tool(
        name="describe_table",
        kind=OperationKind.CATALOG,
        description="Describe the columns of a table.",
        args_model=DescribeTableArgs,
        run=describe_table,
    ),
)


def get_tools(readonly: bool = False) -> dict[str, Tool]:
    """Tools to register, keyed by name. Read-only mode drops mutating tools."""
    return {
        tool.name: tool for tool in ALL_TOOLS if not (readonly and tool.kind.is_mutating)
    }


__all__ = ["ALL_TOOLS", "Tool", "get_tools"]
