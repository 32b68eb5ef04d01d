"""Schema tools: DDL and catalog lookups."""

import logging
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import Connection, text

from mssql_mcp.errors import OperationError
from mssql_mcp.tools.utils import (
    COLUMN_TYPE_RE,
    qualify_table,
    quote_identifier,
    rows_to_dicts,
    split_table,
    validate_sql_fragment,
)

logger = logging.getLogger(__name__)


class ColumnDefinition(BaseModel):
    name: str = Field(description="Column name")
    type: str = Field(description="SQL Server type and modifiers, e.g. 'nvarchar(100) NOT NULL'")


class CreateTableArgs(BaseModel):
    table: str = Field(description="Table name, optionally schema-qualified")
    columns: list[ColumnDefinition] = Field(min_length=1, description="Column definitions")


class CreateIndexArgs(BaseModel):
    table: str = Field(description="Table name, optionally schema-qualified")
    index_name: str = Field(description="Name of the new index")
    columns: list[str] = Field(min_length=1, description="Indexed columns, in order")
    unique: bool = Field(default=False, description="Create a UNIQUE index")
    clustered: bool = Field(default=False, description="Create a CLUSTERED index")


class DropTableArgs(BaseModel):
    table: str = Field(description="Table name, optionally schema-qualified")


class ListTableArgs(BaseModel):
    schemas: list[str] | None = Field(
        default=None, description="Only list tables in these schemas"
    )


class DescribeTableArgs(BaseModel):
    table: str = Field(description="Table name, optionally schema-qualified")


def _column_type(column: ColumnDefinition) -> str:
    column_type = validate_sql_fragment(column.type, f"type of column {column.name}")
    if not COLUMN_TYPE_RE.match(column_type):
        raise OperationError(f"Invalid type for column {column.name!r}: {column.type!r}")
    return column_type


def create_table(conn: Connection, args: CreateTableArgs) -> dict[str, Any]:
    table = qualify_table(args.table)
    definitions = ", ".join(
        f"{quote_identifier(column.name)} {_column_type(column)}" for column in args.columns
    )
    conn.execute(text(f"CREATE TABLE {table} ({definitions})"))
    logger.info(f"Created table {args.table}")
    return {
        "success": True,
        "table": args.table,
        "message": f"Created table {args.table} with {len(args.columns)} column(s)",
    }


def create_index(conn: Connection, args: CreateIndexArgs) -> dict[str, Any]:
    table = qualify_table(args.table)
    index = quote_identifier(args.index_name)
    columns = ", ".join(quote_identifier(c) for c in args.columns)

    parts = ["CREATE"]
    if args.unique:
        parts.append("UNIQUE")
    parts.append("CLUSTERED" if args.clustered else "NONCLUSTERED")
    parts.append(f"INDEX {index} ON {table} ({columns})")

    conn.execute(text(" ".join(parts)))
    logger.info(f"Created index {args.index_name} on {args.table}")
    return {
        "success": True,
        "table": args.table,
        "index_name": args.index_name,
        "message": f"Created index {args.index_name} on {args.table}",
    }


def drop_table(conn: Connection, args: DropTableArgs) -> dict[str, Any]:
    table = qualify_table(args.table)
    conn.execute(text(f"DROP TABLE {table}"))
    logger.info(f"Dropped table {args.table}")
    return {
        "success": True,
        "table": args.table,
        "message": f"Dropped table {args.table}",
    }


def list_table(conn: Connection, args: ListTableArgs) -> dict[str, Any]:
    """List base tables as ``schema.table`` names."""
    sql = (
        "SELECT TABLE_SCHEMA, TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
        "WHERE TABLE_TYPE = 'BASE TABLE'"
    )
    params: dict[str, Any] = {}
    if args.schemas:
        placeholders = ", ".join(f":s{i}" for i in range(len(args.schemas)))
        sql += f" AND TABLE_SCHEMA IN ({placeholders})"
        params = {f"s{i}": schema for i, schema in enumerate(args.schemas)}
    sql += " ORDER BY TABLE_SCHEMA, TABLE_NAME"

    result = conn.execute(text(sql), params)
    tables = [f"{row.TABLE_SCHEMA}.{row.TABLE_NAME}" for row in result]
    return {"success": True, "tables": tables, "count": len(tables)}


def describe_table(conn: Connection, args: DescribeTableArgs) -> dict[str, Any]:
    """Column metadata from INFORMATION_SCHEMA.COLUMNS."""
    schema, name = split_table(args.table)
    sql = (
        "SELECT COLUMN_NAME AS name, DATA_TYPE AS type, IS_NULLABLE AS nullable, "
        "CHARACTER_MAXIMUM_LENGTH AS max_length, NUMERIC_PRECISION AS [precision], "
        "NUMERIC_SCALE AS scale, COLUMN_DEFAULT AS [default] "
        "FROM INFORMATION_SCHEMA.COLUMNS WHERE TABLE_NAME = :name"
    )
    params = {"name": name}
    if schema is not None:
        sql += " AND TABLE_SCHEMA = :schema"
        params["schema"] = schema
    sql += " ORDER BY ORDINAL_POSITION"

    columns = rows_to_dicts(conn.execute(text(sql), params))
    if not columns:
        raise OperationError(f"Table {args.table!r} not found")
    for column in columns:
        column["nullable"] = column["nullable"] == "YES"
    return {"success": True, "table": args.table, "columns": columns, "count": len(columns)}
