"""Row-level tools: read, insert, update and delete."""

import logging
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import Connection, text

from mssql_mcp.errors import OperationError
from mssql_mcp.tools.utils import (
    escape_binds,
    qualify_table,
    quote_identifier,
    rows_to_dicts,
    validate_sql_fragment,
)

logger = logging.getLogger(__name__)

MAX_READ_ROWS = 1000


class ReadDataArgs(BaseModel):
    table: str = Field(description="Table name, optionally schema-qualified (dbo.Customers)")
    filter: str = Field(
        description="SQL WHERE expression restricting the rows, e.g. \"City = 'Redmond'\""
    )
    columns: list[str] | None = Field(
        default=None, description="Columns to return (all columns when omitted)"
    )
    order_by: str | None = Field(default=None, description="Column to sort by")
    descending: bool = Field(default=False, description="Sort descending")
    limit: int = Field(default=100, ge=1, le=MAX_READ_ROWS, description="Maximum rows")


class InsertDataArgs(BaseModel):
    table: str = Field(description="Table name, optionally schema-qualified")
    data: dict[str, Any] | list[dict[str, Any]] = Field(
        description="A row (column -> value) or a list of rows sharing the same columns"
    )


class UpdateDataArgs(BaseModel):
    table: str = Field(description="Table name, optionally schema-qualified")
    updates: dict[str, Any] = Field(description="Column -> new value")
    where: str = Field(description="SQL WHERE expression selecting the rows to update")


class DeleteDataArgs(BaseModel):
    table: str = Field(description="Table name, optionally schema-qualified")
    where: str = Field(description="SQL WHERE expression selecting the rows to delete")


def read_data(conn: Connection, args: ReadDataArgs) -> dict[str, Any]:
    """SELECT rows matching a filter."""
    table = qualify_table(args.table)
    where = validate_sql_fragment(args.filter, "filter")
    columns = ", ".join(quote_identifier(c) for c in args.columns) if args.columns else "*"

    sql = f"SELECT TOP (:limit) {columns} FROM {table} WHERE {escape_binds(where)}"
    if args.order_by:
        sql += f" ORDER BY {quote_identifier(args.order_by)}"
        if args.descending:
            sql += " DESC"

    result = conn.execute(text(sql), {"limit": args.limit})
    rows = rows_to_dicts(result)
    return {
        "success": True,
        "table": args.table,
        "rows": rows,
        "row_count": len(rows),
        "truncated": len(rows) == args.limit,
    }


def insert_data(conn: Connection, args: InsertDataArgs) -> dict[str, Any]:
    """INSERT one or more rows with bound parameters."""
    rows = [args.data] if isinstance(args.data, dict) else list(args.data)
    if not rows or not rows[0]:
        raise OperationError("'data' must contain at least one row with at least one column")

    columns = list(rows[0].keys())
    for i, row in enumerate(rows[1:], start=1):
        if set(row.keys()) != set(columns):
            raise OperationError(
                f"Row {i} has columns {sorted(row.keys())}; expected {sorted(columns)}"
            )

    table = qualify_table(args.table)
    column_list = ", ".join(quote_identifier(c) for c in columns)
    placeholders = ", ".join(f":p{i}" for i in range(len(columns)))
    sql = f"INSERT INTO {table} ({column_list}) VALUES ({placeholders})"

    params = [{f"p{i}": row[c] for i, c in enumerate(columns)} for row in rows]
    conn.execute(text(sql), params)
    logger.info(f"Inserted {len(rows)} row(s) into {args.table}")
    return {
        "success": True,
        "table": args.table,
        "inserted": len(rows),
        "message": f"Inserted {len(rows)} row(s) into {args.table}",
    }


def update_data(conn: Connection, args: UpdateDataArgs) -> dict[str, Any]:
    """UPDATE the rows matching ``where``."""
    if not args.updates:
        raise OperationError("'updates' must name at least one column")

    table = qualify_table(args.table)
    where = validate_sql_fragment(args.where, "where")
    columns = list(args.updates.keys())
    assignments = ", ".join(f"{quote_identifier(c)} = :u{i}" for i, c in enumerate(columns))
    sql = f"UPDATE {table} SET {assignments} WHERE {escape_binds(where)}"

    params = {f"u{i}": args.updates[c] for i, c in enumerate(columns)}
    result = conn.execute(text(sql), params)
    logger.info(f"Updated {result.rowcount} row(s) in {args.table}")
    return {
        "success": True,
        "table": args.table,
        "rows_affected": result.rowcount,
        "message": f"Updated {result.rowcount} row(s) in {args.table}",
    }


def delete_data(conn: Connection, args: DeleteDataArgs) -> dict[str, Any]:
    """DELETE the rows matching ``where``."""
    table = qualify_table(args.table)
    where = validate_sql_fragment(args.where, "where")
    result = conn.execute(text(f"DELETE FROM {table} WHERE {escape_binds(where)}"))
    logger.info(f"Deleted {result.rowcount} row(s) from {args.table}")
    return {
        "success": True,
        "table": args.table,
        "rows_affected": result.rowcount,
        "message": f"Deleted {result.rowcount} row(s) from {args.table}",
    }
