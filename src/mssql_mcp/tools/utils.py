"""Shared helpers for the SQL Server tools: identifiers, SQL fragments, results."""

import re
from typing import Any

from sqlalchemy import CursorResult

from mssql_mcp.errors import OperationError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$#@ ]*$")
_STRING_LITERAL_RE = re.compile(r"N?'(?:[^']|'')*'")
_BRACKETED_RE = re.compile(r"\[(?:[^\]]|\]\])*\]")

# Statements and procedures that must never appear inside a filter expression
_FORBIDDEN_KEYWORDS = re.compile(
    r"\b(insert|update|delete|merge|drop|alter|create|truncate|exec|execute|"
    r"grant|revoke|deny|backup|restore|shutdown|dbcc|into|union|waitfor|"
    r"openrowset|opendatasource|openquery|bulk|xp_\w+|sp_\w+)\b",
    re.IGNORECASE,
)

# Column type plus optional modifiers: "nvarchar(100) NOT NULL", "int IDENTITY(1,1)"
COLUMN_TYPE_RE = re.compile(
    r"^[A-Za-z][A-Za-z0-9_]*"
    r"(\s*\(\s*(\d+|max)\s*(,\s*\d+\s*)?\))?"
    r"[A-Za-z0-9_ (),]*$",
    re.IGNORECASE,
)


def quote_identifier(name: str) -> str:
    """Validate a single identifier and wrap it in brackets."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name) or name != name.strip():
        raise OperationError(f"Invalid identifier: {name!r}")
    return f"[{name}]"


def qualify_table(table: str) -> str:
    """Quote a ``table`` or ``schema.table`` name."""
    parts = table.split(".") if isinstance(table, str) else []
    if not 1 <= len(parts) <= 2:
        raise OperationError(f"Invalid table name: {table!r}")
    return ".".join(quote_identifier(part) for part in parts)


def split_table(table: str) -> tuple[str | None, str]:
    """Split ``schema.table`` into its parts (schema may be None)."""
    qualify_table(table)
    if "." in table:
        schema, name = table.split(".", 1)
        return schema, name
    return None, table


def mask_literals(fragment: str) -> str:
    """Replace string literals and bracketed identifiers with placeholders.

    Raises:
        OperationError: If a string literal or bracket is left unterminated.
    """
    masked = _STRING_LITERAL_RE.sub("''", fragment)
    masked = _BRACKETED_RE.sub("[x]", masked)
    if "'" in masked.replace("''", "") or "[" in masked.replace("[x]", ""):
        raise OperationError("Unterminated string literal or identifier in SQL fragment")
    return masked


def validate_sql_fragment(fragment: str, field: str) -> str:
    """Check that a caller-supplied expression cannot smuggle in another statement.

    Args:
        fragment: The raw SQL expression (e.g. a WHERE predicate)
        field: Argument name, used in the error message

    Returns:
        The stripped fragment
    """
    if not isinstance(fragment, str):
        raise OperationError(f"'{field}' must be a string")
    fragment = fragment.strip()
    masked = mask_literals(fragment)
    if ";" in masked:
        raise OperationError(f"'{field}' must not contain ';'")
    if "--" in masked or "/*" in masked:
        raise OperationError(f"'{field}' must not contain SQL comments")
    match = _FORBIDDEN_KEYWORDS.search(masked)
    if match:
        raise OperationError(f"'{field}' must not contain the keyword {match.group(0).upper()}")
    return fragment


def escape_binds(fragment: str) -> str:
    """Escape colons so ``text()`` does not read them as bind parameters."""
    return fragment.replace(":", "\\:")


def rows_to_dicts(result: CursorResult) -> list[dict[str, Any]]:
    """Materialise a result as a list of column -> value dicts."""
    columns = list(result.keys())
    return [dict(zip(columns, row)) for row in result]
