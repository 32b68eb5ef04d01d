"""Credential resolution and the shared connection lifecycle."""

from mssql_mcp.db.connection import SharedConnection, open_connection
from mssql_mcp.db.credentials import AuthMode, ConnectionDescriptor, TokenLease, resolve
from mssql_mcp.db.manager import ConnectionManager, ConnectionState

__all__ = [
    "AuthMode",
    "ConnectionDescriptor",
    "ConnectionManager",
    "ConnectionState",
    "SharedConnection",
    "TokenLease",
    "open_connection",
    "resolve",
]
