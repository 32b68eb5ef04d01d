"""Database connection management."""

import logging
from datetime import datetime, timezone

from sqlalchemy import Connection, Engine, create_engine, text
from sqlalchemy.engine import URL

from mssql_mcp.db.credentials import (
    AccessTokenAuth,
    ConnectionDescriptor,
    access_token_attrs,
    build_odbc_connect_string,
)
from mssql_mcp.errors import ConnectionFailure

logger = logging.getLogger(__name__)


class SharedConnection:
    """The process-wide connection resource.

    Wraps a pooled SQLAlchemy engine. Tools never see this object; they get a
    :class:`sqlalchemy.Connection` checked out for one invocation via
    :meth:`begin`.
    """

    def __init__(self, engine: Engine, descriptor: ConnectionDescriptor) -> None:
        self.engine = engine
        self.descriptor = descriptor
        self.opened_at = datetime.now(timezone.utc)
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def mark_disconnected(self) -> None:
        """Flag the connection as unusable (e.g. the driver invalidated it)."""
        self._connected = False

    def begin(self):
        """Check out a connection inside a transaction (commit on success)."""
        return self.engine.begin()

    def close(self) -> None:
        """Dispose the engine and its pool.

        Connections currently checked out finish their work and are discarded
        when returned.
        """
        self._connected = False
        try:
            self.engine.dispose()
            logger.info(
                f"Closed connection pool for {self.descriptor.server}/{self.descriptor.database}"
            )
        except Exception as e:
            logger.warning(f"Error disposing connection pool: {e}")


def create_mssql_engine(
    descriptor: ConnectionDescriptor,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> Engine:
    """Create a SQLAlchemy engine for SQL Server via pyodbc.

    Args:
        descriptor: Resolved connection descriptor
        pool_size: Pool size handed to SQLAlchemy's QueuePool
        max_overflow: Pool overflow handed to SQLAlchemy's QueuePool

    Returns:
        SQLAlchemy Engine instance (no connection opened yet)
    """
    url = URL.create(
        "mssql+pyodbc",
        query={"odbc_connect": build_odbc_connect_string(descriptor)},
    )

    connect_args = {}
    if isinstance(descriptor.auth_material, AccessTokenAuth):
        connect_args["attrs_before"] = access_token_attrs(descriptor.auth_material.token)

    engine_kwargs = {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "connect_args": connect_args,
    }
    return create_engine(url, **engine_kwargs)


def probe(conn: Connection) -> None:
    """Run a trivial round trip on a connection."""
    conn.execute(text("SELECT 1")).fetchone()


def open_connection(
    descriptor: ConnectionDescriptor,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> SharedConnection:
    """Create the engine and open one connection to prove the credentials work.

    Raises:
        ConnectionFailure: If the engine cannot be created or the first
            connection fails.
    """
    target = f"{descriptor.server}/{descriptor.database}"
    try:
        engine = create_mssql_engine(descriptor, pool_size=pool_size, max_overflow=max_overflow)
    except Exception as e:
        raise ConnectionFailure(f"Failed to create database engine for {target}: {e}") from e

    try:
        with engine.connect() as conn:
            probe(conn)
    except Exception as e:
        engine.dispose()
        raise ConnectionFailure(f"Failed to connect to {target}: {e}") from e

    return SharedConnection(engine, descriptor)
