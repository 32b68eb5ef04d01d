"""Connection lifecycle: lazy connect, reuse, token refresh and single-flight reconnect."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import partial
from typing import Any

from mssql_mcp.config import Settings
from mssql_mcp.db.connection import SharedConnection, open_connection
from mssql_mcp.db.credentials import (
    AuthMode,
    AzureTokenProvider,
    ConnectionDescriptor,
    TokenLease,
    TokenProvider,
    describe_descriptor,
    resolve,
)
from mssql_mcp.errors import ConnectionFailure, MssqlMcpError

logger = logging.getLogger(__name__)

Connector = Callable[[ConnectionDescriptor], SharedConnection]


class ConnectionState(Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


_WINDOWS_AUTH_HINTS = """Windows authentication troubleshooting:
1. Ensure SQL Server allows Windows authentication
2. Check if your Windows user has access to the database
3. For local instances, try: SERVER_NAME=localhost or SERVER_NAME=.\\SQLEXPRESS
4. Consider using SQL authentication instead with AUTH_TYPE=sql"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _consume_result(task: asyncio.Task) -> None:
    # Every waiter may have been cancelled; retrieve the outcome so asyncio
    # does not report an unobserved exception.
    if not task.cancelled():
        task.exception()


class ConnectionManager:
    """Owns the single shared connection for the process.

    ``ensure_connection()`` may be awaited by any number of concurrent tool
    calls. A usable connection is returned without taking the lock. When the
    connection is missing or stale, exactly one establishment task runs and
    every concurrent caller awaits that same task.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        connector: Connector | None = None,
        token_provider: TokenProvider | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._connector = connector or partial(
            open_connection,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
        )
        self._token_provider = token_provider
        self._clock = clock or _utcnow
        self._refresh_skew = timedelta(seconds=settings.token_refresh_skew_seconds)

        self._auth_mode: AuthMode | None = None
        self._connection: SharedConnection | None = None
        self._lease: TokenLease | None = None
        self._state = ConnectionState.UNCONNECTED
        self._lock = asyncio.Lock()
        self._inflight: asyncio.Task | None = None
        self._closed = False
        self.connect_count = 0

    # -- Introspection ------------------------------------------------------

    @property
    def auth_mode(self) -> AuthMode:
        """Authentication mode, parsed from settings on first use."""
        if self._auth_mode is None:
            self._auth_mode = AuthMode.parse(self._settings.auth_type)
        return self._auth_mode

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def lease(self) -> TokenLease | None:
        return self._lease

    @property
    def refresh_skew(self) -> timedelta:
        return self._refresh_skew

    def status(self) -> dict[str, Any]:
        """Non-sensitive snapshot of the connection state."""
        connection = self._connection
        lease = self._lease
        return {
            "state": self._state.value,
            "auth_type": self._settings.auth_type,
            "server": self._settings.server_name,
            "database": self._settings.database_name,
            "connected": bool(connection and connection.connected),
            "token_expires_at": lease.expires_at.isoformat() if lease else None,
            "connect_count": self.connect_count,
            "descriptor": describe_descriptor(connection.descriptor) if connection else None,
        }

    # -- Lifecycle ----------------------------------------------------------

    def _is_usable(self) -> bool:
        connection = self._connection
        if connection is None or not connection.connected:
            return False
        if self.auth_mode is AuthMode.FEDERATED_IDENTITY:
            lease = self._lease
            return lease is not None and lease.is_valid(self._clock(), self._refresh_skew)
        return True

    async def ensure_connection(self) -> SharedConnection:
        """Return a live shared connection, connecting or reconnecting as needed.

        Raises:
            ConfigurationError: Settings are incomplete for the auth mode.
            AuthenticationFailure: The identity provider rejected the request.
            ConnectionFailure: The driver could not connect, or the manager is closed.
        """
        if self._closed:
            raise ConnectionFailure("Connection manager is closed")

        if self._is_usable():
            return self._connection

        async with self._lock:
            if self._inflight is None:
                if self._is_usable():
                    return self._connection
                self._inflight = asyncio.create_task(self._establish())
                self._inflight.add_done_callback(_consume_result)
            task = self._inflight

        return await asyncio.shield(task)

    async def _establish(self) -> SharedConnection:
        previous = self._connection
        self._state = (
            ConnectionState.RECONNECTING if previous is not None else ConnectionState.CONNECTING
        )
        try:
            if previous is not None:
                reason = "token refresh" if previous.connected else "connection lost"
                logger.info(f"Reconnecting to {self._settings.server_name} ({reason})")

            try:
                resolved = await asyncio.to_thread(
                    resolve,
                    self.auth_mode,
                    self._settings,
                    token_provider=self._get_token_provider(),
                    clock=self._clock,
                )
            except MssqlMcpError:
                raise
            except Exception as e:
                raise ConnectionFailure(f"Failed to resolve credentials: {e}") from e

            # The old pool is stale by now; close it before installing a new one
            await self._discard_current()

            logger.info(
                f"Attempting {self.auth_mode.value} authentication to "
                f"{resolved.descriptor.server}/{resolved.descriptor.database}"
            )
            try:
                connection = await asyncio.to_thread(self._connector, resolved.descriptor)
            except MssqlMcpError:
                raise
            except Exception as e:
                raise ConnectionFailure(
                    f"Failed to connect to {resolved.descriptor.server}: {e}"
                ) from e
        except BaseException as e:
            await self._discard_current()
            if not self._closed:
                self._state = ConnectionState.UNCONNECTED
            logger.warning(f"{self._settings.auth_type} authentication failed: {e}")
            if self._auth_mode is AuthMode.INTEGRATED_CREDENTIAL:
                logger.warning(_WINDOWS_AUTH_HINTS)
            raise
        finally:
            self._inflight = None

        if self._closed:
            await asyncio.to_thread(connection.close)
            raise ConnectionFailure("Connection manager was closed while connecting")

        self._connection = connection
        self._lease = resolved.lease
        self._state = ConnectionState.CONNECTED
        self.connect_count += 1
        if resolved.lease is not None:
            logger.info(
                f"Connected using {self.auth_mode.value} authentication "
                f"(token valid until {resolved.lease.expires_at.isoformat()})"
            )
        else:
            logger.info(f"Connected using {self.auth_mode.value} authentication")
        return connection

    def _get_token_provider(self) -> TokenProvider | None:
        if self.auth_mode is not AuthMode.FEDERATED_IDENTITY:
            return None
        if self._token_provider is None:
            self._token_provider = AzureTokenProvider(self._settings)
        return self._token_provider

    async def _discard_current(self) -> None:
        connection, self._connection = self._connection, None
        self._lease = None
        if connection is not None:
            await asyncio.to_thread(connection.close)

    def mark_disconnected(self, connection: SharedConnection) -> None:
        """Record that ``connection`` was invalidated; the next call reconnects."""
        if connection is self._connection and connection.connected:
            logger.warning("Shared connection was invalidated by the driver")
            connection.mark_disconnected()

    async def reset(self) -> None:
        """Dispose the shared connection; the next call connects again.

        The server lifespan may run once per client session, so this keeps
        the manager usable for later sessions.
        """
        async with self._lock:
            task = self._inflight
        if task is not None:
            # Let a running attempt finish so it cannot install a connection afterwards
            await asyncio.wait([task])
        await self._discard_current()
        if not self._closed:
            self._state = ConnectionState.UNCONNECTED

    async def close(self) -> None:
        """Dispose the shared connection; the manager cannot be reused afterwards."""
        self._closed = True
        self._state = ConnectionState.CLOSED
        await self._discard_current()
