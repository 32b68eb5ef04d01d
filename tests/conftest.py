"""Shared fakes for mssql-mcp tests.

No test talks to a real SQL Server or imports pyodbc: connections are
replaced by in-memory fakes that record the statements they receive.
"""

import threading
from collections import namedtuple
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from mssql_mcp.config import Settings, reset_settings

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_settings(**overrides) -> Settings:
    values = {
        "server_name": "sql.example.local",
        "database_name": "Sales",
        "auth_type": "sql",
        "sql_username": "app",
        "sql_password": "secret",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeResult:
    def __init__(self, columns=(), rows=(), rowcount=-1):
        self._columns = list(columns)
        self._rows = [tuple(row) for row in rows]
        self.rowcount = rowcount

    def keys(self):
        return list(self._columns)

    def __iter__(self):
        Row = namedtuple("Row", self._columns, rename=True)
        return iter([Row(*row) for row in self._rows])


class FakeConnection:
    """Stands in for sqlalchemy.Connection; records (sql, params) pairs."""

    def __init__(self, results=None, error=None):
        self.executed = []
        self._results = list(results or [])
        self._error = error

    def execute(self, statement, params=None):
        self.executed.append((str(statement), params))
        if self._error is not None:
            raise self._error
        if self._results:
            return self._results.pop(0)
        return FakeResult(rowcount=0)

    @property
    def last_sql(self):
        return self.executed[-1][0]

    @property
    def last_params(self):
        return self.executed[-1][1]


class FakeSharedConnection:
    def __init__(self, descriptor, conn=None):
        self.descriptor = descriptor
        self.conn = conn or FakeConnection()
        self.closed = False
        self._connected = True

    @property
    def connected(self):
        return self._connected

    def mark_disconnected(self):
        self._connected = False

    @contextmanager
    def begin(self):
        yield self.conn

    def close(self):
        self.closed = True
        self._connected = False


class FakeConnector:
    """Connector double: counts calls, optionally fails or dawdles."""

    def __init__(self, conn_factory=None, error=None, delay=0.0):
        self.calls = 0
        self.descriptors = []
        self.opened = []
        self._conn_factory = conn_factory or FakeConnection
        self._error = error
        self._delay = delay
        self._lock = threading.Lock()

    def __call__(self, descriptor):
        with self._lock:
            self.calls += 1
            self.descriptors.append(descriptor)
        if self._delay:
            threading.Event().wait(self._delay)
        if self._error is not None:
            raise self._error
        shared = FakeSharedConnection(descriptor, self._conn_factory())
        self.opened.append(shared)
        return shared


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeTokenProvider:
    """Issues tokens valid for ``lifetime`` from the clock's current time."""

    def __init__(self, clock, lifetime=timedelta(minutes=60)):
        self.clock = clock
        self.lifetime = lifetime
        self.calls = 0

    def __call__(self):
        self.calls += 1
        expires = self.clock() + self.lifetime
        return SimpleNamespace(token=f"token-{self.calls}", expires_on=int(expires.timestamp()))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch, tmp_path):
    """Keep every test away from real .env files and cached settings."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "SERVER_NAME",
        "DATABASE_NAME",
        "AUTH_TYPE",
        "SQL_USERNAME",
        "SQL_PASSWORD",
        "WINDOWS_DOMAIN",
        "WINDOWS_USERNAME",
        "WINDOWS_PASSWORD",
        "READONLY",
        "ENCRYPT",
        "MCP_TRANSPORT",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()
