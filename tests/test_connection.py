"""Tests for engine creation and the shared connection wrapper."""

from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeClock, FakeTokenProvider, make_settings

from mssql_mcp.db.connection import SharedConnection, create_mssql_engine, open_connection
from mssql_mcp.db.credentials import SQL_COPT_SS_ACCESS_TOKEN, AuthMode, resolve
from mssql_mcp.errors import ConnectionFailure


def _sql_descriptor():
    return resolve(AuthMode.USERNAME_PASSWORD, make_settings()).descriptor


def _token_descriptor():
    return resolve(
        AuthMode.FEDERATED_IDENTITY,
        make_settings(auth_type="azure"),
        token_provider=FakeTokenProvider(FakeClock()),
        clock=FakeClock(),
    ).descriptor


class TestCreateEngine:
    def test_sql_login_engine(self):
        with patch("mssql_mcp.db.connection.create_engine") as create_engine:
            create_mssql_engine(_sql_descriptor(), pool_size=3, max_overflow=1)

        url = create_engine.call_args.args[0]
        kwargs = create_engine.call_args.kwargs
        assert url.drivername == "mssql+pyodbc"
        assert "UID=app" in url.query["odbc_connect"]
        assert kwargs["pool_size"] == 3
        assert kwargs["max_overflow"] == 1
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["connect_args"] == {}

    def test_access_token_passed_before_connect(self):
        with patch("mssql_mcp.db.connection.create_engine") as create_engine:
            create_mssql_engine(_token_descriptor())

        kwargs = create_engine.call_args.kwargs
        assert SQL_COPT_SS_ACCESS_TOKEN in kwargs["connect_args"]["attrs_before"]
        url = create_engine.call_args.args[0]
        assert "token-1" not in url.query["odbc_connect"]


class TestOpenConnection:
    def test_probes_and_wraps_engine(self):
        engine = MagicMock()
        with patch("mssql_mcp.db.connection.create_mssql_engine", return_value=engine):
            shared = open_connection(_sql_descriptor())

        assert isinstance(shared, SharedConnection)
        assert shared.connected
        engine.connect.return_value.__enter__.return_value.execute.assert_called_once()

    def test_failed_probe_disposes_engine(self):
        engine = MagicMock()
        engine.connect.side_effect = RuntimeError("Login failed for user 'app'")
        with patch("mssql_mcp.db.connection.create_mssql_engine", return_value=engine):
            with pytest.raises(ConnectionFailure, match="Login failed"):
                open_connection(_sql_descriptor())

        engine.dispose.assert_called_once()


class TestSharedConnection:
    def test_close_disposes_pool(self):
        engine = MagicMock()
        shared = SharedConnection(engine, _sql_descriptor())

        shared.close()

        assert not shared.connected
        engine.dispose.assert_called_once()

    def test_mark_disconnected(self):
        shared = SharedConnection(MagicMock(), _sql_descriptor())
        shared.mark_disconnected()
        assert not shared.connected

    def test_begin_uses_engine_transaction(self):
        engine = MagicMock()
        shared = SharedConnection(engine, _sql_descriptor())
        assert shared.begin() is engine.begin.return_value
