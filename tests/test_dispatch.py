"""Tests for the tool dispatcher: safety checks and response envelopes."""

import json

import pytest
from conftest import FakeConnection, FakeConnector, FakeResult, make_settings
from sqlalchemy.exc import DBAPIError

from mssql_mcp.db.manager import ConnectionManager
from mssql_mcp.dispatch import ToolDispatcher, ToolResponse
from mssql_mcp.errors import MissingPredicate
from mssql_mcp.tools import get_tools


def _dispatcher(connector, readonly=False, **settings):
    manager = ConnectionManager(make_settings(**settings), connector=connector)
    return ToolDispatcher(manager, get_tools(readonly)), manager


def _payload(response):
    return json.loads(response.content[0]["text"])


class TestToolResponse:
    def test_success_envelope(self):
        data = {"rows": [], "row_count": 0}
        response = ToolResponse.success(data)
        assert response.to_dict() == {
            "content": [{"type": "text", "text": json.dumps(data, indent=2)}],
            "isError": False,
        }

    def test_failure_envelope(self):
        response = ToolResponse.failure(MissingPredicate("need a filter"))
        assert response.is_error
        assert response.to_dict()["isError"] is True
        assert response.category == "missing_predicate"
        assert _payload(response)["message"] == "need a filter"


class TestRejections:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, connector):
        dispatcher, _ = _dispatcher(connector)

        response = await dispatcher.dispatch("truncate_everything", {"table": "t"})

        assert response.is_error
        assert response.category == "unknown_operation"
        assert connector.calls == 0

    @pytest.mark.asyncio
    async def test_readonly_hides_mutating_tools(self, connector):
        dispatcher, _ = _dispatcher(connector, readonly=True)

        response = await dispatcher.dispatch("insert_data", {"table": "t", "data": {"a": 1}})

        assert response.category == "unknown_operation"
        assert sorted(dispatcher.tools) == ["describe_table", "list_table", "read_data"]
        assert connector.calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "tool_name,arguments",
        [
            ("read_data", {"table": "Customers"}),
            ("read_data", {"table": "Customers", "filter": "  "}),
            ("read_data", {"table": "Customers", "filter": "1=1"}),
            ("update_data", {"table": "Customers", "updates": {"City": "X"}, "where": "1 = 1"}),
            ("delete_data", {"table": "Customers", "where": "'a' = 'a'"}),
            ("delete_data", {"table": "Customers", "where": None}),
            ("delete_data", {"table": "Customers", "where": "Id IS NULL OR Id IS NOT NULL"}),
            ("update_data", {"table": "Customers", "updates": {"City": "X"}, "where": "1 IN (1)"}),
        ],
    )
    async def test_missing_or_trivial_predicate_never_connects(
        self, connector, tool_name, arguments
    ):
        dispatcher, manager = _dispatcher(connector)

        response = await dispatcher.dispatch(tool_name, arguments)

        assert response.is_error
        assert response.category == "missing_predicate"
        assert connector.calls == 0
        assert manager.connect_count == 0

    @pytest.mark.asyncio
    async def test_invalid_arguments_never_connect(self, connector):
        dispatcher, _ = _dispatcher(connector)

        response = await dispatcher.dispatch(
            "read_data", {"table": "Customers", "filter": "Id = 1", "limit": 5000}
        )

        assert response.category == "operation_error"
        assert "limit" in _payload(response)["message"]
        assert connector.calls == 0


class TestExecution:
    @pytest.mark.asyncio
    async def test_read_with_filter_returns_rows(self):
        conn = FakeConnection(
            results=[FakeResult(["Id", "City"], [(1, "Redmond"), (7, "Redmond")])]
        )
        connector = FakeConnector(conn_factory=lambda: conn)
        dispatcher, _ = _dispatcher(connector)

        response = await dispatcher.dispatch(
            "read_data", {"table": "Customers", "filter": "City = 'Redmond'"}
        )

        assert not response.is_error
        assert response.to_dict()["isError"] is False
        payload = _payload(response)
        assert payload["rows"] == [{"Id": 1, "City": "Redmond"}, {"Id": 7, "City": "Redmond"}]
        assert payload["row_count"] == 2
        assert conn.last_sql == (
            "SELECT TOP (:limit) * FROM [Customers] WHERE City = 'Redmond'"
        )
        assert conn.last_params == {"limit": 100}

    @pytest.mark.asyncio
    async def test_connection_reused_across_calls(self, connector):
        dispatcher, manager = _dispatcher(connector)

        for _ in range(3):
            response = await dispatcher.dispatch("list_table", {})
            assert not response.is_error

        assert connector.calls == 1
        assert manager.connect_count == 1

    @pytest.mark.asyncio
    async def test_catalog_tool_needs_no_predicate(self, connector):
        dispatcher, _ = _dispatcher(connector)
        response = await dispatcher.dispatch("list_table", {})
        assert _payload(response) == {"success": True, "tables": [], "count": 0}


class TestErrorNormalisation:
    @pytest.mark.asyncio
    async def test_configuration_error_category_preserved(self, connector):
        dispatcher, _ = _dispatcher(connector, sql_password="")

        response = await dispatcher.dispatch("list_table", {})

        assert response.category == "configuration_error"
        assert "SQL_PASSWORD" in _payload(response)["message"]

    @pytest.mark.asyncio
    async def test_connection_failure_category_preserved(self):
        connector = FakeConnector(error=RuntimeError("server not found"))
        dispatcher, _ = _dispatcher(connector)

        response = await dispatcher.dispatch("describe_table", {"table": "Customers"})

        assert response.category == "connection_failure"
        assert "server not found" in response.text

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_operation_error(self):
        conn = FakeConnection(error=RuntimeError("constraint violation"))
        connector = FakeConnector(conn_factory=lambda: conn)
        dispatcher, _ = _dispatcher(connector)

        response = await dispatcher.dispatch(
            "insert_data", {"table": "Customers", "data": {"Id": 1}}
        )

        assert response.is_error
        assert response.category == "operation_error"
        assert "constraint violation" in _payload(response)["message"]

    @pytest.mark.asyncio
    async def test_tool_validation_error_becomes_operation_error(self, connector):
        dispatcher, _ = _dispatcher(connector)

        response = await dispatcher.dispatch(
            "read_data", {"table": "Customers", "filter": "Id = 1; DROP TABLE Customers"}
        )

        assert response.category == "operation_error"
        assert "';'" in _payload(response)["message"]

    @pytest.mark.asyncio
    async def test_invalidated_connection_is_replaced_on_next_call(self):
        error = DBAPIError("SELECT 1", {}, Exception("link failure"), connection_invalidated=True)
        connections = [FakeConnection(error=error), FakeConnection()]
        connector = FakeConnector(conn_factory=lambda: connections.pop(0))
        dispatcher, manager = _dispatcher(connector)

        failed = await dispatcher.dispatch("list_table", {})
        assert failed.category == "operation_error"
        assert "link failure" in failed.text

        recovered = await dispatcher.dispatch("list_table", {})
        assert not recovered.is_error
        assert connector.calls == 2
        assert manager.connect_count == 2

    @pytest.mark.asyncio
    async def test_dispatch_never_raises_after_close(self, connector):
        dispatcher, manager = _dispatcher(connector)
        await manager.close()

        response = await dispatcher.dispatch("list_table", {})

        assert response.category == "connection_failure"
