"""Single call path for every tool: safety checks, connection, execution, envelope."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import DBAPIError

from mssql_mcp.db.connection import SharedConnection
from mssql_mcp.db.manager import ConnectionManager
from mssql_mcp.errors import (
    MissingPredicate,
    MssqlMcpError,
    OperationError,
    UnknownOperation,
)
from mssql_mcp.intent import QueryIntent
from mssql_mcp.tools import Tool

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("mssql_mcp.dispatch")


@dataclass
class ToolResponse:
    """Transport envelope: ``{"content": [...], "isError": bool}``."""

    content: list[dict[str, Any]]
    is_error: bool = False
    category: str | None = None
    data: dict[str, Any] | None = field(default=None, repr=False)

    @property
    def text(self) -> str:
        return "\n".join(item.get("text", "") for item in self.content)

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.content, "isError": self.is_error}

    @classmethod
    def success(cls, data: dict[str, Any]) -> ToolResponse:
        text = json.dumps(data, indent=2, default=str)
        return cls(content=[{"type": "text", "text": text}], data=data)

    @classmethod
    def failure(cls, error: MssqlMcpError) -> ToolResponse:
        data = {"success": False, "category": error.category, "message": str(error)}
        text = json.dumps(data, indent=2, default=str)
        return cls(
            content=[{"type": "text", "text": text}],
            is_error=True,
            category=error.category,
            data=data,
        )


class ToolDispatcher:
    """Resolves a tool, enforces the predicate rule, lends it a live connection.

    ``dispatch()`` never raises: every failure comes back as an error
    envelope carrying the failure category.
    """

    def __init__(self, manager: ConnectionManager, tools: dict[str, Tool]) -> None:
        self.manager = manager
        self.tools = tools

    async def dispatch(
        self, tool_name: str, arguments: dict[str, Any] | None = None
    ) -> ToolResponse:
        arguments = arguments or {}
        with tracer.start_as_current_span(
            f"tool.{tool_name}", attributes={"tool.name": tool_name}
        ) as span:
            try:
                data = await self._dispatch(tool_name, arguments)
            except MssqlMcpError as e:
                response = ToolResponse.failure(e)
            except Exception as e:
                logger.error(f"Tool {tool_name} failed unexpectedly: {e}", exc_info=True)
                response = ToolResponse.failure(OperationError(str(e)))
            else:
                response = ToolResponse.success(data)

            span.set_attribute("tool.is_error", response.is_error)
            if response.is_error:
                span.set_attribute("error.category", response.category)
                span.set_status(trace.Status(trace.StatusCode.ERROR, response.text))
            return response

    async def _dispatch(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        tool = self.tools.get(tool_name)
        if tool is None:
            logger.warning(f"Rejected call to unknown tool {tool_name!r}")
            raise UnknownOperation(f"Unknown tool: {tool_name}")

        # Predicate and argument checks run before any connection attempt
        intent = QueryIntent.from_arguments(tool.kind, tool.predicate_arg, arguments)
        try:
            intent.check()
        except MissingPredicate as e:
            logger.warning(f"Rejected {tool_name}: {e}")
            raise

        try:
            args = tool.parse_args(arguments)
        except ValidationError as e:
            raise OperationError(f"Invalid arguments for {tool_name}: {e}") from e

        try:
            shared = await self.manager.ensure_connection()
        except MssqlMcpError as e:
            logger.warning(f"{tool_name}: no connection ({e.category}): {e}")
            raise

        try:
            return await asyncio.to_thread(self._run, tool, shared, args)
        except MssqlMcpError as e:
            logger.warning(f"{tool_name} failed: {e}")
            raise
        except DBAPIError as e:
            if e.connection_invalidated:
                self.manager.mark_disconnected(shared)
            logger.warning(f"{tool_name} failed: {e.orig or e}")
            raise OperationError(str(e.orig or e)) from e

    @staticmethod
    def _run(tool: Tool, shared: SharedConnection, args: BaseModel) -> dict[str, Any]:
        with shared.begin() as conn:
            return tool.run(conn, args)
