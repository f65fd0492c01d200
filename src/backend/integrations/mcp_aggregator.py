"""
MCP Tool Aggregator - builds the per-request tool table.

Connects to every requested server concurrently, discovers its tools and
merges them into one namespace. A server that fails is logged and skipped;
the request continues with whatever the other servers provide.
"""

from __future__ import annotations

import asyncio
import time

from collections.abc import Awaitable, Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from core.exceptions import ConnectError, DiscoveryError, ToolInvocationError
from models.mcp_models import MCPTool, ServerDescriptor, ToolFailure, ToolOutcome, ToolSuccess
from utils.logger import logger
from utils.metrics import (
    mcp_aggregation_failures_total,
    mcp_tool_call_duration_seconds,
    mcp_tool_calls_total,
)

from . import mcp_connector
from .mcp_connector import MCPConnection

ConnectFn = Callable[[ServerDescriptor], Awaitable[MCPConnection]]
DiscoverFn = Callable[[MCPConnection], Awaitable[dict[str, MCPTool]]]


@dataclass
class ToolEntry:
    """One tool in the merged namespace, bound to the connection of the server that owns it."""

    name: str
    server_id: str
    tool: MCPTool
    connection: MCPConnection

    async def invoke(self, arguments: dict[str, Any]) -> ToolOutcome:
        """Call the tool on its owning server and normalize the result.

        Transport failures and MCP ``isError`` results become ``ToolFailure``;
        cancellation propagates.
        """
        start = time.perf_counter()
        try:
            result = await self.connection.call_tool(self.name, arguments)
        except ToolInvocationError as e:
            outcome: ToolOutcome = ToolFailure(reason=e.reason)
        else:
            if result.isError:
                outcome = ToolFailure(reason=result.text() or "Tool returned an error")
            else:
                outcome = ToolSuccess(payload=result.payload())

        elapsed = time.perf_counter() - start
        success = isinstance(outcome, ToolSuccess)
        mcp_tool_calls_total.labels(tool_name=self.name, status="success" if success else "error").inc()
        mcp_tool_call_duration_seconds.labels(tool_name=self.name).observe(elapsed)
        logger.log_tool_call(
            self.name,
            self.server_id,
            arguments,
            outcome.payload if isinstance(outcome, ToolSuccess) else outcome.reason,
            success=success,
            duration_ms=elapsed * 1000,
        )
        return outcome


class AggregatedToolTable:
    """Tool name to ``ToolEntry`` mapping for one request. Never persisted."""

    def __init__(self) -> None:
        self._entries: dict[str, ToolEntry] = {}

    def add(self, entry: ToolEntry) -> ToolEntry | None:
        """Insert ``entry``, returning the entry it replaced (if any)."""
        previous = self._entries.get(entry.name)
        self._entries[entry.name] = entry
        return previous

    def get(self, name: str) -> ToolEntry | None:
        return self._entries.get(name)

    def names(self) -> list[str]:
        return list(self._entries)

    def schemas(self) -> list[dict[str, Any]]:
        """Function tool definitions for the model provider."""
        return [entry.tool.to_openai_schema() for entry in self._entries.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class AggregationResult:
    """Merged tool table plus everything needed to release it."""

    tools: AggregatedToolTable = field(default_factory=AggregatedToolTable)
    server_tools: dict[str, list[str]] = field(default_factory=dict)
    connections: list[MCPConnection] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)


def _failure_stage(error: BaseException) -> str:
    if isinstance(error, ConnectError):
        return "connect"
    if isinstance(error, DiscoveryError):
        return "discover"
    if isinstance(error, TimeoutError):
        return "timeout"
    return "error"


class MCPToolAggregator:
    """Builds an ``AggregationResult`` from a list of server descriptors.

    The connect/discover/close steps default to ``mcp_connector`` and can be
    replaced (tests, alternate transports).
    """

    def __init__(
        self,
        connect: ConnectFn | None = None,
        discover: DiscoverFn | None = None,
        close: Callable[[MCPConnection], Awaitable[None]] | None = None,
    ) -> None:
        self._connect = connect or mcp_connector.connect
        self._discover = discover or mcp_connector.discover_tools
        self._close = close or mcp_connector.close

    async def _open(self, descriptor: ServerDescriptor) -> tuple[MCPConnection, dict[str, MCPTool]]:
        connection = await self._connect(descriptor)
        try:
            tools = await self._discover(connection)
        except BaseException:
            # Connected but unusable (or cancelled): release before reporting
            await self._close(connection)
            raise
        return connection, tools

    async def aggregate(
        self,
        descriptors: Sequence[ServerDescriptor],
        skip: Iterable[str] = (),
    ) -> AggregationResult:
        """Connect to every server, discover tools and merge them in descriptor order.

        On a tool name collision the later server wins and a warning is logged.
        Servers listed in ``skip`` are not attempted.
        """
        skipped = set(skip)
        targets: list[ServerDescriptor] = []
        seen: set[str] = set()
        for descriptor in descriptors:
            if descriptor.id in skipped:
                logger.info(f"Skipping MCP server {descriptor.display_name} (error state)", server_id=descriptor.id)
                continue
            if descriptor.id in seen:
                continue
            seen.add(descriptor.id)
            targets.append(descriptor)

        tasks = [asyncio.create_task(self._open(d), name=f"mcp-open-{d.id}") for d in targets]
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            await self._release_opened(tasks)
            raise

        result = AggregationResult()
        for descriptor, outcome in zip(targets, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                stage = _failure_stage(outcome)
                mcp_aggregation_failures_total.labels(stage=stage).inc()
                result.failures[descriptor.id] = str(outcome)
                logger.warning(
                    f"MCP server {descriptor.display_name} skipped ({stage}): {outcome}",
                    server_id=descriptor.id,
                )
                continue

            connection, tools = outcome
            result.connections.append(connection)
            result.server_tools[descriptor.id] = list(tools)

            for name, tool in tools.items():
                previous = result.tools.add(ToolEntry(name, descriptor.id, tool, connection))
                if previous is not None and previous.server_id != descriptor.id:
                    logger.warning(
                        f"Tool name collision: '{name}' from {descriptor.id} overrides {previous.server_id}",
                        server_id=descriptor.id,
                        tool=name,
                    )

        logger.info(
            f"Aggregated {len(result.tools)} tools from {len(result.connections)}/{len(targets)} MCP servers"
        )
        return result

    async def _release_opened(self, tasks: list[asyncio.Task[tuple[MCPConnection, dict[str, MCPTool]]]]) -> None:
        """Close connections of open tasks that had already finished when aggregation was cancelled."""
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for task in tasks:
            if task.cancelled() or task.exception() is not None:
                continue
            connection, _ = task.result()
            await self._close(connection)
