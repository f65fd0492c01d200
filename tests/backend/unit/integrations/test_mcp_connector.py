"""Tests for MCP connections and readiness probing."""

from __future__ import annotations

import asyncio

from typing import Any
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from core.exceptions import ConnectError, DiscoveryError, ServerUnreachable, ToolInvocationError
from integrations import mcp_connector
from integrations.mcp_connector import (
    MCPConnection,
    close,
    connect,
    discover_tools,
    ensure_server_ready,
    probe_url,
    wait_for_server_ready,
)
from models.mcp_models import MCPResult, MCPTool, ServerDescriptor


def _descriptor(**overrides: Any) -> ServerDescriptor:
    data: dict[str, Any] = {"id": "weather", "name": "Weather", "url": "http://localhost:9000/sse"}
    data.update(overrides)
    return ServerDescriptor(**data)


def _probe_client(statuses: list[int | Exception], seen: list[httpx.Request]) -> httpx.AsyncClient:
    responses = iter(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        outcome = next(responses)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeTransport:
    """Transport double whose ``connect`` behaviour is scripted."""

    def __init__(self, connect_error: BaseException | None = None, client: Any = None) -> None:
        self.connect_error = connect_error
        self.client = client or Mock()
        self.disconnects = 0

    async def connect(self) -> Any:
        if self.connect_error is not None:
            raise self.connect_error
        return self.client

    async def disconnect(self) -> None:
        self.disconnects += 1


class TestProbeUrl:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("ws://host:8080/mcp", "http://host:8080/mcp"),
            ("wss://host/mcp", "https://host/mcp"),
            ("http://host/sse", "http://host/sse"),
        ],
    )
    def test_websocket_schemes_map_to_http(self, url: str, expected: str) -> None:
        assert probe_url(url) == expected


class TestWaitForServerReady:
    @pytest.mark.asyncio
    async def test_ready_on_first_200(self) -> None:
        seen: list[httpx.Request] = []
        async with _probe_client([200], seen) as client:
            ready = await wait_for_server_ready(
                "http://localhost:9000/sse", {"Authorization": "Bearer t"}, max_attempts=5, interval=0, client=client
            )

        assert ready is True
        assert len(seen) == 1
        assert seen[0].method == "GET"
        assert seen[0].headers["Authorization"] == "Bearer t"

    @pytest.mark.asyncio
    async def test_retries_until_200(self) -> None:
        seen: list[httpx.Request] = []
        statuses: list[int | Exception] = [503, httpx.ConnectError("refused"), 200]
        async with _probe_client(statuses, seen) as client:
            ready = await wait_for_server_ready("http://h/sse", max_attempts=5, interval=0, client=client)

        assert ready is True
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_non_200_success_status_is_not_ready(self) -> None:
        seen: list[httpx.Request] = []
        async with _probe_client([204, 204], seen) as client:
            ready = await wait_for_server_ready("http://h/sse", max_attempts=2, interval=0, client=client)

        assert ready is False

    @pytest.mark.asyncio
    async def test_no_sleep_after_last_attempt(self) -> None:
        seen: list[httpx.Request] = []
        with patch("integrations.mcp_connector.asyncio.sleep", new_callable=AsyncMock) as sleep:
            async with _probe_client([500, 500, 500], seen) as client:
                ready = await wait_for_server_ready("http://h/sse", max_attempts=3, interval=6.0, client=client)

        assert ready is False
        assert len(seen) == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(6.0)

    @pytest.mark.asyncio
    async def test_websocket_url_probed_over_http(self) -> None:
        seen: list[httpx.Request] = []
        async with _probe_client([200], seen) as client:
            await wait_for_server_ready("ws://localhost:8080/ws", max_attempts=1, interval=0, client=client)

        assert str(seen[0].url) == "http://localhost:8080/ws"

    @pytest.mark.asyncio
    async def test_ensure_raises_when_unreachable(self) -> None:
        seen: list[httpx.Request] = []
        async with _probe_client([httpx.ConnectError("down")] * 2, seen) as client:
            with pytest.raises(ServerUnreachable) as exc_info:
                await ensure_server_ready("http://h/sse", max_attempts=2, interval=0, client=client)

        assert exc_info.value.attempts == 2


class TestConnect:
    @pytest.mark.asyncio
    async def test_success_returns_connection(self, monkeypatch: pytest.MonkeyPatch) -> None:
        transport = FakeTransport()
        monkeypatch.setattr(mcp_connector, "create_transport", lambda d, **kw: transport)

        conn = await connect(_descriptor())

        assert isinstance(conn, MCPConnection)
        assert conn.server_id == "weather"
        assert conn.transport is transport

    @pytest.mark.asyncio
    async def test_handshake_failure_is_connect_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        transport = FakeTransport(connect_error=OSError("connection refused"))
        monkeypatch.setattr(mcp_connector, "create_transport", lambda d, **kw: transport)

        with pytest.raises(ConnectError, match="connection refused") as exc_info:
            await connect(_descriptor())

        assert exc_info.value.server_id == "weather"
        assert transport.disconnects == 1

    @pytest.mark.asyncio
    async def test_timeout_is_connect_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        class HangingTransport(FakeTransport):
            async def connect(self) -> Any:
                await asyncio.Event().wait()

        transport = HangingTransport()
        monkeypatch.setattr(mcp_connector, "create_transport", lambda d, **kw: transport)

        with pytest.raises(ConnectError, match="timed out"):
            await connect(_descriptor(), connect_timeout=0.01)
        assert transport.disconnects == 1

    @pytest.mark.asyncio
    async def test_unknown_transport_is_connect_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def refuse(descriptor: ServerDescriptor, **kwargs: Any) -> Any:
            raise ValueError("Unknown transport mode: carrier-pigeon")

        monkeypatch.setattr(mcp_connector, "create_transport", refuse)

        with pytest.raises(ConnectError, match="carrier-pigeon"):
            await connect(_descriptor())


class TestConnection:
    def _open(self, client: Any) -> MCPConnection:
        transport = FakeTransport(client=client)
        return MCPConnection(_descriptor(), transport)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_discover_keys_tools_by_name(self) -> None:
        client = Mock()
        client.list_tools = AsyncMock(return_value=[MCPTool(name="get_weather"), MCPTool(name="get_forecast")])

        tools = await discover_tools(self._open(client))

        assert list(tools) == ["get_weather", "get_forecast"]

    @pytest.mark.asyncio
    async def test_discover_failure(self) -> None:
        client = Mock()
        client.list_tools = AsyncMock(side_effect=RuntimeError("bad payload"))

        with pytest.raises(DiscoveryError, match="bad payload"):
            await discover_tools(self._open(client))

    @pytest.mark.asyncio
    async def test_call_tool_returns_error_results(self) -> None:
        client = Mock()
        client.call_tool = AsyncMock(return_value=MCPResult(isError=True))

        result = await self._open(client).call_tool("get_weather", {"city": "Oslo"})

        assert result.isError is True
        client.call_tool.assert_awaited_once_with("get_weather", {"city": "Oslo"})

    @pytest.mark.asyncio
    async def test_call_tool_transport_failure(self) -> None:
        client = Mock()
        client.call_tool = AsyncMock(side_effect=ConnectionResetError("reset"))

        with pytest.raises(ToolInvocationError, match="reset"):
            await self._open(client).call_tool("get_weather", {})

    @pytest.mark.asyncio
    async def test_call_after_close(self) -> None:
        conn = self._open(Mock())
        await conn.close()

        with pytest.raises(ToolInvocationError, match="closed"):
            await conn.call_tool("get_weather", {})

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        conn = self._open(Mock())
        await conn.close()
        await conn.close()

        assert conn.is_closed is True
        assert conn.transport.disconnects == 1  # type: ignore[attr-defined]


class TestClose:
    @pytest.mark.asyncio
    async def test_none_is_noop(self) -> None:
        await close(None)

    @pytest.mark.asyncio
    async def test_never_raises(self) -> None:
        conn = Mock()
        conn.server_id = "weather"
        conn.close = AsyncMock(side_effect=RuntimeError("already gone"))

        await close(conn)

        conn.close.assert_awaited_once()
