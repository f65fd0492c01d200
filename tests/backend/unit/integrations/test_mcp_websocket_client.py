"""Tests for the WebSocket MCP client."""

from __future__ import annotations

import asyncio
import json

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from integrations import mcp_websocket_client
from integrations.mcp_websocket_client import WebSocketMCPClient

Responder = Callable[[dict[str, Any]], dict[str, Any] | None]


class FakeSocket:
    """In-memory WebSocket: every sent request is answered by ``responder``."""

    def __init__(self, responder: Responder) -> None:
        self.responder = responder
        self.sent: list[dict[str, Any]] = []
        self.incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.closed = False

    async def send(self, data: str) -> None:
        message = json.loads(data)
        self.sent.append(message)
        reply = self.responder(message)
        if reply is not None:
            self.incoming.put_nowait(json.dumps(reply))

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> str:
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.closed = True


def mcp_server(message: dict[str, Any]) -> dict[str, Any] | None:
    if "id" not in message:
        return None
    method = message["method"]
    if method == "initialize":
        result: dict[str, Any] = {"protocolVersion": "2024-11-05", "capabilities": {}}
    elif method == "tools/list":
        result = {"tools": [{"name": "get_weather", "inputSchema": {"type": "object"}}]}
    elif method == "tools/call":
        if message["params"]["name"] == "explode":
            return {"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32000, "message": "boom"}}
        result = {"content": [{"type": "text", "text": json.dumps(message["params"]["arguments"])}]}
    else:
        return {"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32601, "message": "not found"}}
    return {"jsonrpc": "2.0", "id": message["id"], "result": result}


@pytest.fixture
def socket(monkeypatch: pytest.MonkeyPatch) -> FakeSocket:
    fake = FakeSocket(mcp_server)
    monkeypatch.setattr(mcp_websocket_client.websockets, "connect", AsyncMock(return_value=fake))
    return fake


class TestWebSocketMCPClient:
    @pytest.mark.asyncio
    async def test_handshake(self, socket: FakeSocket) -> None:
        client = WebSocketMCPClient("ws://localhost:8081/ws", "weather", headers={"X-Key": "1"})

        await client.connect()

        assert client.is_connected is True
        assert [m["method"] for m in socket.sent] == ["initialize", "notifications/initialized"]
        assert socket.sent[0]["params"]["clientInfo"]["name"] == "toolchat"
        connect_kwargs = mcp_websocket_client.websockets.connect.await_args.kwargs  # type: ignore[attr-defined]
        assert connect_kwargs["additional_headers"] == {"X-Key": "1"}
        await client.close()

    @pytest.mark.asyncio
    async def test_list_and_call_tools(self, socket: FakeSocket) -> None:
        async with WebSocketMCPClient("ws://localhost:8081/ws", "weather") as client:
            tools = await client.list_tools()
            result = await client.call_tool("get_weather", {"city": "Oslo"})

        assert [t.name for t in tools] == ["get_weather"]
        assert json.loads(result.text()) == {"city": "Oslo"}
        assert socket.closed is True

    @pytest.mark.asyncio
    async def test_concurrent_calls_are_multiplexed(self, socket: FakeSocket) -> None:
        async with WebSocketMCPClient("ws://localhost:8081/ws", "weather") as client:
            results = await asyncio.gather(*(client.call_tool("get_weather", {"n": n}) for n in range(3)))

        assert [json.loads(r.text())["n"] for r in results] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_json_rpc_error_raises(self, socket: FakeSocket) -> None:
        async with WebSocketMCPClient("ws://localhost:8081/ws", "weather") as client:
            with pytest.raises(RuntimeError, match="MCP error"):
                await client.call_tool("explode", {})

    @pytest.mark.asyncio
    async def test_server_close_fails_pending_requests(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def silent_after_init(message: dict[str, Any]) -> dict[str, Any] | None:
            if message.get("method") == "tools/call":
                return None
            return mcp_server(message)

        fake = FakeSocket(silent_after_init)
        monkeypatch.setattr(mcp_websocket_client.websockets, "connect", AsyncMock(return_value=fake))
        client = WebSocketMCPClient("ws://localhost:8081/ws", "weather")
        await client.connect()

        call = asyncio.create_task(client.call_tool("get_weather", {}))
        await asyncio.sleep(0)
        fake.incoming.put_nowait(None)

        with pytest.raises(RuntimeError, match="Connection closed by server"):
            await call
        await client.close()

    @pytest.mark.asyncio
    async def test_calls_before_connect_fail(self) -> None:
        client = WebSocketMCPClient("ws://localhost:8081/ws", "weather")
        with pytest.raises(RuntimeError, match="not initialized"):
            await client.list_tools()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, socket: FakeSocket) -> None:
        client = WebSocketMCPClient("ws://localhost:8081/ws", "weather")
        await client.connect()
        await client.close()
        await client.close()

        assert client.is_connected is False

    @pytest.mark.asyncio
    async def test_list_tools_uses_configured_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def silent_list(message: dict[str, Any]) -> dict[str, Any] | None:
            if message.get("method") == "tools/list":
                return None
            return mcp_server(message)

        monkeypatch.setattr(mcp_websocket_client.websockets, "connect", AsyncMock(return_value=FakeSocket(silent_list)))

        async with WebSocketMCPClient("ws://localhost:8081/ws", "weather", list_timeout=0.01) as client:
            with pytest.raises(RuntimeError, match="tools/list timed out"):
                await client.list_tools()
