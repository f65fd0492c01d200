"""MCP client for servers reachable over a WebSocket.

One socket carries every JSON-RPC exchange. Requests are matched to responses
by id in a background reader task, so concurrent ``call_tool`` invocations on
the same client do not block each other.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json

from typing import Any

import websockets

from websockets.asyncio.client import ClientConnection

from core.constants import (
    MCP_CALL_TOOL_TIMEOUT,
    MCP_CLIENT_NAME,
    MCP_CONNECT_TIMEOUT,
    MCP_LIST_TOOLS_TIMEOUT,
    MCP_PROTOCOL_VERSION,
)
from models.mcp_models import MCPResult, MCPTool
from utils.logger import logger

JSONRPC_VERSION = "2.0"


class WebSocketMCPClient:
    """JSON-RPC session with one MCP server over a WebSocket.

    Usable as an async context manager or through explicit
    ``connect()`` / ``close()``.
    """

    def __init__(
        self,
        ws_url: str,
        server_name: str,
        headers: dict[str, str] | None = None,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
        call_timeout: float = MCP_CALL_TOOL_TIMEOUT,
        list_timeout: float = MCP_LIST_TOOLS_TIMEOUT,
    ):
        """
        Args:
            ws_url: Endpoint such as ``ws://localhost:8081/ws``
            server_name: Server id used as the log prefix
            headers: Sent with the upgrade request
            connect_timeout: Limit for opening the socket plus the initialize exchange
            call_timeout: Limit for one ``tools/call``
            list_timeout: Limit for ``tools/list``
        """
        self.ws_url = ws_url
        self.server_name = server_name
        self.headers = headers or {}
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self.list_timeout = list_timeout

        self._ws: ClientConnection | None = None
        self._ids = itertools.count(1)
        self._ready = False
        # Set once the reader stops; later requests fail with it immediately
        self._broken: RuntimeError | None = None
        self._waiting: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._reader: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._ready

    async def __aenter__(self) -> WebSocketMCPClient:
        return await self.connect()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def connect(self) -> WebSocketMCPClient:
        """Open the socket and run the ``initialize`` handshake."""
        try:
            self._ws = await websockets.connect(
                self.ws_url,
                additional_headers=self.headers or None,
                open_timeout=self.connect_timeout,
            )
            self._broken = None
            self._reader = asyncio.create_task(self._read_responses(self._ws), name=f"mcp-ws-{self.server_name}")

            await self._request(
                "initialize",
                {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {"name": MCP_CLIENT_NAME, "version": "1.0.0"},
                },
                timeout=self.connect_timeout,
            )
            await self._send({"jsonrpc": JSONRPC_VERSION, "method": "notifications/initialized"})
        except asyncio.CancelledError:
            await self.close()
            raise
        except Exception as e:
            logger.error(f"{self.server_name}: could not open MCP session at {self.ws_url}: {e}")
            await self.close()
            raise

        self._ready = True
        logger.info(f"{self.server_name}: MCP session ready over WebSocket")
        return self

    async def close(self) -> None:
        """Stop the reader and drop the socket. A second call does nothing."""
        self._ready = False

        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

        waiting, self._waiting = self._waiting, {}
        for future in waiting.values():
            future.cancel()

        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            logger.info(f"{self.server_name}: MCP WebSocket closed")

    async def list_tools(self) -> list[MCPTool]:
        self._require_session()
        response = await self._request("tools/list", {}, timeout=self.list_timeout)
        return [MCPTool(**tool) for tool in response.get("result", {}).get("tools", [])]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> MCPResult:
        self._require_session()
        response = await self._request(
            "tools/call",
            {"name": tool_name, "arguments": arguments},
            timeout=self.call_timeout,
        )
        return MCPResult(**response.get("result", {}))

    def _require_session(self) -> None:
        if not self._ready:
            raise RuntimeError(f"{self.server_name}: MCP client not initialized")

    async def _send(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            raise RuntimeError(f"{self.server_name}: WebSocket not connected")
        async with self._send_lock:
            await self._ws.send(json.dumps(message))

    async def _request(self, method: str, params: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Send one request and wait for the response carrying its id."""
        if self._broken is not None:
            raise self._broken

        request_id = next(self._ids)
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._waiting[request_id] = future
        try:
            await self._send({"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method, "params": params})
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise RuntimeError(f"{self.server_name}: {method} timed out after {timeout}s") from None
        finally:
            self._waiting.pop(request_id, None)

    def _dispatch(self, message: dict[str, Any]) -> None:
        request_id = message.get("id")
        if request_id is None:
            logger.debug(f"{self.server_name}: notification {message.get('method')}")
            return

        future = self._waiting.pop(request_id, None)
        if future is None or future.done():
            # Late replies and server-to-client requests; this side never serves requests
            logger.debug(f"{self.server_name}: ignoring message with id {request_id}")
        elif "error" in message:
            future.set_exception(RuntimeError(f"MCP error: {message['error']}"))
        else:
            future.set_result(message)

    async def _read_responses(self, ws: ClientConnection) -> None:
        reason = "Connection closed by server"
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"{self.server_name}: dropped a frame that is not JSON")
                    continue
                if isinstance(message, dict):
                    self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.server_name}: WebSocket reader failed: {e}")
            reason = f"Connection lost: {e}"

        self._broken = RuntimeError(reason)
        waiting, self._waiting = self._waiting, {}
        for future in waiting.values():
            if not future.done():
                future.set_exception(self._broken)
