"""
MCP Transport Connector.

Opens one connection per server descriptor, discovers its tools and closes it.
Also implements the HTTP readiness probe used before a server is treated as
reachable.
"""

from __future__ import annotations

import asyncio

from typing import Any

import httpx

from core.constants import (
    MCP_CALL_TOOL_TIMEOUT,
    MCP_CONNECT_TIMEOUT,
    MCP_LIST_TOOLS_TIMEOUT,
    MCP_READY_INTERVAL,
    MCP_READY_MAX_ATTEMPTS,
)
from core.exceptions import ConnectError, DiscoveryError, ServerUnreachable, ToolInvocationError
from models.mcp_models import MCPResult, MCPTool, ServerDescriptor
from utils.client_factory import create_probe_client
from utils.logger import logger
from utils.metrics import mcp_readiness_probes_total

from .mcp_transport import MCPTransport, create_transport


class MCPConnection:
    """An open session to one MCP server.

    Tool calls made through a connection only ever reach the server it was
    opened for. ``close()`` is idempotent and never raises.
    """

    def __init__(self, descriptor: ServerDescriptor, transport: MCPTransport):
        self.descriptor = descriptor
        self.transport = transport
        self._closed = False

    @property
    def server_id(self) -> str:
        return self.descriptor.id

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def list_tools(self) -> list[MCPTool]:
        client = self.transport.client
        if self._closed or client is None:
            raise RuntimeError(f"Connection to '{self.server_id}' is closed")
        return await client.list_tools()

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> MCPResult:
        """Invoke a tool on this connection's server.

        Raises:
            ToolInvocationError: On transport failure or timeout. An MCP result
                with ``isError`` set is returned, not raised.
        """
        client = self.transport.client
        if self._closed or client is None:
            raise ToolInvocationError(tool_name, f"connection to '{self.server_id}' is closed")
        try:
            return await client.call_tool(tool_name, arguments)
        except (asyncio.CancelledError, ToolInvocationError):
            raise
        except TimeoutError as e:
            raise ToolInvocationError(tool_name, "timed out") from e
        except Exception as e:
            raise ToolInvocationError(tool_name, str(e) or type(e).__name__) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.transport.disconnect()


async def connect(
    descriptor: ServerDescriptor,
    connect_timeout: float = MCP_CONNECT_TIMEOUT,
    call_timeout: float = MCP_CALL_TOOL_TIMEOUT,
    list_timeout: float = MCP_LIST_TOOLS_TIMEOUT,
) -> MCPConnection:
    """Open a transport to ``descriptor`` and complete the MCP handshake.

    Raises:
        ConnectError: If the transport cannot be opened, the handshake fails,
            or ``connect_timeout`` elapses
    """
    try:
        transport = create_transport(
            descriptor,
            connect_timeout=connect_timeout,
            call_timeout=call_timeout,
            list_timeout=list_timeout,
        )
    except ValueError as e:
        raise ConnectError(descriptor.id, str(e)) from e

    try:
        await asyncio.wait_for(transport.connect(), timeout=connect_timeout)
    except asyncio.CancelledError:
        await transport.disconnect()
        raise
    except TimeoutError as e:
        await transport.disconnect()
        raise ConnectError(descriptor.id, f"timed out after {connect_timeout}s") from e
    except Exception as e:
        await transport.disconnect()
        raise ConnectError(descriptor.id, str(e) or type(e).__name__) from e

    logger.info(f"Connected to MCP server {descriptor.display_name}", server_id=descriptor.id)
    return MCPConnection(descriptor, transport)


async def discover_tools(connection: MCPConnection) -> dict[str, MCPTool]:
    """List the tools a connected server exposes, keyed by tool name.

    Raises:
        DiscoveryError: If ``tools/list`` fails or times out
    """
    try:
        tools = await connection.list_tools()
    except asyncio.CancelledError:
        raise
    except TimeoutError as e:
        raise DiscoveryError(connection.server_id, "tools/list timed out") from e
    except Exception as e:
        raise DiscoveryError(connection.server_id, str(e) or type(e).__name__) from e

    return {tool.name: tool for tool in tools}


async def close(connection: MCPConnection | None) -> None:
    """Close a connection. Safe on None, on a closed connection, and never raises."""
    if connection is None:
        return
    try:
        await connection.close()
    except Exception as e:
        logger.warning(f"Error closing MCP connection {connection.server_id}: {e}", server_id=connection.server_id)


def probe_url(url: str) -> str:
    """HTTP URL to probe for a server URL (WebSocket schemes map to HTTP)."""
    if url.startswith("ws://"):
        return "http://" + url[len("ws://") :]
    if url.startswith("wss://"):
        return "https://" + url[len("wss://") :]
    return url


async def wait_for_server_ready(
    url: str,
    headers: dict[str, str] | None = None,
    max_attempts: int = MCP_READY_MAX_ATTEMPTS,
    interval: float = MCP_READY_INTERVAL,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Poll ``url`` with GET until it answers HTTP 200.

    The response is streamed and only its status line is read, so SSE endpoints
    that never finish their body do not block the probe. There is a fixed
    ``interval`` between attempts and no wait after the final one.

    Returns:
        True on the first HTTP 200, False once ``max_attempts`` are exhausted
    """
    target = probe_url(url)
    owns_client = client is None
    http = client or create_probe_client()

    try:
        for attempt in range(1, max_attempts + 1):
            try:
                async with http.stream("GET", target, headers=headers) as response:
                    status = response.status_code
            except httpx.HTTPError as e:
                mcp_readiness_probes_total.labels(result="unreachable").inc()
                logger.debug(f"Server connection failed (attempt {attempt}): {type(e).__name__}")
            else:
                if status == 200:
                    mcp_readiness_probes_total.labels(result="ready").inc()
                    logger.info(f"Server ready at {target} after {attempt} attempts")
                    return True
                mcp_readiness_probes_total.labels(result="not_ready").inc()
                logger.debug(f"Server not ready yet (attempt {attempt}), status: {status}")

            if attempt < max_attempts:
                await asyncio.sleep(interval)
    finally:
        if owns_client:
            await http.aclose()

    return False


async def ensure_server_ready(
    url: str,
    headers: dict[str, str] | None = None,
    max_attempts: int = MCP_READY_MAX_ATTEMPTS,
    interval: float = MCP_READY_INTERVAL,
    client: httpx.AsyncClient | None = None,
) -> None:
    """Like ``wait_for_server_ready`` but raises when the server never becomes ready.

    Raises:
        ServerUnreachable: After ``max_attempts`` probes without an HTTP 200
    """
    if not await wait_for_server_ready(url, headers, max_attempts, interval, client):
        raise ServerUnreachable(url, max_attempts)
