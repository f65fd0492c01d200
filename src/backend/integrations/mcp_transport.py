"""
MCP Transport Abstraction Layer.

Supports SSE and Streamable HTTP (via the ``mcp`` SDK) and WebSocket
(JSON-RPC client for containerized MCP servers).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol

from core.constants import MCP_CALL_TOOL_TIMEOUT, MCP_CONNECT_TIMEOUT, MCP_LIST_TOOLS_TIMEOUT
from models.mcp_models import MCPResult, MCPTool, ServerDescriptor, TransportKind
from utils.logger import logger

from .mcp_sdk_client import SDKStreamMCPClient
from .mcp_websocket_client import WebSocketMCPClient


class MCPClient(Protocol):
    """Surface shared by every MCP client implementation."""

    server_name: str

    async def connect(self) -> Any: ...

    async def close(self) -> None: ...

    async def list_tools(self) -> list[MCPTool]: ...

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> MCPResult: ...


class MCPTransport(ABC):
    """Abstract base for MCP server transports."""

    def __init__(self, server_name: str):
        self.server_name = server_name
        self._client: MCPClient | None = None

    @property
    def client(self) -> MCPClient | None:
        return self._client

    @abstractmethod
    def _build_client(self) -> MCPClient:
        """Create the (not yet connected) client for this transport."""

    async def connect(self) -> MCPClient:
        """Connect to the MCP server and return the initialized client."""
        client = self._build_client()
        await client.connect()
        self._client = client
        return client

    async def disconnect(self) -> None:
        """Disconnect from the MCP server and cleanup resources. Safe on a never-opened transport."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.close()
            logger.debug(f"{self.server_name} disconnected")
        except Exception as e:
            logger.warning(f"Error disconnecting {self.server_name}: {e}")


class SDKStreamTransport(MCPTransport):
    """SSE or Streamable HTTP transport through the ``mcp`` SDK client session."""

    def __init__(
        self,
        url: str,
        server_name: str,
        kind: TransportKind,
        headers: dict[str, str] | None = None,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
        call_timeout: float = MCP_CALL_TOOL_TIMEOUT,
        list_timeout: float = MCP_LIST_TOOLS_TIMEOUT,
    ):
        super().__init__(server_name)
        self.url = url
        self.kind = kind
        self.headers = headers or {}
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self.list_timeout = list_timeout

    def _build_client(self) -> MCPClient:
        return SDKStreamMCPClient(
            self.url,
            self.server_name,
            self.kind,
            headers=self.headers,
            connect_timeout=self.connect_timeout,
            call_timeout=self.call_timeout,
            list_timeout=self.list_timeout,
        )


class WebSocketTransport(MCPTransport):
    """WebSocket transport for containerized MCP servers.

    Uses one persistent bidirectional connection per server.
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
        super().__init__(server_name)
        self.ws_url = ws_url
        self.headers = headers or {}
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self.list_timeout = list_timeout

    def _build_client(self) -> MCPClient:
        return WebSocketMCPClient(
            self.ws_url,
            self.server_name,
            headers=self.headers,
            connect_timeout=self.connect_timeout,
            call_timeout=self.call_timeout,
            list_timeout=self.list_timeout,
        )


def create_transport(
    descriptor: ServerDescriptor,
    connect_timeout: float = MCP_CONNECT_TIMEOUT,
    call_timeout: float = MCP_CALL_TOOL_TIMEOUT,
    list_timeout: float = MCP_LIST_TOOLS_TIMEOUT,
) -> MCPTransport:
    """Factory function to create the transport matching a server descriptor.

    Raises:
        ValueError: If the transport kind is unknown
    """
    if descriptor.type in (TransportKind.SSE, TransportKind.HTTP):
        return SDKStreamTransport(
            url=descriptor.url,
            server_name=descriptor.display_name,
            kind=descriptor.type,
            headers=descriptor.header_map,
            connect_timeout=connect_timeout,
            call_timeout=call_timeout,
            list_timeout=list_timeout,
        )
    if descriptor.type == TransportKind.WEBSOCKET:
        return WebSocketTransport(
            ws_url=descriptor.url,
            server_name=descriptor.display_name,
            headers=descriptor.header_map,
            connect_timeout=connect_timeout,
            call_timeout=call_timeout,
            list_timeout=list_timeout,
        )
    raise ValueError(f"Unknown transport mode: {descriptor.type}")
