"""SSE and Streamable HTTP MCP client built on the official ``mcp`` SDK.

The SDK transports are anyio context managers that must be entered and exited
by the same task. Each client therefore runs its session inside a dedicated
owner task; ``close()`` only signals that task, so a connection opened in one
request task can be closed from any other (for example an abort listener).
"""

from __future__ import annotations

import asyncio
import contextlib

from contextlib import AsyncExitStack
from datetime import timedelta
from typing import Any

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client

from core.constants import (
    MCP_CALL_TOOL_TIMEOUT,
    MCP_CONNECT_TIMEOUT,
    MCP_LIST_TOOLS_TIMEOUT,
)
from models.mcp_models import MCPResult, MCPTool, TransportKind
from utils.logger import logger

#: Grace period for the owner task to unwind after close is signalled (seconds)
CLOSE_TIMEOUT = 5.0


class SDKStreamMCPClient:
    """MCP client for ``sse`` and ``http`` servers.

    Exposes the same surface as ``WebSocketMCPClient``: ``connect``,
    ``list_tools``, ``call_tool`` and ``close``.
    """

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
        if kind not in (TransportKind.SSE, TransportKind.HTTP):
            raise ValueError(f"Unsupported SDK transport kind: {kind}")

        self.url = url
        self.server_name = server_name
        self.kind = kind
        self.headers = headers or {}
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self.list_timeout = list_timeout

        self._session: ClientSession | None = None
        self._owner: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._closing.is_set()

    def _open_transport(self) -> Any:
        if self.kind == TransportKind.SSE:
            return sse_client(self.url, headers=self.headers, timeout=self.connect_timeout)
        return streamablehttp_client(self.url, headers=self.headers, timeout=self.connect_timeout)

    async def _run_session(self) -> None:
        """Owner task: enter transport and session, wait for close, then exit both."""
        async with AsyncExitStack() as stack:
            streams = await stack.enter_async_context(self._open_transport())
            session = await stack.enter_async_context(
                ClientSession(
                    streams[0],
                    streams[1],
                    read_timeout_seconds=timedelta(seconds=self.call_timeout),
                )
            )
            await session.initialize()
            self._session = session
            self._ready.set()
            logger.info(f"{self.server_name}: MCP session initialized ({self.kind.value})")

            await self._closing.wait()

        self._session = None

    async def connect(self) -> SDKStreamMCPClient:
        """Open the transport and complete the MCP handshake.

        Raises:
            TimeoutError: If the handshake does not finish within ``connect_timeout``
            Exception: Whatever the transport raised while opening
        """
        if self._owner is not None:
            raise RuntimeError(f"{self.server_name}: client already connected")

        self._owner = asyncio.create_task(self._run_session(), name=f"mcp-session-{self.server_name}")
        ready_waiter = asyncio.ensure_future(self._ready.wait())
        try:
            await asyncio.wait(
                {self._owner, ready_waiter},
                timeout=self.connect_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self._abandon()
            raise
        finally:
            ready_waiter.cancel()

        if self._ready.is_set():
            return self

        owner = self._owner
        if owner.done() and not owner.cancelled():
            error = owner.exception()
            if error is not None:
                self._owner = None
                raise error

        await self._abandon()
        raise TimeoutError(f"{self.server_name}: MCP handshake timed out after {self.connect_timeout}s")

    async def _abandon(self) -> None:
        """Cancel an owner task whose session never became ready."""
        self._closing.set()
        owner, self._owner = self._owner, None
        self._session = None
        if owner is not None and not owner.done():
            owner.cancel()
            await asyncio.gather(owner, return_exceptions=True)

    async def close(self) -> None:
        """Signal the owner task to exit and wait briefly for it. Idempotent."""
        self._closing.set()
        owner, self._owner = self._owner, None
        self._session = None
        if owner is None or owner.done():
            if owner is not None and not owner.cancelled():
                # Retrieve so a failed session is not reported as never-retrieved
                owner.exception()
            return

        try:
            await asyncio.wait_for(asyncio.shield(owner), timeout=CLOSE_TIMEOUT)
        except TimeoutError:
            logger.warning(f"{self.server_name}: session did not close in {CLOSE_TIMEOUT}s, cancelling")
            owner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await owner
        logger.info(f"{self.server_name}: MCP session closed")

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError("Client not initialized")
        return self._session

    async def list_tools(self) -> list[MCPTool]:
        """List available tools from the MCP server."""
        session = self._require_session()
        result = await asyncio.wait_for(session.list_tools(), timeout=self.list_timeout)
        return [MCPTool.model_validate(tool.model_dump(mode="json", exclude_none=True)) for tool in result.tools]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> MCPResult:
        """Call a tool on the MCP server."""
        session = self._require_session()
        result = await asyncio.wait_for(
            session.call_tool(tool_name, arguments=arguments),
            timeout=self.call_timeout,
        )
        return MCPResult.model_validate(result.model_dump(mode="json", exclude_none=True))
