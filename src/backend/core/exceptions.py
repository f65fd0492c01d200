"""
Domain exceptions for toolchat.

Every failure raised by the MCP integration layer or the orchestration engine
derives from ``ToolchatError`` and carries the ``ErrorCode`` reported to clients.
"""

from __future__ import annotations

from models.error_models import ErrorCode


class ToolchatError(Exception):
    """Base class for application errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ServerUnreachable(ToolchatError):
    """Readiness probing exhausted its attempts without an HTTP 200."""

    code = ErrorCode.MCP_SERVER_UNREACHABLE

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"MCP server at {url} not ready after {attempts} attempts")
        self.url = url
        self.attempts = attempts


class ConnectError(ToolchatError):
    """Transport could not be opened or the MCP handshake failed."""

    code = ErrorCode.MCP_SERVER_ERROR

    def __init__(self, server_id: str, reason: str) -> None:
        super().__init__(f"Failed to connect to MCP server '{server_id}': {reason}")
        self.server_id = server_id
        self.reason = reason


class DiscoveryError(ToolchatError):
    """tools/list failed or returned an invalid payload."""

    code = ErrorCode.MCP_SERVER_ERROR

    def __init__(self, server_id: str, reason: str) -> None:
        super().__init__(f"Tool discovery failed for MCP server '{server_id}': {reason}")
        self.server_id = server_id
        self.reason = reason


class ToolInvocationError(ToolchatError):
    """tools/call failed at the transport level (not an MCP isError result)."""

    code = ErrorCode.TOOL_FAILED

    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class ModelStreamError(ToolchatError):
    """The model provider failed while streaming a turn."""

    code = ErrorCode.MODEL_ERROR

    def __init__(self, message: str, rate_limited: bool = False) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited
        if rate_limited:
            self.code = ErrorCode.EXTERNAL_RATE_LIMITED


class CancellationRequested(ToolchatError):
    """The run's cancellation token fired."""

    code = ErrorCode.RUN_CANCELLED

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or "Cancellation requested")
        self.reason = reason


__all__ = [
    "CancellationRequested",
    "ConnectError",
    "DiscoveryError",
    "ModelStreamError",
    "ServerUnreachable",
    "ToolInvocationError",
    "ToolchatError",
]
