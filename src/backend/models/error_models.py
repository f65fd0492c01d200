"""
Error payloads for the toolchat API.

REST errors share one envelope (``{"error": {...}}``); WebSocket protocol
problems are reported as ``ws_error`` frames. Failures inside a chat run are
not errors in this sense: they reach the client as ``error`` stream events
(see ``models.event_models``) whose ``code`` is an ``ErrorCode`` value.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Application error codes. The prefix names the category."""

    # Request validation
    VALIDATION_ERROR = "VAL_2001"

    # Unknown resources
    RESOURCE_NOT_FOUND = "RES_3001"
    SERVER_NOT_FOUND = "RES_3010"

    # Chat runs
    RUN_CANCELLED = "RUN_4001"
    TOOL_FAILED = "RUN_4012"

    # WebSocket protocol
    WS_MESSAGE_INVALID = "WS_6002"

    # Model provider and MCP servers
    EXTERNAL_SERVICE_ERROR = "EXT_7001"
    EXTERNAL_TIMEOUT = "EXT_7002"
    EXTERNAL_RATE_LIMITED = "EXT_7003"
    MODEL_ERROR = "EXT_7010"
    MCP_SERVER_ERROR = "EXT_7020"
    MCP_SERVER_UNREACHABLE = "EXT_7021"

    # Everything else
    INTERNAL_ERROR = "INT_9001"

    @property
    def category(self) -> str:
        return self.value.split("_", 1)[0]

    @property
    def http_status(self) -> int:
        return _STATUS_OVERRIDES.get(self, _STATUS_BY_CATEGORY.get(self.category, 500))


_STATUS_BY_CATEGORY = {"VAL": 422, "RES": 404, "WS": 400, "EXT": 502}

_STATUS_OVERRIDES = {
    ErrorCode.EXTERNAL_RATE_LIMITED: 429,
    ErrorCode.EXTERNAL_TIMEOUT: 503,
    ErrorCode.MCP_SERVER_UNREACHABLE: 503,
}


def get_status_code(error_code: ErrorCode) -> int:
    """HTTP status for a REST error carrying ``error_code`` (500 when unmapped)."""
    return error_code.http_status


class ErrorDetail(BaseModel):
    """One field-level problem, e.g. a request validation failure."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """REST error envelope.

    Serialized as::

        {"error": {"code": "RES_3010", "message": "Unknown MCP server: weather",
                   "request_id": "req_...", "timestamp": "...", "path": "/api/servers/weather/start"}}
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    path: str | None = None
    details: list[ErrorDetail] | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    # Only sent when the app runs with debug enabled
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        body = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            body["debug"] = self.debug
        return {"error": body}


class WebSocketError(BaseModel):
    """``ws_error`` frame for protocol problems on the chat socket (bad or unknown frames)."""

    type: str = "ws_error"
    code: ErrorCode
    message: str
    chat_id: str | None = None
    request_id: str | None = None
    recoverable: bool = True
    details: dict[str, Any] | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
