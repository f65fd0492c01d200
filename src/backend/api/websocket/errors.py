"""
Error frames and close codes for the chat WebSocket.

Failures inside a run travel as ``error`` stream events; the helpers here are
for the socket itself: frames the server cannot use and unexpected failures
that end the connection.
"""

from __future__ import annotations

import contextlib

from enum import IntEnum
from typing import Any

from fastapi import WebSocket

from api.middleware.request_context import get_request_id
from models.error_models import ErrorCode, WebSocketError
from utils.logger import logger
from utils.metrics import ws_messages_total

#: RFC 6455 limits a close reason to 123 bytes
MAX_CLOSE_REASON_BYTES = 123


class WSCloseCode(IntEnum):
    NORMAL = 1000
    GOING_AWAY = 1001
    INVALID_PAYLOAD = 1007
    INTERNAL_ERROR = 1011
    TRY_AGAIN_LATER = 1013


ERROR_CODE_TO_WS_CLOSE: dict[ErrorCode, WSCloseCode] = {
    ErrorCode.WS_MESSAGE_INVALID: WSCloseCode.INVALID_PAYLOAD,
    ErrorCode.EXTERNAL_RATE_LIMITED: WSCloseCode.TRY_AGAIN_LATER,
    ErrorCode.MCP_SERVER_UNREACHABLE: WSCloseCode.TRY_AGAIN_LATER,
}


def close_code_for(code: ErrorCode) -> WSCloseCode:
    return ERROR_CODE_TO_WS_CLOSE.get(code, WSCloseCode.INTERNAL_ERROR)


def _close_reason(message: str) -> str:
    return message.encode("utf-8")[:MAX_CLOSE_REASON_BYTES].decode("utf-8", errors="ignore")


async def send_ws_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    chat_id: str | None = None,
    recoverable: bool = True,
    details: dict[str, Any] | None = None,
) -> None:
    """Send a ``ws_error`` frame. A socket that is already gone is only logged."""
    frame = WebSocketError(
        code=code,
        message=message,
        chat_id=chat_id,
        request_id=get_request_id(),
        recoverable=recoverable,
        details=details,
    )
    try:
        await websocket.send_json(frame.to_dict())
    except Exception as e:
        logger.warning(f"Could not send WebSocket error {code.value}: {e}", chat_id=chat_id)
        return
    ws_messages_total.labels(direction="outbound").inc()


async def close_with_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    chat_id: str | None = None,
) -> None:
    """Send a final, non-recoverable error frame and close the socket."""
    await send_ws_error(websocket, code=code, message=message, chat_id=chat_id, recoverable=False)
    with contextlib.suppress(Exception):
        await websocket.close(code=close_code_for(code), reason=_close_reason(message))
