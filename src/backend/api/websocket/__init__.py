"""WebSocket helpers for the chat socket: error frames and close codes."""

from __future__ import annotations

from api.websocket.errors import (
    ERROR_CODE_TO_WS_CLOSE,
    WSCloseCode,
    close_code_for,
    close_with_error,
    send_ws_error,
)

__all__ = [
    "ERROR_CODE_TO_WS_CLOSE",
    "WSCloseCode",
    "close_code_for",
    "close_with_error",
    "send_ws_error",
]
