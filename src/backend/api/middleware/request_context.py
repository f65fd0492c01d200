"""
Request context for toolchat.

Every HTTP request and WebSocket connection gets a ``RequestContext`` held in
a ``ContextVar``. The logger reads it to tag records with the request id and,
once a chat run is bound, the chat id, client id, model and MCP servers.
"""

from __future__ import annotations

import secrets
import time

from collections.abc import Iterable
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)

REQUEST_ID_PREFIX = "req_"
WEBSOCKET_ID_PREFIX = "ws_"
REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class RequestContext:
    """What the current request is doing, for log enrichment and error responses."""

    request_id: str
    path: str = ""
    method: str = ""
    client_ip: str | None = None
    started_at: float = field(default_factory=time.monotonic)

    # Set once a chat run starts on this request
    chat_id: str | None = None
    user_id: str | None = None
    model: str | None = None
    server_ids: tuple[str, ...] = ()

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000

    def to_log_context(self) -> dict[str, Any]:
        ctx: dict[str, Any] = {
            "request_id": self.request_id,
            "path": self.path,
            "method": self.method,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        optional = {
            "client_ip": self.client_ip,
            "chat_id": self.chat_id,
            "user_id": self.user_id,
            "model": self.model,
        }
        ctx.update({key: value for key, value in optional.items() if value})
        if self.server_ids:
            ctx["mcp_servers"] = list(self.server_ids)
        return ctx


def generate_request_id(prefix: str = REQUEST_ID_PREFIX) -> str:
    """``prefix`` + 16 hex characters, e.g. ``req_a1b2c3d4e5f6a7b8``."""
    return f"{prefix}{secrets.token_hex(8)}"


def get_request_context() -> RequestContext | None:
    return _request_context.get()


def get_request_id() -> str | None:
    ctx = _request_context.get()
    return ctx.request_id if ctx else None


def set_request_context(context: RequestContext) -> None:
    _request_context.set(context)


def clear_request_context() -> None:
    _request_context.set(None)


def bind_chat_run(
    chat_id: str,
    user_id: str | None = None,
    model: str | None = None,
    server_ids: Iterable[str] = (),
) -> None:
    """Attach the chat run being served to the current context (no-op outside a request)."""
    ctx = _request_context.get()
    if ctx is None:
        return
    ctx.chat_id = chat_id
    ctx.user_id = user_id
    ctx.model = model
    ctx.server_ids = tuple(server_ids)


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Leftmost entry is the client as seen by the first proxy
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Creates the context for each HTTP request and echoes the request id.

    An upstream ``X-Request-ID`` is reused so a chat can be traced across
    services. For streamed chat responses ``X-Response-Time`` measures the
    time to the first byte, not the whole run.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or generate_request_id(),
            path=request.url.path,
            method=request.method,
            client_ip=_client_ip(request),
        )
        set_request_context(context)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers[REQUEST_ID_HEADER] = context.request_id
        response.headers["X-Response-Time"] = f"{context.elapsed_ms:.2f}ms"
        return response


def create_websocket_context(path: str, chat_id: str, client_ip: str | None = None) -> RequestContext:
    """Context for one WebSocket connection; it lives as long as the socket."""
    context = RequestContext(
        request_id=generate_request_id(WEBSOCKET_ID_PREFIX),
        path=path,
        method="WEBSOCKET",
        client_ip=client_ip,
        chat_id=chat_id,
    )
    set_request_context(context)
    return context
