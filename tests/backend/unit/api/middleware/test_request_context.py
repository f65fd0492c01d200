"""Tests for request context propagation."""

from __future__ import annotations

from collections.abc import Generator

import pytest

from api.middleware.request_context import (
    RequestContext,
    bind_chat_run,
    clear_request_context,
    create_websocket_context,
    generate_request_id,
    get_request_context,
    get_request_id,
    set_request_context,
)


@pytest.fixture(autouse=True)
def _clean_context() -> Generator[None, None, None]:
    clear_request_context()
    yield
    clear_request_context()


class TestRequestContext:
    def test_minimal_log_context(self) -> None:
        ctx = RequestContext(request_id="req_1", path="/api/chat", method="POST")

        log_ctx = ctx.to_log_context()

        assert log_ctx["request_id"] == "req_1"
        assert "chat_id" not in log_ctx
        assert "mcp_servers" not in log_ctx

    def test_bind_chat_run(self) -> None:
        set_request_context(RequestContext(request_id="req_1"))

        bind_chat_run("chat_1", "u1", "gpt-4.1", iter(["weather", "search"]))

        log_ctx = get_request_context().to_log_context()  # type: ignore[union-attr]
        assert log_ctx["chat_id"] == "chat_1"
        assert log_ctx["user_id"] == "u1"
        assert log_ctx["model"] == "gpt-4.1"
        assert log_ctx["mcp_servers"] == ["weather", "search"]

    def test_bind_outside_request_is_noop(self) -> None:
        bind_chat_run("chat_1")
        assert get_request_context() is None
        assert get_request_id() is None

    def test_websocket_context(self) -> None:
        ctx = create_websocket_context("/ws/chat/c1", "c1", client_ip="10.0.0.1")

        assert ctx.request_id.startswith("ws_")
        assert ctx.method == "WEBSOCKET"
        assert get_request_id() == ctx.request_id

    def test_generated_ids(self) -> None:
        request_id = generate_request_id()
        assert request_id.startswith("req_")
        assert len(request_id) == len("req_") + 16
