"""API test fixtures: the FastAPI app wired to scripted collaborators."""

from __future__ import annotations

from collections.abc import AsyncIterator, Generator
from typing import Any
from unittest.mock import AsyncMock

import pytest

from fastapi.testclient import TestClient

from core.cancellation import CancellationToken
from integrations import mcp_lifecycle
from integrations.mcp_lifecycle import MCPServerLifecycleManager, MCPServerStore
from models.chat_models import ChatMessage
from models.event_models import DoneEvent, StreamEvent, TextDeltaEvent
from models.schemas.chat import ChatRequest


class FakeChatService:
    """Replays ``events`` for every run; optionally holds the run open until cancelled."""

    def __init__(self) -> None:
        self.events: list[Any] = [
            TextDeltaEvent(step=1, delta="Hello"),
            DoneEvent(chat_id=None, steps=1, messages=[ChatMessage.user("hi")]),
        ]
        self.block = False
        self.requests: list[tuple[ChatRequest, str]] = []
        self.tokens: list[CancellationToken] = []

    async def stream_chat(
        self, request: ChatRequest, chat_id: str, cancellation_token: CancellationToken
    ) -> AsyncIterator[StreamEvent]:
        self.requests.append((request, chat_id))
        self.tokens.append(cancellation_token)
        for event in self.events:
            yield event
        if self.block:
            await cancellation_token.wait_for_cancellation()


@pytest.fixture
def probe() -> AsyncMock:
    return AsyncMock(return_value=True)


@pytest.fixture
def chat_service() -> FakeChatService:
    return FakeChatService()


@pytest.fixture
def client(probe: AsyncMock, chat_service: FakeChatService) -> Generator[TestClient, None, None]:
    from api.main import app

    with TestClient(app) as test_client:
        store = MCPServerStore(MCPServerLifecycleManager(probe=probe, max_attempts=1, interval=0))
        mcp_lifecycle._state["store"] = store
        app.state.server_store = store
        app.state.chat_service = chat_service
        yield test_client
