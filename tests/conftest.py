"""Shared test fixtures for the toolchat test suite.

This module provides common fixtures used across all test modules,
including fakes for MCP connections and the model provider.
"""

from __future__ import annotations

import os

from collections.abc import AsyncIterator, Generator, Sequence
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

# ============================================================================
# EARLY INITIALIZATION: Runs before test collection
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Provide credentials before collection, when module-level imports happen.

    ``api.main`` builds settings at import time and settings validation
    requires a provider API key.
    """
    os.environ.setdefault("OPENAI_API_KEY", "sk-test-key-for-unit-tests")
    os.environ.setdefault("APP_ENV", "test")
    # No wait between readiness probes in tests that reach the real defaults
    os.environ.setdefault("MCP_READY_INTERVAL", "0")


# ============================================================================
# Test Isolation: Settings
# ============================================================================


@pytest.fixture(autouse=True)
def reset_settings() -> Generator[None, None, None]:
    """Drop the cached settings so per-test environment changes take effect."""
    from core.constants import clear_settings_cache

    clear_settings_cache()
    yield
    clear_settings_cache()


# ============================================================================
# Mock External Dependencies
# ============================================================================


@pytest.fixture
def mock_openai_client() -> Generator[Mock, None, None]:
    """Mock OpenAI client for testing."""
    client = Mock()
    client.chat.completions.create = AsyncMock()
    yield client


class FakeConnection:
    """Stand-in for ``MCPConnection`` recording calls and closes."""

    def __init__(
        self,
        server_id: str,
        results: dict[str, Any] | None = None,
        close_error: Exception | None = None,
    ) -> None:
        from models.mcp_models import MCPResult

        self.server_id = server_id
        self.results: dict[str, Any] = results or {}
        self.close_error = close_error
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.close_count = 0
        self._default = MCPResult(content=[{"type": "text", "text": f"ok from {server_id}"}])

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        self.calls.append((tool_name, arguments))
        result = self.results.get(tool_name, self._default)
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self) -> None:
        self.close_count += 1
        if self.close_error is not None:
            raise self.close_error


class ScriptedProvider:
    """``ModelProvider`` that replays one scripted list of chunks per turn.

    Records the keyword arguments of every ``stream_turn`` call.
    """

    def __init__(self, turns: Sequence[Sequence[Any]]) -> None:
        self.turns = [list(t) for t in turns]
        self.requests: list[dict[str, Any]] = []

    async def stream_turn(self, **kwargs: Any) -> AsyncIterator[Any]:
        from integrations.model_provider import TurnEnd

        self.requests.append(kwargs)
        index = len(self.requests) - 1
        chunks = self.turns[index] if index < len(self.turns) else [TurnEnd("stop")]
        for chunk in chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


@pytest.fixture
def fake_connection_factory() -> type[FakeConnection]:
    return FakeConnection


@pytest.fixture
def scripted_provider_factory() -> type[ScriptedProvider]:
    return ScriptedProvider
