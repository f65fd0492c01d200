"""Backend test fixtures."""

from __future__ import annotations

from collections.abc import Generator

import pytest


@pytest.fixture(autouse=True)
def reset_server_store() -> Generator[None, None, None]:
    """Forget the process-wide MCP server store between tests."""
    from integrations import mcp_lifecycle

    mcp_lifecycle._state["store"] = None
    yield
    mcp_lifecycle._state["store"] = None
