from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from api.services.chat_service import ChatService
from api.services.chat_store import ChatStore
from core.constants import Settings, get_settings
from integrations.mcp_lifecycle import MCPServerLifecycleManager, MCPServerStore


def get_app_settings() -> Settings:
    """Provide application settings via dependency injection.

    In development with CONFIG_HOT_RELOAD=true, settings are reloaded
    on each request to pick up .env file changes without restart.

    Usage in routes:
        @router.get("/example")
        async def example(settings: AppSettings):
            return {"debug": settings.debug}
    """
    return get_settings()


def get_server_store(request: Request) -> MCPServerStore:
    """Get the MCP server store from application state."""
    return request.app.state.server_store


def get_lifecycle(store: Annotated[MCPServerStore, Depends(get_server_store)]) -> MCPServerLifecycleManager:
    return store.lifecycle


def get_chat_store(request: Request) -> ChatStore:
    return request.app.state.chat_store


def get_chat_service(request: Request) -> ChatService:
    """Get the chat service from application state."""
    return request.app.state.chat_service


# Type aliases for cleaner route signatures
AppSettings = Annotated[Settings, Depends(get_app_settings)]
ServerStore = Annotated[MCPServerStore, Depends(get_server_store)]
Lifecycle = Annotated[MCPServerLifecycleManager, Depends(get_lifecycle)]
Chats = Annotated[ChatStore, Depends(get_chat_store)]
ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]
