"""
Chat API schemas.

Request bodies for the streaming chat endpoint and the WebSocket ``message``
frame. Response content is the ``StreamEvent`` sequence (see
``models.event_models``).
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from models.chat_models import ChatMessage
from models.mcp_models import ServerDescriptor


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat``."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "messages": [{"role": "user", "content": "What's the weather in Paris?"}],
                "chat_id": "c_8f2a1b",
                "user_id": "u_123",
                "model": "gpt-4.1-mini",
                "mcp_servers": [
                    {
                        "id": "weather",
                        "name": "Weather",
                        "url": "https://weather.example.com/sse",
                        "type": "sse",
                        "headers": [{"key": "Authorization", "value": "Bearer ..."}],
                    }
                ],
            }
        }
    )

    messages: list[ChatMessage] = Field(default_factory=list, description="Conversation so far")
    chat_id: str | None = Field(default=None, description="Chat identifier (generated when omitted)")
    user_id: str | None = Field(default=None, description="Client identifier")
    model: str | None = Field(default=None, description="Model id (defaults to the configured model)")
    mcp_servers: list[ServerDescriptor] = Field(default_factory=list, description="Tool servers for this run")
    system_prompt: str | None = Field(default=None, description="System prompt override")
    max_steps: int | None = Field(default=None, ge=1, description="Step limit override")


class WSChatMessage(ChatRequest):
    """WebSocket ``{"type": "message"}`` frame; the chat id comes from the URL."""

    type: Literal["message"] = "message"


class WSInterrupt(BaseModel):
    """WebSocket ``{"type": "interrupt"}`` frame."""

    type: Literal["interrupt"] = "interrupt"
    reason: str | None = None


class StoredChat(BaseModel):
    """A persisted conversation."""

    chat_id: str
    user_id: str | None = None
    model: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
