"""
Chat message models shared by the API, the orchestration engine and the chat store.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from models.mcp_models import ToolOutcome

Role = Literal["system", "user", "assistant", "tool"]


class ToolCallRequest(BaseModel):
    """A tool invocation requested by the model.

    ``arguments`` is the raw JSON text emitted by the model; it is parsed only
    when the call is dispatched.
    """

    id: str
    name: str
    arguments: str = "{}"


class ChatMessage(BaseModel):
    """One message of a conversation.

    A ``tool`` message carries both the request (``tool_call``) and its
    ``outcome``; ``step`` is the model turn that produced the message.
    """

    model_config = ConfigDict(extra="ignore")

    role: Role
    content: str = ""
    step: int | None = None
    reasoning: str | None = None
    tool_call: ToolCallRequest | None = None
    outcome: ToolOutcome | None = Field(default=None)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)
