"""
Stream event models for toolchat.

Every orchestration run produces a finite sequence of these events. They are
serialized as newline-delimited JSON on the HTTP stream and as JSON frames on
the WebSocket.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from models.chat_models import ChatMessage
from models.mcp_models import ToolOutcome


class _Event(BaseModel):
    def to_json(self) -> str:
        """Convert to a single JSON line."""
        json_str: str = self.model_dump_json(exclude_none=True)
        return json_str

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class TextDeltaEvent(_Event):
    """Incremental assistant text, emitted as soon as it is generated."""

    type: Literal["text_delta"] = "text_delta"
    step: int
    delta: str


class ReasoningDeltaEvent(_Event):
    """Incremental reasoning text (model dependent)."""

    type: Literal["reasoning_delta"] = "reasoning_delta"
    step: int
    delta: str


class ToolCallEvent(_Event):
    """The model asked for a tool; dispatch follows immediately."""

    type: Literal["tool_call"] = "tool_call"
    step: int
    tool_call_id: str
    tool_name: str
    arguments: str


class ToolResultEvent(_Event):
    """Outcome of one tool invocation."""

    type: Literal["tool_result"] = "tool_result"
    step: int
    tool_call_id: str
    tool_name: str
    outcome: ToolOutcome


class StepFinishEvent(_Event):
    """A model turn ended."""

    type: Literal["step_finish"] = "step_finish"
    step: int
    finish_reason: str | None = None
    tool_calls: int = 0


class DoneEvent(_Event):
    """The run completed; ``messages`` is the full updated conversation."""

    type: Literal["done"] = "done"
    chat_id: str | None = None
    steps: int
    messages: list[ChatMessage]


class ErrorEvent(_Event):
    """The run failed. Terminal: nothing follows it."""

    type: Literal["error"] = "error"
    message: str
    code: str | None = None
    rate_limited: bool = False


StreamEvent = Annotated[
    TextDeltaEvent
    | ReasoningDeltaEvent
    | ToolCallEvent
    | ToolResultEvent
    | StepFinishEvent
    | DoneEvent
    | ErrorEvent,
    Field(discriminator="type"),
]

#: Validator for decoding serialized events (clients, tests)
stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


__all__ = [
    "DoneEvent",
    "ErrorEvent",
    "ReasoningDeltaEvent",
    "StepFinishEvent",
    "StreamEvent",
    "TextDeltaEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "stream_event_adapter",
]
