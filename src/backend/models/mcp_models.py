"""
Pydantic models for MCP (Model Context Protocol).

These models provide type safety for:
- Server descriptors and runtime status (ServerDescriptor, ServerStatusRecord)
- Tool definitions (MCPTool)
- Tool execution results (MCPResult)
- Normalized invocation outcomes handed to the model (ToolSuccess / ToolFailure)
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransportKind(str, Enum):
    """Wire transport used to reach an MCP server."""

    SSE = "sse"
    HTTP = "http"  # Streamable HTTP
    WEBSOCKET = "websocket"


class ServerStatus(str, Enum):
    """Lifecycle state of a configured MCP server."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class KeyValuePair(BaseModel):
    """Ordered key/value entry used for headers and environment variables."""

    key: str
    value: str = ""


class ServerDescriptor(BaseModel):
    """Immutable description of one MCP tool server.

    Identity is ``id``; the descriptor is never mutated during a request.
    ``command``/``args``/``env`` are only used when the server has to be
    launched locally before it can be probed.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    url: str
    type: TransportKind = TransportKind.SSE
    description: str | None = None
    headers: tuple[KeyValuePair, ...] = ()
    command: str | None = None
    args: tuple[str, ...] = ()
    env: tuple[KeyValuePair, ...] = ()

    @field_validator("id", "url")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @property
    def header_map(self) -> dict[str, str]:
        """Headers as a dict. Empty keys are dropped; a repeated key keeps its last value."""
        return {h.key: h.value for h in self.headers if h.key}

    @property
    def env_map(self) -> dict[str, str]:
        return {e.key: e.value for e in self.env if e.key}

    @property
    def display_name(self) -> str:
        return self.name or self.id


class ServerStatusRecord(BaseModel):
    """Runtime status of a server as seen by the lifecycle manager."""

    id: str
    status: ServerStatus = ServerStatus.DISCONNECTED
    error_message: str | None = None
    tools: list[str] = Field(default_factory=list)


class MCPTool(BaseModel):
    """Model for an MCP tool definition.

    Represents a tool available on an MCP server.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    description: str | None = None
    inputSchema: dict[str, Any] = Field(default_factory=dict)

    def to_openai_schema(self) -> dict[str, Any]:
        """Render as a Chat Completions function tool definition."""
        parameters = self.inputSchema or {"type": "object", "properties": {}}
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or "",
                "parameters": parameters,
            },
        }


class MCPResult(BaseModel):
    """Model for an MCP tool execution result (``tools/call`` response)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    content: list[dict[str, Any]] = Field(default_factory=list)
    structuredContent: dict[str, Any] | None = None
    isError: bool = False

    def text(self) -> str:
        """Concatenate the text blocks of the result."""
        return "\n".join(
            str(block.get("text", "")) for block in self.content if block.get("type") == "text"
        )

    def payload(self) -> Any:
        """Best value to hand back to the model: structured content when present."""
        if self.structuredContent is not None:
            return self.structuredContent
        text = self.text()
        if text or not self.content:
            return text
        return self.content


class ToolSuccess(BaseModel):
    """Tool invocation succeeded; ``payload`` is returned to the model."""

    status: Literal["success"] = "success"
    payload: Any = None


class ToolFailure(BaseModel):
    """Tool invocation failed; ``reason`` is returned to the model as the tool output."""

    status: Literal["failure"] = "failure"
    reason: str


#: Normalized outcome of one tool invocation (discriminated on ``status``)
ToolOutcome = Annotated[ToolSuccess | ToolFailure, Field(discriminator="status")]


__all__ = [
    "KeyValuePair",
    "MCPResult",
    "MCPTool",
    "ServerDescriptor",
    "ServerStatus",
    "ServerStatusRecord",
    "ToolFailure",
    "ToolOutcome",
    "ToolSuccess",
    "TransportKind",
]
