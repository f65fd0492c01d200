"""
MCP server management API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from models.mcp_models import ServerDescriptor, ServerStatus, ServerStatusRecord, TransportKind


class ServerListUpdate(BaseModel):
    """Body of ``PUT /api/servers``: the full configured server list."""

    servers: list[ServerDescriptor] = Field(default_factory=list)


class SelectionUpdate(BaseModel):
    """Body of ``PUT /api/servers/selection``."""

    selected: list[str] = Field(default_factory=list, description="Server ids, in display order")


class ServerInfo(BaseModel):
    """One configured server with its runtime status."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "weather",
                "name": "Weather",
                "url": "https://weather.example.com/sse",
                "type": "sse",
                "selected": True,
                "status": "connected",
                "tools": ["get_weather"],
            }
        }
    )

    id: str
    name: str
    url: str
    type: TransportKind
    description: str | None = None
    selected: bool = False
    status: ServerStatus = ServerStatus.DISCONNECTED
    error_message: str | None = None
    tools: list[str] = Field(default_factory=list)

    @classmethod
    def build(cls, descriptor: ServerDescriptor, record: ServerStatusRecord, selected: bool) -> ServerInfo:
        return cls(
            id=descriptor.id,
            name=descriptor.display_name,
            url=descriptor.url,
            type=descriptor.type,
            description=descriptor.description,
            selected=selected,
            status=record.status,
            error_message=record.error_message,
            tools=record.tools,
        )


class ServerListResponse(BaseModel):
    servers: list[ServerInfo]
    selected: list[str]


class SelectionResponse(BaseModel):
    """Result of a selection change: the new selection and the actions it caused."""

    selected: list[str]
    started: list[str] = Field(default_factory=list)
    stopped: list[str] = Field(default_factory=list)
