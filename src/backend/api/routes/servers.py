"""
MCP server management endpoints.

The configured list and the selection are owned by ``MCPServerStore``;
start/stop go straight to the lifecycle manager. Unknown ids answer 404
through the ``KeyError`` handler.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path

from api.dependencies import Lifecycle, ServerStore
from integrations.mcp_lifecycle import MCPServerStore
from models.mcp_models import ServerDescriptor, ServerStatusRecord
from models.schemas.servers import (
    SelectionResponse,
    SelectionUpdate,
    ServerInfo,
    ServerListResponse,
    ServerListUpdate,
)

router = APIRouter()

ServerIdPath = Annotated[
    str,
    Path(..., description="MCP server identifier", examples=["weather"], min_length=1, max_length=200),
]


def _server_list(store: MCPServerStore) -> ServerListResponse:
    selected = store.selected
    return ServerListResponse(
        servers=[ServerInfo.build(d, store.lifecycle.get_status(d.id), d.id in selected) for d in store.servers],
        selected=selected,
    )


@router.get("/servers", response_model=ServerListResponse, summary="List configured MCP servers")
async def list_servers(store: ServerStore) -> ServerListResponse:
    return _server_list(store)


@router.put("/servers", response_model=ServerListResponse, summary="Replace the configured MCP servers")
async def replace_servers(body: ServerListUpdate, store: ServerStore) -> ServerListResponse:
    """Servers missing from the new list are deselected and stopped."""
    await store.set_servers(body.servers)
    return _server_list(store)


@router.put("/servers/selection", response_model=SelectionResponse, summary="Select MCP servers")
async def set_selection(body: SelectionUpdate, store: ServerStore) -> SelectionResponse:
    """Newly selected servers start connecting; deselected servers are stopped."""
    diff = await store.set_selected(body.selected)
    return SelectionResponse(selected=store.selected, started=list(diff.to_start), stopped=list(diff.to_stop))


@router.get("/servers/active", response_model=list[ServerDescriptor], summary="Selected MCP servers")
async def active_servers(store: ServerStore) -> list[ServerDescriptor]:
    """Descriptors to send with a chat request, in selection order."""
    return store.servers_for_api()


@router.post("/servers/{server_id}/start", response_model=ServerStatusRecord, summary="Start an MCP server")
async def start_server(server_id: ServerIdPath, lifecycle: Lifecycle) -> ServerStatusRecord:
    return await lifecycle.start(server_id)


@router.post("/servers/{server_id}/stop", response_model=ServerStatusRecord, summary="Stop an MCP server")
async def stop_server(server_id: ServerIdPath, lifecycle: Lifecycle) -> ServerStatusRecord:
    return await lifecycle.stop(server_id)
