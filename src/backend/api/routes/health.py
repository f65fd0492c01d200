"""
Health check endpoints.

Provides health and liveness probes.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Request
from prometheus_client import REGISTRY

from api.dependencies import AppSettings, ServerStore
from models.mcp_models import ServerStatus
from models.schemas.health import HealthResponse, LivenessResponse, MCPHealth
from utils.metrics import NAMESPACE

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Process health with MCP server status counts.",
    tags=["Health"],
)
async def health_check(request: Request, store: ServerStore, settings: AppSettings) -> HealthResponse:
    """Degraded when any selected server is in the error state."""
    selected = set(store.selected)
    statuses = store.lifecycle.statuses()

    def count(status: ServerStatus) -> int:
        return sum(1 for record in statuses if record.status == status)

    mcp = MCPHealth(
        configured=len(store.servers),
        selected=len(selected),
        connected=count(ServerStatus.CONNECTED),
        connecting=count(ServerStatus.CONNECTING),
        errored=count(ServerStatus.ERROR),
    )
    degraded = any(record.status == ServerStatus.ERROR and record.id in selected for record in statuses)

    return HealthResponse(
        status="degraded" if degraded else "healthy",
        version=settings.app_version,
        uptime_seconds=round(time.monotonic() - request.app.state.started_at, 2),
        active_runs=int(REGISTRY.get_sample_value(f"{NAMESPACE}_chat_runs_active") or 0),
        mcp=mcp,
    )


@router.get(
    "/health/live",
    response_model=LivenessResponse,
    summary="Liveness probe",
    description="Kubernetes-style liveness probe to confirm process is running.",
    tags=["Health"],
)
async def liveness_check() -> LivenessResponse:
    """Kubernetes-style liveness probe."""
    return LivenessResponse(alive=True)
