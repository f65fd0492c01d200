"""
Health check API schemas.

Response models for the health and liveness probes.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class MCPHealth(BaseModel):
    """MCP server status summary."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "configured": 3,
                "selected": 2,
                "connected": 1,
                "connecting": 0,
                "errored": 1,
            }
        }
    )

    configured: int = Field(default=0, ge=0, description="Servers in the configured list")
    selected: int = Field(default=0, ge=0, description="Servers currently selected")
    connected: int = Field(default=0, ge=0, description="Servers answering probes")
    connecting: int = Field(default=0, ge=0, description="Servers being started")
    errored: int = Field(default=0, ge=0, description="Servers whose last start failed")


class HealthResponse(BaseModel):
    """Overall health check response."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "uptime_seconds": 3600.5,
                "active_runs": 2,
                "mcp": {"configured": 2, "selected": 1, "connected": 1, "connecting": 0, "errored": 0},
            }
        }
    )

    status: Literal["healthy", "degraded"] = Field(..., description="Overall system health status")
    version: str = Field(..., description="Application version")
    uptime_seconds: float = Field(..., description="Seconds since startup")
    active_runs: int = Field(default=0, ge=0, description="Chat runs in progress")
    mcp: MCPHealth


class LivenessResponse(BaseModel):
    """Liveness probe response."""

    alive: bool = Field(default=True, description="Process is running")
