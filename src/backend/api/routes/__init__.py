"""
API Router - Aggregates the REST endpoints served under ``/api``.

Usage in main.py:
    from api.routes import router as api_router
    app.include_router(api_router, prefix="/api")
"""

from fastapi import APIRouter

from api.routes import chat, config, servers

router = APIRouter()

# Streaming chat
router.include_router(
    chat.router,
    tags=["Chat"],
)

# MCP server configuration, selection and lifecycle
router.include_router(
    servers.router,
    tags=["Servers"],
)

# Configuration
router.include_router(
    config.router,
    tags=["Configuration"],
)

__all__ = ["router"]
