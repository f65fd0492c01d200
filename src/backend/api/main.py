from __future__ import annotations

import functools
import time

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.routes import chat, health
from api.routes import router as api_router
from api.services.chat_service import ChatService
from api.services.chat_store import InMemoryChatStore
from core.constants import get_settings
from core.orchestrator import OrchestrationEngine
from integrations import mcp_connector
from integrations.mcp_aggregator import MCPToolAggregator
from integrations.mcp_lifecycle import get_server_store, shutdown_server_store
from integrations.model_provider import OpenAIChatProvider
from utils.client_factory import create_http_client, create_openai_client
from utils.logger import configure_uvicorn_logging, logger

# Settings are loaded via Pydantic Settings with environment-specific file support
# (.env, .env.{APP_ENV}, .env.local) - no manual dotenv loading needed
settings = get_settings()

# Log loaded settings in debug mode
if settings.debug:
    from core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(
        f"Settings: app_env={settings.app_env}, default_model={settings.default_model}, "
        f"max_steps={settings.max_steps}, mcp_ready=[{settings.mcp_ready_max_attempts}x{settings.mcp_ready_interval}s]"
    )

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire the chat path on startup, stop MCP servers on shutdown."""
    app.state.started_at = time.monotonic()

    http_client = create_http_client(
        enable_logging=settings.http_request_logging,
        read_timeout=settings.http_read_timeout,
    )
    api_key = settings.openai_api_key or ""
    client = create_openai_client(api_key, base_url=settings.openai_base_url, http_client=http_client)
    logger.info(f"Model provider configured (base_url={settings.openai_base_url or 'default'})")

    app.state.server_store = get_server_store()
    app.state.chat_store = InMemoryChatStore()
    app.state.chat_service = ChatService(
        lifecycle=app.state.server_store.lifecycle,
        aggregator=MCPToolAggregator(
            connect=functools.partial(
                mcp_connector.connect,
                connect_timeout=settings.mcp_connect_timeout,
                call_timeout=settings.mcp_call_tool_timeout,
                list_timeout=settings.mcp_list_tools_timeout,
            )
        ),
        engine=OrchestrationEngine(OpenAIChatProvider(client), max_steps=settings.max_steps),
        chat_store=app.state.chat_store,
    )

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown sequence")

        # Phase 1: stop every MCP server (cancels pending starts, releases local processes)
        await shutdown_server_store()

        # Phase 2: close the model provider's HTTP client
        await http_client.aclose()
        logger.info("Shutdown complete")


app = FastAPI(
    title="toolchat API",
    description="""
## toolchat API

Streaming chat backend that augments a language model with tools from
remote MCP (Model Context Protocol) servers.

### Features
- **Streaming chat**: newline-delimited JSON over HTTP, or JSON frames over WebSocket
- **Multi-step tool loop**: bounded model/tool turns with per-call outcomes
- **MCP servers**: SSE, streamable HTTP and WebSocket transports with readiness probing
- **Server selection**: configure servers, select them, start and stop them
""",
    version=settings.app_version,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints for monitoring and orchestration"},
        {"name": "Chat", "description": "Streaming chat runs"},
        {"name": "Servers", "description": "MCP server configuration, selection and lifecycle"},
        {"name": "Configuration", "description": "Application configuration and metadata"},
        {"name": "WebSocket", "description": "Real-time chat streaming"},
    ],
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Request context middleware (adds request ID tracking)
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Chat-ID", "X-Request-ID"],
)

# Routes
app.include_router(health.router)
app.include_router(api_router, prefix="/api")

# WebSocket routes (protocol-level)
app.include_router(chat.ws_router, prefix="/ws", tags=["WebSocket"])

# Prometheus scrape endpoint
app.mount("/metrics", make_asgi_app())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        reload_dirs=["."],
        log_config=None,
    )
