"""
toolchat - Streaming chat with tools from remote MCP servers
============================================================

FastAPI backend that augments a language-model conversation with tools
discovered on a dynamic set of independently operated MCP servers.

Key Features:
    - **Streaming**: newline-delimited JSON over HTTP and JSON frames over WebSocket
    - **Bounded tool loop**: explicit multi-step model/tool turns with a hard step limit
    - **Tool aggregation**: one merged namespace across servers, tolerant of partial failure
    - **Server lifecycle**: readiness probing, local process launch, selection-driven start/stop
    - **Exactly-once cleanup**: per-request MCP connections released on every exit path

Modules:
    api: FastAPI routes, services, middleware, and WebSocket handling
    core: Orchestration engine, cancellation, cleanup, prompts, configuration
    integrations: MCP transports, connector, aggregator, lifecycle, model provider
    models: Pydantic models for messages, events, MCP data and API schemas
    utils: Logging, metrics, HTTP client factories
"""
