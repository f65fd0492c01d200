"""
Integrations Module - External System Integrations
===================================================

Provides the MCP server integration and the model provider boundary.

Modules:
    mcp_sdk_client: SSE / streamable HTTP client on the ``mcp`` SDK, owned by one task
    mcp_websocket_client: multiplexed JSON-RPC client for WebSocket MCP servers
    mcp_transport: transport abstraction selecting a client per descriptor type
    mcp_connector: connect / discover / close and readiness probing
    mcp_aggregator: merged per-request tool table across servers
    mcp_lifecycle: per-server status state machine and the selection store
    sandbox: local process launch for servers that declare a command
    model_provider: streaming model turns over an OpenAI-compatible API

Example:
    Building a tool table for one request:

        from integrations.mcp_aggregator import MCPToolAggregator

        result = await MCPToolAggregator().aggregate(descriptors)
        try:
            entry = result.tools.get("get_weather")
            outcome = await entry.invoke({"city": "Paris"})
        finally:
            for connection in result.connections:
                await connection.close()

See Also:
    :mod:`core.orchestrator`: the tool loop consuming the aggregated table
    :mod:`core.cleanup`: exactly-once release of per-request connections
"""
