"""
Prometheus metrics configuration for toolchat.

Defines custom metrics and instrumentation logic.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Use standard Prometheus naming conventions: namespace_subsystem_name_unit
NAMESPACE = "toolchat"

# ============================================================================
# Chat Run Metrics
# ============================================================================

chat_runs_active = Gauge(
    f"{NAMESPACE}_chat_runs_active",
    "Number of orchestration runs currently streaming",
)

chat_runs_total = Counter(
    f"{NAMESPACE}_chat_runs_total",
    "Total number of orchestration runs by outcome",
    ["outcome"],  # "done", "error", "cancelled"
)

chat_run_steps = Histogram(
    f"{NAMESPACE}_chat_run_steps",
    "Model turns used per orchestration run",
    buckets=(1, 2, 3, 5, 8, 13, 20),
)


# ============================================================================
# WebSocket Metrics
# ============================================================================

ws_connections_active = Gauge(
    f"{NAMESPACE}_websocket_connections_active",
    "Number of currently active WebSocket connections",
)

ws_messages_total = Counter(
    f"{NAMESPACE}_websocket_messages_total",
    "Total number of WebSocket messages processed",
    ["direction"],  # "inbound" or "outbound"
)


# ============================================================================
# MCP (Model Context Protocol) Metrics
# ============================================================================

mcp_servers_connected = Gauge(
    f"{NAMESPACE}_mcp_servers_connected",
    "Number of managed MCP servers in the connected state",
)

mcp_aggregation_failures_total = Counter(
    f"{NAMESPACE}_mcp_aggregation_failures_total",
    "Servers skipped while building a tool table",
    ["stage"],  # "connect", "discover", "timeout"
)

mcp_readiness_probes_total = Counter(
    f"{NAMESPACE}_mcp_readiness_probes_total",
    "Readiness probe attempts by result",
    ["result"],  # "ready", "not_ready", "unreachable"
)

mcp_tool_calls_total = Counter(
    f"{NAMESPACE}_mcp_tool_calls_total",
    "Total number of MCP tool calls executed",
    ["tool_name", "status"],  # status: "success", "error"
)

mcp_tool_call_duration_seconds = Histogram(
    f"{NAMESPACE}_mcp_tool_call_duration_seconds",
    "MCP tool call execution duration in seconds",
    ["tool_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

mcp_cleanup_errors_total = Counter(
    f"{NAMESPACE}_mcp_cleanup_errors_total",
    "Connection close failures during request cleanup",
)
