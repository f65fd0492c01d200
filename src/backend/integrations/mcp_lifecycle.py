"""
MCP Server Lifecycle Manager - status tracking for configured MCP servers.

Owns the per-server state machine::

    disconnected --start--> connecting --probe ok--> connected
    connecting --probe exhausted--> error
    connected | error --stop--> disconnected

Status records are written only here and read by the API and chat paths.
The selection store turns "which servers does the user want" into start/stop
calls on the manager.
"""

from __future__ import annotations

import asyncio

from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass

from core.constants import MCP_READY_INTERVAL, MCP_READY_MAX_ATTEMPTS, get_settings
from models.mcp_models import ServerDescriptor, ServerStatus, ServerStatusRecord
from utils.logger import logger
from utils.metrics import mcp_servers_connected

from .mcp_connector import wait_for_server_ready
from .sandbox import LocalProcessLauncher, ProcessHandle, ServerLauncher

ReadinessProbe = Callable[[str, dict[str, str], int, float], Awaitable[bool]]


async def _default_probe(url: str, headers: dict[str, str], max_attempts: int, interval: float) -> bool:
    return await wait_for_server_ready(url, headers, max_attempts=max_attempts, interval=interval)


class MCPServerLifecycleManager:
    """Tracks and drives the connection status of every known MCP server.

    ``start`` probes the server until it answers (launching a local process
    first when the descriptor has a ``command``); ``stop`` releases whatever
    ``start`` acquired. Unknown ids raise ``KeyError``.
    """

    def __init__(
        self,
        probe: ReadinessProbe | None = None,
        launcher: ServerLauncher | None = None,
        max_attempts: int = MCP_READY_MAX_ATTEMPTS,
        interval: float = MCP_READY_INTERVAL,
    ) -> None:
        self._probe = probe or _default_probe
        self._launcher = launcher or LocalProcessLauncher()
        self.max_attempts = max_attempts
        self.interval = interval

        self._descriptors: dict[str, ServerDescriptor] = {}
        self._records: dict[str, ServerStatusRecord] = {}
        self._starts: dict[str, asyncio.Task[None]] = {}
        # Resolved when an in-progress stop() has written its final status
        self._stops: dict[str, asyncio.Future[None]] = {}
        self._processes: dict[str, ProcessHandle] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, descriptor: ServerDescriptor) -> None:
        """Add or replace a descriptor. An existing status record is kept."""
        self._descriptors[descriptor.id] = descriptor
        self._records.setdefault(descriptor.id, ServerStatusRecord(id=descriptor.id))

    async def unregister(self, server_id: str) -> None:
        """Stop and forget a server. Unknown ids are ignored."""
        if server_id not in self._descriptors:
            return
        await self.stop(server_id)
        self._descriptors.pop(server_id, None)
        self._records.pop(server_id, None)

    def is_known(self, server_id: str) -> bool:
        return server_id in self._descriptors

    def descriptors(self) -> list[ServerDescriptor]:
        return list(self._descriptors.values())

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _record(self, server_id: str) -> ServerStatusRecord:
        if server_id not in self._records:
            raise KeyError(f"Unknown MCP server: {server_id}")
        return self._records[server_id]

    def get_status(self, server_id: str) -> ServerStatusRecord:
        """Snapshot of one server's status.

        Raises:
            KeyError: If the server is not registered
        """
        return self._record(server_id).model_copy(deep=True)

    def statuses(self) -> list[ServerStatusRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]

    def error_ids(self) -> set[str]:
        """Ids of servers currently in the error state."""
        return {sid for sid, record in self._records.items() if record.status == ServerStatus.ERROR}

    def _set_status(self, server_id: str, status: ServerStatus, error_message: str | None = None) -> None:
        record = self._records.get(server_id)
        if record is None:
            return
        previous = record.status
        record.status = status
        record.error_message = error_message
        if previous != status:
            logger.info(f"MCP server {server_id}: {previous.value} -> {status.value}", server_id=server_id)
        mcp_servers_connected.set(sum(1 for r in self._records.values() if r.status == ServerStatus.CONNECTED))

    def update_server_tools(self, server_id: str, tool_names: Iterable[str]) -> None:
        """Record the tool names last discovered on a server."""
        self._record(server_id).tools = list(tool_names)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def schedule_start(self, server_id: str) -> asyncio.Task[None] | None:
        """Begin starting a server without waiting for the probe.

        Returns the in-flight start task, or None when the server is already
        connected. Concurrent callers share one task.

        Raises:
            KeyError: If the server is not registered
        """
        record = self._record(server_id)
        if record.status == ServerStatus.CONNECTED:
            return None

        task = self._starts.get(server_id)
        if task is not None and not task.done():
            return task

        # Status flips before the first await so concurrent callers see "connecting"
        self._set_status(server_id, ServerStatus.CONNECTING)
        task = asyncio.create_task(self._run_start(self._descriptors[server_id]), name=f"mcp-start-{server_id}")
        self._starts[server_id] = task
        return task

    async def start(self, server_id: str) -> ServerStatusRecord:
        """Start a server and wait until it is connected or has failed.

        No-op when already connected; joins the pending attempt when connecting;
        retries from the error state.

        Raises:
            KeyError: If the server is not registered
        """
        task = self.schedule_start(server_id)
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                # The start itself was cancelled by stop(); the caller was not
                if not task.cancelled():
                    raise
                stopping = self._stops.get(server_id)
                if stopping is not None:
                    await asyncio.shield(stopping)
        return self.get_status(server_id)

    async def _run_start(self, descriptor: ServerDescriptor) -> None:
        server_id = descriptor.id
        try:
            if descriptor.command and server_id not in self._processes:
                self._processes[server_id] = await self._launcher.launch(descriptor)

            ready = await self._probe(descriptor.url, descriptor.header_map, self.max_attempts, self.interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to start MCP server {descriptor.display_name}: {e}", server_id=server_id)
            await self._release_process(server_id)
            self._set_status(server_id, ServerStatus.ERROR, str(e) or type(e).__name__)
            return
        finally:
            if self._starts.get(server_id) is asyncio.current_task():
                self._starts.pop(server_id, None)

        if ready:
            self._set_status(server_id, ServerStatus.CONNECTED)
        else:
            await self._release_process(server_id)
            self._set_status(
                server_id,
                ServerStatus.ERROR,
                f"Server not ready after {self.max_attempts} attempts",
            )

    async def stop(self, server_id: str) -> ServerStatusRecord:
        """Stop a server: cancel a pending start, release its process, mark it disconnected.

        Release failures are logged; stop always completes. Stopping a
        disconnected server changes nothing.

        Raises:
            KeyError: If the server is not registered
        """
        self._record(server_id)

        stopped: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._stops[server_id] = stopped
        try:
            task = self._starts.pop(server_id, None)
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

            await self._release_process(server_id)
            self._set_status(server_id, ServerStatus.DISCONNECTED)
        finally:
            if self._stops.get(server_id) is stopped:
                del self._stops[server_id]
            stopped.set_result(None)
        return self.get_status(server_id)

    async def _release_process(self, server_id: str) -> None:
        process = self._processes.pop(server_id, None)
        if process is None:
            return
        try:
            await process.stop()
        except Exception as e:
            logger.error(f"Error stopping process for MCP server {server_id}: {e}", server_id=server_id)

    async def ensure_started(self, descriptor: ServerDescriptor) -> ServerStatusRecord:
        """Chat-path entry: register a request-supplied server if unknown, then start it.

        A server already in the error state is left alone (the caller skips it);
        an explicit ``start`` is needed to retry.
        """
        if not self.is_known(descriptor.id):
            self.register(descriptor)

        record = self._record(descriptor.id)
        if record.status in (ServerStatus.DISCONNECTED, ServerStatus.CONNECTING):
            return await self.start(descriptor.id)
        return self.get_status(descriptor.id)

    async def shutdown(self) -> None:
        """Stop every server (application shutdown)."""
        for server_id in list(self._descriptors):
            await self.stop(server_id)
        logger.info("MCP lifecycle manager shutdown complete")


# ============================================================================
# Selection store
# ============================================================================


@dataclass(frozen=True)
class SelectionDiff:
    """Start/stop actions implied by a change of selected servers."""

    to_start: tuple[str, ...]
    to_stop: tuple[str, ...]


def diff_selection(previous: Sequence[str], current: Sequence[str]) -> SelectionDiff:
    """Newly selected ids start (in ``current`` order); deselected ids stop (in ``previous`` order)."""
    before = set(previous)
    after = set(current)
    return SelectionDiff(
        to_start=tuple(sid for sid in dict.fromkeys(current) if sid not in before),
        to_stop=tuple(sid for sid in dict.fromkeys(previous) if sid not in after),
    )


class MCPServerStore:
    """Configured servers and the user's selection.

    The store is the single writer of the selection. Every change is turned
    into start/stop calls through ``diff_selection``; starts are scheduled, not
    awaited, so callers see the ``connecting`` status immediately.
    """

    def __init__(self, lifecycle: MCPServerLifecycleManager) -> None:
        self.lifecycle = lifecycle
        self._servers: dict[str, ServerDescriptor] = {}
        self._selected: list[str] = []
        self._lock = asyncio.Lock()

    @property
    def servers(self) -> list[ServerDescriptor]:
        return list(self._servers.values())

    @property
    def selected(self) -> list[str]:
        return list(self._selected)

    async def set_servers(self, descriptors: Sequence[ServerDescriptor]) -> None:
        """Replace the configured server list.

        Servers that disappear are deselected (and so stopped) and forgotten.
        """
        async with self._lock:
            incoming = {d.id: d for d in descriptors}
            removed = [sid for sid in self._servers if sid not in incoming]

            for descriptor in incoming.values():
                self.lifecycle.register(descriptor)
            self._servers = incoming

            await self._apply_selection([sid for sid in self._selected if sid in incoming])

            for server_id in removed:
                await self.lifecycle.unregister(server_id)

    async def set_selected(self, server_ids: Sequence[str]) -> SelectionDiff:
        """Replace the selection and apply the resulting start/stop actions.

        Raises:
            KeyError: If an id is not in the configured server list
        """
        async with self._lock:
            for server_id in server_ids:
                if server_id not in self._servers:
                    raise KeyError(f"Unknown MCP server: {server_id}")
            return await self._apply_selection(list(dict.fromkeys(server_ids)))

    async def _apply_selection(self, selection: list[str]) -> SelectionDiff:
        diff = diff_selection(self._selected, selection)
        self._selected = selection

        for server_id in diff.to_stop:
            if self.lifecycle.is_known(server_id):
                await self.lifecycle.stop(server_id)
        for server_id in diff.to_start:
            self.lifecycle.schedule_start(server_id)
        return diff

    def servers_for_api(self) -> list[ServerDescriptor]:
        """Selected descriptors in selection order."""
        return [self._servers[sid] for sid in self._selected if sid in self._servers]


# Module-level state holder to avoid global statement (PLW0603)
_state: dict[str, MCPServerStore | None] = {"store": None}


def get_server_store() -> MCPServerStore:
    """Get the process-wide server store (created on first use)."""
    store = _state["store"]
    if store is None:
        settings = get_settings()
        lifecycle = MCPServerLifecycleManager(
            max_attempts=settings.mcp_ready_max_attempts,
            interval=settings.mcp_ready_interval,
        )
        store = MCPServerStore(lifecycle)
        _state["store"] = store
    return store


async def shutdown_server_store() -> None:
    """Stop all servers and drop the process-wide store."""
    store = _state["store"]
    if store is not None:
        await store.lifecycle.shutdown()
        _state["store"] = None
