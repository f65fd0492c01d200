"""
Cleanup coordinator for per-request MCP connections.

Whichever fires first (normal completion, a model failure, or the abort
listener) runs the one and only cleanup; later triggers join it.
"""

from __future__ import annotations

import asyncio

from collections.abc import Callable, Iterable
from typing import Protocol

from core.cancellation import CancellationToken
from utils.logger import logger
from utils.metrics import mcp_cleanup_errors_total


class Closeable(Protocol):
    server_id: str

    async def close(self) -> None: ...


class CleanupCoordinator:
    """Closes a session's MCP connections exactly once.

    ``trigger()`` is synchronous: it marks cleanup as started before any
    await, so a completion path and an abort listener racing each other can
    never both run it. ``cleanup()`` awaits the single run and is safe to call
    from any number of places. Close failures are logged and kept on
    ``errors``; they are never raised.
    """

    def __init__(self, connections: Iterable[Closeable] = ()) -> None:
        self._connections: list[Closeable] = list(connections)
        self._run: asyncio.Future[None] | None = None
        self._token: CancellationToken | None = None
        self._abort_listener: Callable[[], None] | None = None
        self.errors: list[Exception] = []
        self.run_count = 0
        # Background tasks set to prevent garbage collection (RUF006)
        self._background_tasks: set[asyncio.Future[None]] = set()

    @property
    def started(self) -> bool:
        return self._run is not None

    @property
    def done(self) -> bool:
        return self._run is not None and self._run.done()

    def register(self, connections: Iterable[Closeable]) -> None:
        """Add connections to release. Connections registered after cleanup started are closed right away."""
        late = list(connections)
        if self._run is None:
            self._connections.extend(late)
            return
        if late:
            logger.warning(f"Closing {len(late)} MCP connections registered after cleanup")
            task = asyncio.ensure_future(self._close_all(late))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

    def bind_abort(self, token: CancellationToken) -> None:
        """Run cleanup when ``token`` is cancelled. At most one listener per session."""
        if self._token is not None:
            return
        self._token = token
        self._abort_listener = token.on_cancel(self._on_abort)

    def _on_abort(self) -> None:
        logger.info("Run aborted, cleaning up MCP connections")
        self.trigger()

    def trigger(self) -> asyncio.Future[None]:
        """Start cleanup if it has not started yet and return the running cleanup."""
        if self._run is None:
            self._run = asyncio.ensure_future(self._execute())
        return self._run

    async def cleanup(self) -> None:
        """Trigger cleanup (if needed) and wait for it. Never raises a close error."""
        await asyncio.shield(self.trigger())

    async def _execute(self) -> None:
        self.run_count += 1
        if self._token is not None and self._abort_listener is not None:
            self._token.remove_callback(self._abort_listener)

        connections, self._connections = self._connections, []
        await self._close_all(connections)
        logger.debug(f"Cleaned up {len(connections)} MCP connections ({len(self.errors)} errors)")

    async def _close_all(self, connections: list[Closeable]) -> None:
        results = await asyncio.gather(*(c.close() for c in connections), return_exceptions=True)
        for connection, result in zip(connections, results, strict=True):
            if isinstance(result, Exception):
                self.errors.append(result)
                mcp_cleanup_errors_total.inc()
                logger.error(
                    f"Error closing MCP connection {connection.server_id}: {result}",
                    server_id=connection.server_id,
                )
