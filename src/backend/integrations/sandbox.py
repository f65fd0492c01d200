"""
Local process launcher for MCP servers that declare a ``command``.

The server process is started before readiness probing and released on stop:
terminate first, then kill once the grace period runs out.
"""

from __future__ import annotations

import asyncio
import os

from typing import Protocol

from core.constants import SANDBOX_TERMINATE_TIMEOUT
from models.mcp_models import ServerDescriptor
from utils.logger import logger


class ProcessHandle(Protocol):
    """Anything the lifecycle manager can release."""

    async def stop(self) -> None: ...


class ServerLauncher(Protocol):
    async def launch(self, descriptor: ServerDescriptor) -> ProcessHandle: ...


class LocalProcess:
    """A spawned MCP server process."""

    def __init__(
        self,
        server_id: str,
        process: asyncio.subprocess.Process,
        terminate_timeout: float = SANDBOX_TERMINATE_TIMEOUT,
    ):
        self.server_id = server_id
        self.process = process
        self.terminate_timeout = terminate_timeout

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_alive(self) -> bool:
        return self.process.returncode is None

    async def stop(self) -> None:
        """Terminate the process, killing it after the grace period."""
        if not self.is_alive():
            return

        try:
            self.process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(self.process.wait(), timeout=self.terminate_timeout)
        except TimeoutError:
            logger.warning(f"MCP server process {self.pid} ignored SIGTERM, killing", server_id=self.server_id)
            try:
                self.process.kill()
            except ProcessLookupError:
                return
            await self.process.wait()

        logger.info(f"MCP server process {self.pid} stopped", server_id=self.server_id)


class LocalProcessLauncher:
    """Starts ``descriptor.command`` as a child process with the descriptor's env overlaid."""

    def __init__(self, terminate_timeout: float = SANDBOX_TERMINATE_TIMEOUT):
        self.terminate_timeout = terminate_timeout

    async def launch(self, descriptor: ServerDescriptor) -> LocalProcess:
        if not descriptor.command:
            raise ValueError(f"MCP server '{descriptor.id}' has no command to launch")

        env = {**os.environ, **descriptor.env_map}
        logger.info(
            f"Starting MCP server process: {descriptor.command} {' '.join(descriptor.args)}",
            server_id=descriptor.id,
        )
        process = await asyncio.create_subprocess_exec(
            descriptor.command,
            *descriptor.args,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        return LocalProcess(descriptor.id, process, self.terminate_timeout)
