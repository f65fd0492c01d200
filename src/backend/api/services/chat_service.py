from __future__ import annotations

import asyncio
import contextlib

from collections.abc import AsyncIterator, Sequence

from api.middleware.request_context import bind_chat_run
from api.services.chat_store import ChatStore
from core.cancellation import CancellationToken
from core.cleanup import CleanupCoordinator
from core.constants import MODEL_PROVIDER_OPTIONS, get_settings
from core.exceptions import CancellationRequested
from core.orchestrator import OrchestrationEngine
from core.prompts import resolve_system_prompt
from integrations.mcp_aggregator import AggregationResult, MCPToolAggregator
from integrations.mcp_lifecycle import MCPServerLifecycleManager
from models.chat_models import ChatMessage
from models.event_models import DoneEvent, StreamEvent
from models.mcp_models import ServerDescriptor
from models.schemas.chat import ChatRequest
from utils.logger import logger


def _unique_servers(descriptors: Sequence[ServerDescriptor]) -> list[ServerDescriptor]:
    """First descriptor wins for a repeated id; order is kept."""
    seen: dict[str, ServerDescriptor] = {}
    for descriptor in descriptors:
        seen.setdefault(descriptor.id, descriptor)
    return list(seen.values())


class ChatService:
    """Runs one chat request end to end.

    Makes sure the requested MCP servers are started, aggregates their tools,
    streams the orchestration run and releases every per-request connection
    exactly once, whether the run completes, fails or is aborted through its
    cancellation token.
    """

    def __init__(
        self,
        lifecycle: MCPServerLifecycleManager,
        engine: OrchestrationEngine,
        chat_store: ChatStore,
        aggregator: MCPToolAggregator | None = None,
    ):
        self.lifecycle = lifecycle
        self.engine = engine
        self.chat_store = chat_store
        self.aggregator = aggregator or MCPToolAggregator()

    async def stream_chat(
        self,
        request: ChatRequest,
        chat_id: str,
        cancellation_token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        """Stream the events of one chat run.

        Yields nothing further once ``cancellation_token`` fires. On ``done``
        the full message sequence is saved before the event is yielded.
        """
        settings = get_settings()
        model = request.model or settings.default_model
        servers = _unique_servers(request.mcp_servers)
        bind_chat_run(chat_id, request.user_id, model, (d.id for d in servers))

        try:
            await self._ensure_chat(chat_id, request.user_id, model)
            await cancellation_token.race(self._start_servers(servers))
            skip = self.lifecycle.error_ids()
            aggregation = await cancellation_token.race(self.aggregator.aggregate(servers, skip=skip))
        except CancellationRequested:
            logger.info("Chat aborted before the run started", chat_id=chat_id)
            return

        self._record_tools(aggregation)
        cleanup = CleanupCoordinator(aggregation.connections)
        cleanup.bind_abort(cancellation_token)

        events = self.engine.run(
            resolve_system_prompt(request.system_prompt),
            request.messages,
            aggregation.tools,
            model=model,
            max_steps=request.max_steps or settings.max_steps,
            cancellation_token=cancellation_token,
            cleanup=cleanup,
            provider_options=MODEL_PROVIDER_OPTIONS.get(model) or None,
            chat_id=chat_id,
        )
        try:
            async with contextlib.aclosing(events):
                async for event in events:
                    if isinstance(event, DoneEvent):
                        await self._save(chat_id, event.messages, request.user_id, model)
                    yield event
        finally:
            await cleanup.cleanup()

    async def _ensure_chat(self, chat_id: str, user_id: str | None, model: str) -> None:
        """Create an empty chat record so a new conversation is visible right away."""
        try:
            if await self.chat_store.get_chat(chat_id) is None:
                await self.chat_store.save_chat(chat_id, [], user_id=user_id, model=model)
        except Exception as e:
            logger.error(f"Error creating chat {chat_id}: {e}", chat_id=chat_id)

    async def _start_servers(self, servers: Sequence[ServerDescriptor]) -> None:
        """Start every requested server concurrently; failures end up in the error state."""
        results = await asyncio.gather(
            *(self.lifecycle.ensure_started(d) for d in servers),
            return_exceptions=True,
        )
        for descriptor, result in zip(servers, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    f"Could not start MCP server {descriptor.display_name}: {result}",
                    server_id=descriptor.id,
                )

    def _record_tools(self, aggregation: AggregationResult) -> None:
        for server_id, names in aggregation.server_tools.items():
            logger.info(f"Found {len(names)} tools on MCP server {server_id}: {names}", server_id=server_id)
            if self.lifecycle.is_known(server_id):
                self.lifecycle.update_server_tools(server_id, names)

    async def _save(
        self,
        chat_id: str,
        messages: Sequence[ChatMessage],
        user_id: str | None,
        model: str,
    ) -> None:
        try:
            await self.chat_store.save_chat(chat_id, messages, user_id=user_id, model=model)
        except Exception as e:
            logger.error(f"Error saving chat {chat_id}: {e}", chat_id=chat_id, exc_info=True)
