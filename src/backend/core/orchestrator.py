"""
Streaming orchestration engine.

Runs the bounded multi-step tool loop: stream a model turn, dispatch the tool
calls it asked for, append one tool message per call, and repeat until the
model answers without tools or the step limit is reached.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from core.cancellation import CancellationToken
from core.cleanup import CleanupCoordinator
from core.constants import (
    GENERIC_ERROR_MESSAGE,
    MAX_STEPS,
    RATE_LIMIT_MESSAGE,
    UNKNOWN_TOOL_REASON,
)
from core.exceptions import CancellationRequested, ModelStreamError
from integrations.mcp_aggregator import AggregatedToolTable
from integrations.model_provider import (
    ModelProvider,
    ReasoningChunk,
    TextChunk,
    ToolCallChunk,
    TurnEnd,
)
from models.chat_models import ChatMessage, ToolCallRequest
from models.event_models import (
    DoneEvent,
    ErrorEvent,
    ReasoningDeltaEvent,
    StepFinishEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from models.mcp_models import ToolFailure, ToolOutcome
from utils.logger import logger
from utils.metrics import chat_run_steps, chat_runs_active, chat_runs_total


_END_OF_TURN = object()


async def _pump(stream: AsyncIterator[Any], queue: asyncio.Queue[Any]) -> None:
    """Move provider chunks into ``queue``; a provider failure is queued as the exception."""
    try:
        async for chunk in stream:
            queue.put_nowait(chunk)
    except Exception as e:
        queue.put_nowait(e)
    else:
        queue.put_nowait(_END_OF_TURN)


@dataclass
class OrchestrationSession:
    """Mutable state of one run."""

    messages: list[ChatMessage]
    tools: AggregatedToolTable
    max_steps: int
    cleanup: CleanupCoordinator | None = None
    chat_id: str | None = None
    step: int = 0
    tool_calls: int = 0
    completed: bool = False
    started_at: float = field(default_factory=time.perf_counter)


@dataclass
class _Turn:
    text: list[str] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str | None = None


class OrchestrationEngine:
    """Drives one chat run against a ``ModelProvider`` and an aggregated tool table."""

    def __init__(self, provider: ModelProvider, max_steps: int = MAX_STEPS) -> None:
        self.provider = provider
        self.max_steps = max_steps

    async def run(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tool_table: AggregatedToolTable,
        *,
        model: str,
        max_steps: int | None = None,
        cancellation_token: CancellationToken | None = None,
        cleanup: CleanupCoordinator | None = None,
        provider_options: dict[str, Any] | None = None,
        chat_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream the events of one run. Finite and not restartable.

        Ends with exactly one ``done`` or ``error`` event, or with nothing
        further once ``cancellation_token`` fires. ``cleanup`` is triggered on
        every exit path.
        """
        token = cancellation_token or CancellationToken()
        session = OrchestrationSession(
            messages=list(messages),
            tools=tool_table,
            max_steps=max_steps or self.max_steps,
            cleanup=cleanup,
            chat_id=chat_id,
        )
        outcome = "cancelled"
        chat_runs_active.inc()

        try:
            while session.step < session.max_steps:
                token.check()
                session.step += 1
                step = session.step
                final = step >= session.max_steps

                turn = _Turn()
                turn_events = self._stream_turn(session, turn, model, system_prompt, final, token, provider_options)
                async with contextlib.aclosing(turn_events):
                    async for event in turn_events:
                        yield event

                if final and turn.calls:
                    logger.warning(
                        f"Dropping {len(turn.calls)} tool calls requested at the final step",
                        chat_id=chat_id,
                    )
                    turn.calls = []

                yield StepFinishEvent(step=step, finish_reason=turn.finish_reason, tool_calls=len(turn.calls))

                text = "".join(turn.text)
                reasoning = "".join(turn.reasoning)
                if text or reasoning:
                    session.messages.append(
                        ChatMessage(role="assistant", content=text, step=step, reasoning=reasoning or None)
                    )

                if not turn.calls:
                    break

                for call in turn.calls:
                    token.check()
                    yield ToolCallEvent(step=step, tool_call_id=call.id, tool_name=call.name, arguments=call.arguments)
                    result = await self._dispatch(call, session.tools, token)
                    session.tool_calls += 1
                    session.messages.append(ChatMessage(role="tool", step=step, tool_call=call, outcome=result))
                    yield ToolResultEvent(step=step, tool_call_id=call.id, tool_name=call.name, outcome=result)

            token.check()
            session.completed = True
            outcome = "done"
            if cleanup is not None:
                cleanup.trigger()
            yield DoneEvent(chat_id=chat_id, steps=session.step, messages=session.messages)

        except CancellationRequested as e:
            logger.info(f"Run cancelled at step {session.step}: {e.message}", chat_id=chat_id)

        except ModelStreamError as e:
            outcome = "error"
            logger.error(f"Model stream failed at step {session.step}: {e}", chat_id=chat_id)
            if cleanup is not None:
                cleanup.trigger()
            yield ErrorEvent(
                message=RATE_LIMIT_MESSAGE if e.rate_limited else GENERIC_ERROR_MESSAGE,
                code=e.code.value,
                rate_limited=e.rate_limited,
            )

        finally:
            if cleanup is not None:
                cleanup.trigger()
            chat_runs_active.dec()
            chat_runs_total.labels(outcome=outcome).inc()
            chat_run_steps.observe(session.step)
            logger.log_chat_run(
                chat_id or "-",
                steps=session.step,
                tool_calls=session.tool_calls,
                duration_ms=(time.perf_counter() - session.started_at) * 1000,
                outcome=outcome,
            )

    async def _stream_turn(
        self,
        session: OrchestrationSession,
        turn: _Turn,
        model: str,
        system_prompt: str,
        final: bool,
        token: CancellationToken,
        provider_options: dict[str, Any] | None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one model turn, yielding deltas and collecting tool calls into ``turn``."""
        schemas = session.tools.schemas() if len(session.tools) else None
        stream = self.provider.stream_turn(
            model=model,
            system_prompt=system_prompt,
            messages=list(session.messages),
            tools=schemas,
            # Last step: the model may only answer
            tool_choice="none" if final and schemas else None,
            provider_options=provider_options,
        )
        step = session.step

        # The provider stream is consumed by its own task so that an abort can
        # abandon it mid-chunk without awaiting it
        queue: asyncio.Queue[Any] = asyncio.Queue()
        pump = asyncio.create_task(_pump(stream, queue), name=f"model-stream-step-{step}")

        try:
            while True:
                chunk = await token.race(queue.get())
                if chunk is _END_OF_TURN:
                    break
                if isinstance(chunk, ModelStreamError):
                    raise chunk
                if isinstance(chunk, Exception):
                    raise ModelStreamError(str(chunk), rate_limited="rate limit" in str(chunk).lower()) from chunk

                if isinstance(chunk, TextChunk):
                    turn.text.append(chunk.text)
                    yield TextDeltaEvent(step=step, delta=chunk.text)
                elif isinstance(chunk, ReasoningChunk):
                    turn.reasoning.append(chunk.text)
                    yield ReasoningDeltaEvent(step=step, delta=chunk.text)
                elif isinstance(chunk, ToolCallChunk):
                    turn.calls.append(chunk.call)
                elif isinstance(chunk, TurnEnd):
                    turn.finish_reason = chunk.finish_reason
        finally:
            if not pump.done():
                pump.cancel()
                if not token.is_cancelled:
                    with contextlib.suppress(asyncio.CancelledError):
                        await pump

    async def _dispatch(
        self,
        call: ToolCallRequest,
        tools: AggregatedToolTable,
        token: CancellationToken,
    ) -> ToolOutcome:
        """Invoke one tool call. Every failure becomes a ``ToolFailure``; cancellation propagates."""
        entry = tools.get(call.name)
        if entry is None:
            logger.warning(f"Model requested unknown tool '{call.name}'", tool=call.name)
            return ToolFailure(reason=UNKNOWN_TOOL_REASON.format(name=call.name))

        try:
            arguments = json.loads(call.arguments) if call.arguments.strip() else {}
        except json.JSONDecodeError as e:
            return ToolFailure(reason=f"Invalid JSON arguments: {e.msg}")
        if not isinstance(arguments, dict):
            return ToolFailure(reason="Tool arguments must be a JSON object")

        try:
            return await token.race(entry.invoke(arguments))
        except CancellationRequested:
            raise
        except Exception as e:
            logger.error(f"Tool '{call.name}' raised: {e}", exc_info=True, tool=call.name, server_id=entry.server_id)
            return ToolFailure(reason=str(e) or type(e).__name__)
