"""
Model provider boundary.

The orchestration engine talks to a ``ModelProvider`` that streams one model
turn as a sequence of chunks. ``OpenAIChatProvider`` implements it against any
OpenAI-compatible Chat Completions endpoint.
"""

from __future__ import annotations

import json

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import openai

from openai import AsyncOpenAI

from core.exceptions import ModelStreamError
from models.chat_models import ChatMessage, ToolCallRequest
from models.mcp_models import ToolOutcome, ToolSuccess


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class ReasoningChunk:
    text: str


@dataclass(frozen=True)
class ToolCallChunk:
    """A fully assembled tool call (emitted once the turn's stream is complete)."""

    call: ToolCallRequest


@dataclass(frozen=True)
class TurnEnd:
    finish_reason: str | None = None


ModelChunk = TextChunk | ReasoningChunk | ToolCallChunk | TurnEnd


class ModelProvider(Protocol):
    """Streams one model turn.

    Implementations raise ``ModelStreamError`` for provider failures and must
    end every successful turn with exactly one ``TurnEnd``.
    """

    def stream_turn(
        self,
        *,
        model: str,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: list[dict[str, Any]] | None,
        tool_choice: str | None = None,
        provider_options: dict[str, Any] | None = None,
    ) -> AsyncIterator[ModelChunk]: ...


def tool_output_text(outcome: ToolOutcome | None) -> str:
    """Render a tool outcome as the tool message content sent back to the model."""
    if outcome is None:
        return ""
    if isinstance(outcome, ToolSuccess):
        if isinstance(outcome.payload, str):
            return outcome.payload
        return json.dumps(outcome.payload, default=str)
    return json.dumps({"error": outcome.reason})


def to_openai_messages(system_prompt: str, messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    """Convert conversation messages to Chat Completions format.

    Tool messages of one step are folded into a single assistant message with
    ``tool_calls`` (merged with that step's assistant text when it directly
    precedes them), followed by one ``tool`` message per call.
    """
    result: list[dict[str, Any]] = []
    if system_prompt:
        result.append({"role": "system", "content": system_prompt})

    i = 0
    while i < len(messages):
        message = messages[i]

        if message.role in ("system", "user"):
            result.append({"role": message.role, "content": message.content})
            i += 1
            continue

        if message.role == "assistant":
            text: str | None = message.content
            j = i + 1
        else:
            text = None
            j = i

        # Tool messages of the same step belong to this assistant turn
        step = messages[j].step if j < len(messages) else None
        if message.role == "assistant" and message.step is not None:
            step = message.step
        tool_messages: list[ChatMessage] = []
        while j < len(messages) and messages[j].role == "tool" and messages[j].step == step:
            if messages[j].tool_call is not None:
                tool_messages.append(messages[j])
            j += 1

        if not tool_messages:
            if message.role == "assistant":
                result.append({"role": "assistant", "content": text or ""})
            i += 1
            continue

        result.append(
            {
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    {
                        "id": m.tool_call.id,
                        "type": "function",
                        "function": {"name": m.tool_call.name, "arguments": m.tool_call.arguments},
                    }
                    for m in tool_messages
                    if m.tool_call is not None
                ],
            }
        )
        for m in tool_messages:
            if m.tool_call is not None:
                result.append({"role": "tool", "tool_call_id": m.tool_call.id, "content": tool_output_text(m.outcome)})
        i = j

    return result


def _is_rate_limit(error: Exception) -> bool:
    if isinstance(error, openai.RateLimitError):
        return True
    return "rate limit" in str(error).lower()


class OpenAIChatProvider:
    """``ModelProvider`` over ``openai.AsyncOpenAI`` Chat Completions streaming."""

    def __init__(self, client: AsyncOpenAI):
        self._client = client

    async def stream_turn(
        self,
        *,
        model: str,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: list[dict[str, Any]] | None,
        tool_choice: str | None = None,
        provider_options: dict[str, Any] | None = None,
    ) -> AsyncIterator[ModelChunk]:
        params: dict[str, Any] = {
            "model": model,
            "messages": to_openai_messages(system_prompt, messages),
            "stream": True,
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = tool_choice or "auto"
        if provider_options:
            # Opaque per-model knobs, forwarded untouched
            params["extra_body"] = provider_options

        calls: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None

        try:
            stream = await self._client.chat.completions.create(**params)
            try:
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    choice = chunk.choices[0]
                    delta = choice.delta

                    reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
                    if isinstance(reasoning, str) and reasoning:
                        yield ReasoningChunk(reasoning)
                    if delta.content:
                        yield TextChunk(delta.content)

                    for tc in delta.tool_calls or []:
                        slot = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                        if tc.id:
                            slot["id"] = tc.id
                        if tc.function is not None:
                            if tc.function.name:
                                slot["name"] = tc.function.name
                            if tc.function.arguments:
                                slot["arguments"] += tc.function.arguments

                    if choice.finish_reason:
                        finish_reason = choice.finish_reason
            finally:
                await stream.close()
        except openai.APIError as e:
            raise ModelStreamError(str(e), rate_limited=_is_rate_limit(e)) from e

        for index in sorted(calls):
            slot = calls[index]
            yield ToolCallChunk(
                ToolCallRequest(
                    id=slot["id"] or f"call_{index}",
                    name=slot["name"],
                    arguments=slot["arguments"] or "{}",
                )
            )
        yield TurnEnd(finish_reason)
