"""Tests for the Chat Completions model provider."""

from __future__ import annotations

import json

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest

from core.exceptions import ModelStreamError
from integrations.model_provider import (
    OpenAIChatProvider,
    ReasoningChunk,
    TextChunk,
    ToolCallChunk,
    TurnEnd,
    to_openai_messages,
    tool_output_text,
)
from models.chat_models import ChatMessage, ToolCallRequest
from models.mcp_models import ToolFailure, ToolSuccess


def _delta(content: str | None = None, tool_calls: list[Any] | None = None, **extra: Any) -> Any:
    return SimpleNamespace(content=content, tool_calls=tool_calls, **extra)


def _chunk(delta: Any, finish_reason: str | None = None) -> Any:
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def _tool_delta(index: int, call_id: str | None = None, name: str | None = None, arguments: str | None = None) -> Any:
    return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeStream:
    def __init__(self, chunks: list[Any], error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error
        self.closed = False

    def __aiter__(self) -> FakeStream:
        self._iter = iter(self._chunks)
        return self

    async def __anext__(self) -> Any:
        try:
            return next(self._iter)
        except StopIteration:
            if self._error is not None:
                raise self._error from None
            raise StopAsyncIteration from None

    async def close(self) -> None:
        self.closed = True


async def _turn(provider: OpenAIChatProvider, **kwargs: Any) -> list[Any]:
    kwargs.setdefault("model", "gpt-4.1-mini")
    kwargs.setdefault("system_prompt", "sys")
    kwargs.setdefault("messages", [ChatMessage.user("hi")])
    kwargs.setdefault("tools", None)
    return [chunk async for chunk in provider.stream_turn(**kwargs)]


class TestToolOutputText:
    def test_string_payload_passes_through(self) -> None:
        assert tool_output_text(ToolSuccess(payload="sunny")) == "sunny"

    def test_structured_payload_is_json(self) -> None:
        assert json.loads(tool_output_text(ToolSuccess(payload={"temp": 3}))) == {"temp": 3}

    def test_failure_is_error_object(self) -> None:
        assert json.loads(tool_output_text(ToolFailure(reason="timed out"))) == {"error": "timed out"}


class TestToOpenAIMessages:
    def test_system_prompt_first(self) -> None:
        result = to_openai_messages("be brief", [ChatMessage.user("hi")])
        assert result == [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}]

    def test_tool_messages_fold_into_assistant_call(self) -> None:
        call = ToolCallRequest(id="c1", name="get_weather", arguments='{"city": "Oslo"}')
        messages = [
            ChatMessage.user("weather?"),
            ChatMessage(role="tool", step=1, tool_call=call, outcome=ToolSuccess(payload="3C")),
            ChatMessage(role="assistant", step=2, content="It is 3C."),
        ]

        result = to_openai_messages("", messages)

        assert result == [
            {"role": "user", "content": "weather?"},
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "c1",
                        "type": "function",
                        "function": {"name": "get_weather", "arguments": '{"city": "Oslo"}'},
                    }
                ],
            },
            {"role": "tool", "tool_call_id": "c1", "content": "3C"},
            {"role": "assistant", "content": "It is 3C."},
        ]

    def test_assistant_text_merges_with_same_step_calls(self) -> None:
        call = ToolCallRequest(id="c1", name="lookup")
        messages = [
            ChatMessage(role="assistant", step=1, content="Let me check."),
            ChatMessage(role="tool", step=1, tool_call=call, outcome=ToolFailure(reason="down")),
        ]

        result = to_openai_messages("", messages)

        assert result[0]["content"] == "Let me check."
        assert result[0]["tool_calls"][0]["id"] == "c1"
        assert result[1] == {"role": "tool", "tool_call_id": "c1", "content": '{"error": "down"}'}


class TestOpenAIChatProvider:
    @pytest.mark.asyncio
    async def test_text_turn(self, mock_openai_client: Mock) -> None:
        stream = FakeStream([_chunk(_delta("Hel")), _chunk(_delta("lo"), finish_reason="stop")])
        mock_openai_client.chat.completions.create = AsyncMock(return_value=stream)

        chunks = await _turn(OpenAIChatProvider(mock_openai_client))

        assert chunks == [TextChunk("Hel"), TextChunk("lo"), TurnEnd("stop")]
        assert stream.closed is True
        params = mock_openai_client.chat.completions.create.await_args.kwargs
        assert params["stream"] is True
        assert "tools" not in params
        assert "extra_body" not in params

    @pytest.mark.asyncio
    async def test_tool_call_fragments_are_assembled(self, mock_openai_client: Mock) -> None:
        stream = FakeStream(
            [
                _chunk(_delta(tool_calls=[_tool_delta(0, "call_a", "get_weather", '{"ci')])),
                _chunk(_delta(tool_calls=[_tool_delta(0, arguments='ty": "Oslo"}')])),
                _chunk(_delta(tool_calls=[_tool_delta(1, "call_b", "get_time")])),
                _chunk(_delta(), finish_reason="tool_calls"),
            ]
        )
        mock_openai_client.chat.completions.create = AsyncMock(return_value=stream)
        tools = [{"type": "function", "function": {"name": "get_weather"}}]

        chunks = await _turn(OpenAIChatProvider(mock_openai_client), tools=tools)

        assert chunks == [
            ToolCallChunk(ToolCallRequest(id="call_a", name="get_weather", arguments='{"city": "Oslo"}')),
            ToolCallChunk(ToolCallRequest(id="call_b", name="get_time", arguments="{}")),
            TurnEnd("tool_calls"),
        ]
        params = mock_openai_client.chat.completions.create.await_args.kwargs
        assert params["tools"] == tools
        assert params["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_final_step_tool_choice_and_provider_options(self, mock_openai_client: Mock) -> None:
        mock_openai_client.chat.completions.create = AsyncMock(return_value=FakeStream([]))

        await _turn(
            OpenAIChatProvider(mock_openai_client),
            tools=[{"type": "function", "function": {"name": "t"}}],
            tool_choice="none",
            provider_options={"reasoning_effort": "high"},
        )

        params = mock_openai_client.chat.completions.create.await_args.kwargs
        assert params["tool_choice"] == "none"
        assert params["extra_body"] == {"reasoning_effort": "high"}

    @pytest.mark.asyncio
    async def test_reasoning_content(self, mock_openai_client: Mock) -> None:
        stream = FakeStream([_chunk(_delta(reasoning_content="hmm")), _chunk(_delta("ok"))])
        mock_openai_client.chat.completions.create = AsyncMock(return_value=stream)

        chunks = await _turn(OpenAIChatProvider(mock_openai_client))

        assert chunks[:2] == [ReasoningChunk("hmm"), TextChunk("ok")]

    @pytest.mark.asyncio
    async def test_rate_limit_error(self, mock_openai_client: Mock) -> None:
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        error = openai.RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)
        mock_openai_client.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(ModelStreamError) as exc_info:
            await _turn(OpenAIChatProvider(mock_openai_client))

        assert exc_info.value.rate_limited is True

    @pytest.mark.asyncio
    async def test_mid_stream_api_error(self, mock_openai_client: Mock) -> None:
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        stream = FakeStream([_chunk(_delta("par"))], error=openai.APIConnectionError(request=request))
        mock_openai_client.chat.completions.create = AsyncMock(return_value=stream)

        chunks: list[Any] = []
        with pytest.raises(ModelStreamError) as exc_info:
            async for chunk in OpenAIChatProvider(mock_openai_client).stream_turn(
                model="m", system_prompt="", messages=[], tools=None
            ):
                chunks.append(chunk)

        assert chunks == [TextChunk("par")]
        assert exc_info.value.rate_limited is False
        assert stream.closed is True
