"""Tests for MCP models."""

from __future__ import annotations

import pytest

from pydantic import TypeAdapter, ValidationError

from models.mcp_models import (
    KeyValuePair,
    MCPResult,
    MCPTool,
    ServerDescriptor,
    ToolFailure,
    ToolOutcome,
    ToolSuccess,
    TransportKind,
)


class TestServerDescriptor:
    def test_defaults(self) -> None:
        descriptor = ServerDescriptor(id="weather", url="http://localhost:9000/sse")

        assert descriptor.type == TransportKind.SSE
        assert descriptor.display_name == "weather"
        assert descriptor.header_map == {}

    def test_parses_wire_format(self) -> None:
        descriptor = ServerDescriptor.model_validate(
            {
                "id": "search",
                "name": "Search",
                "url": "wss://search.example.com/ws",
                "type": "websocket",
                "headers": [{"key": "X-Api-Key", "value": "k"}],
            }
        )

        assert descriptor.type == TransportKind.WEBSOCKET
        assert descriptor.header_map == {"X-Api-Key": "k"}
        assert descriptor.display_name == "Search"

    def test_repeated_header_keeps_last_value(self) -> None:
        descriptor = ServerDescriptor(
            id="a",
            url="http://a/sse",
            headers=[
                KeyValuePair(key="Authorization", value="Bearer 1"),
                KeyValuePair(key="Authorization", value="Bearer 2"),
                KeyValuePair(key="", value="dropped"),
            ],
        )
        assert descriptor.header_map == {"Authorization": "Bearer 2"}

    @pytest.mark.parametrize("field", ["id", "url"])
    def test_blank_identity_rejected(self, field: str) -> None:
        data = {"id": "a", "url": "http://a/sse", field: "  "}
        with pytest.raises(ValidationError):
            ServerDescriptor.model_validate(data)

    def test_unknown_transport_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ServerDescriptor(id="a", url="http://a", type="stdio")  # type: ignore[arg-type]

    def test_is_immutable(self) -> None:
        descriptor = ServerDescriptor(id="a", url="http://a/sse")
        with pytest.raises(ValidationError):
            descriptor.url = "http://b/sse"  # type: ignore[misc]


class TestMCPTool:
    def test_openai_schema_defaults_parameters(self) -> None:
        schema = MCPTool(name="ping").to_openai_schema()
        assert schema["function"]["parameters"] == {"type": "object", "properties": {}}
        assert schema["function"]["description"] == ""

    def test_extra_fields_allowed(self) -> None:
        tool = MCPTool.model_validate({"name": "t", "annotations": {"readOnlyHint": True}})
        assert tool.model_extra == {"annotations": {"readOnlyHint": True}}


class TestMCPResult:
    def test_structured_content_preferred(self) -> None:
        result = MCPResult(content=[{"type": "text", "text": "t"}], structuredContent={"v": 1})
        assert result.payload() == {"v": 1}

    def test_text_blocks_joined(self) -> None:
        result = MCPResult(content=[{"type": "text", "text": "a"}, {"type": "text", "text": "b"}])
        assert result.payload() == "a\nb"

    def test_non_text_content_returned_raw(self) -> None:
        blocks = [{"type": "image", "data": "...", "mimeType": "image/png"}]
        assert MCPResult(content=blocks).payload() == blocks

    def test_empty_result(self) -> None:
        assert MCPResult().payload() == ""


class TestToolOutcome:
    def test_discriminated_on_status(self) -> None:
        adapter: TypeAdapter[ToolOutcome] = TypeAdapter(ToolOutcome)

        assert adapter.validate_python({"status": "success", "payload": 1}) == ToolSuccess(payload=1)
        assert adapter.validate_python({"status": "failure", "reason": "x"}) == ToolFailure(reason="x")
        with pytest.raises(ValidationError):
            adapter.validate_python({"status": "failure"})
