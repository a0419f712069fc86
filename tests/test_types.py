"""Tests for server config validation and the connection state records."""

import re

import pytest

from mcp_chat.errors import ServerConfigError
from mcp_chat.types import (
    CapabilityListing,
    ConnectionState,
    ConnectionStatus,
    ImageContent,
    MCPTool,
    OtherContent,
    ServerConfig,
    TransportType,
    generate_server_id,
)


class TestServerConfig:
    """Tests for ServerConfig.from_dict / validate / to_dict."""

    def test_stdio_config_round_trips_through_json_form(self):
        data = {
            "id": "fs",
            "name": "Files",
            "transport": "stdio",
            "command": "npx",
            "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
            "env": {"DEBUG": "1"},
        }
        config = ServerConfig.from_dict(data)

        assert config.transport is TransportType.STDIO
        assert config.to_dict() == data

    def test_http_config_omits_unset_fields(self):
        config = ServerConfig.from_dict(
            {"id": "remote", "name": "Remote", "transport": "streamable-http", "url": "http://localhost:8000/mcp"}
        )

        assert config.to_dict() == {
            "id": "remote",
            "name": "Remote",
            "transport": "streamable-http",
            "url": "http://localhost:8000/mcp",
        }

    @pytest.mark.parametrize(
        "data, message",
        [
            ({"name": "x", "transport": "stdio", "command": "x"}, "Missing required fields"),
            ({"id": "x", "name": "x", "transport": "stdio"}, "STDIO transport requires command"),
            ({"id": "x", "name": "x", "transport": "sse"}, "HTTP/SSE transport requires url"),
            ({"id": "x", "name": "x", "transport": "streamable-http"}, "HTTP/SSE transport requires url"),
            ({"id": "x", "name": "x", "transport": "websocket", "url": "ws://x"}, "Unknown transport type"),
        ],
    )
    def test_invalid_configs_are_rejected(self, data, message):
        with pytest.raises(ServerConfigError, match=message):
            ServerConfig.from_dict(data)

    def test_non_object_is_rejected(self):
        with pytest.raises(ServerConfigError):
            ServerConfig.from_dict(["not", "a", "config"])

    def test_describe_shows_command_line_or_url(self):
        stdio = ServerConfig("a", "A", TransportType.STDIO, command="python", args=["-m", "srv"])
        sse = ServerConfig("b", "B", TransportType.SSE, url="http://localhost:9000/sse")

        assert stdio.describe() == "python -m srv"
        assert sse.describe() == "http://localhost:9000/sse"


def test_generated_server_ids_are_unique_and_well_formed():
    ids = {generate_server_id() for _ in range(50)}

    assert len(ids) == 50
    for server_id in ids:
        assert re.fullmatch(r"mcp-\d{13,}-[a-z0-9]{7}", server_id)


class TestConnectionState:
    """Tests for ConnectionState transitions and invariants."""

    def test_only_connected_state_carries_capabilities(self):
        with pytest.raises(ValueError):
            ConnectionState(
                server_id="x",
                status=ConnectionStatus.ERROR,
                tools=(MCPTool(name="echo"),),
            )

    def test_unsupported_capabilities_collapse_to_empty_lists(self):
        state = ConnectionState.connected(
            "x",
            CapabilityListing.ok("tools", [MCPTool(name="echo")]),
            CapabilityListing.failed("prompts", "Method not found"),
            CapabilityListing.failed("resources", ""),
        )

        assert state.is_connected
        assert [t.name for t in state.tools] == ["echo"]
        assert state.prompts == ()
        assert state.resources == ()
        assert state.unsupported == frozenset({"prompts", "resources"})

    def test_to_dict_uses_camel_case(self):
        state = ConnectionState.failed("x", "boom")

        assert state.to_dict() == {
            "serverId": "x",
            "status": "error",
            "tools": [],
            "prompts": [],
            "resources": [],
            "error": "boom",
        }

    def test_tool_to_dict_exposes_input_schema(self):
        tool = MCPTool(name="echo", description="Echo", input_schema={"type": "object"})

        assert tool.to_dict() == {"name": "echo", "description": "Echo", "inputSchema": {"type": "object"}}


class TestContent:
    def test_image_content_serializes_mime_type(self):
        assert ImageContent(data="AAAA", mime_type="image/png").to_dict() == {
            "type": "image",
            "data": "AAAA",
            "mimeType": "image/png",
        }

    def test_other_content_renders_as_json(self):
        item = OtherContent(kind="audio", payload={"mimeType": "audio/wav"})

        assert item.type == "audio"
        assert str(item) == '{"mimeType": "audio/wav", "type": "audio"}'
