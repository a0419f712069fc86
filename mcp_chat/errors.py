"""Exception types raised by the MCP client layer."""

from __future__ import annotations


class ServerConfigError(ValueError):
    """A server config is missing fields its transport needs. Never retried."""


class MCPConnectionError(RuntimeError):
    """Opening a transport or completing the protocol handshake failed."""


class MCPTimeoutError(MCPConnectionError):
    """A handshake or RPC did not complete within its time limit."""


class ServerNotConnectedError(RuntimeError):
    """An RPC was issued for a server id with no live session."""

    def __init__(self, server_id: str):
        super().__init__(f"Server {server_id} is not connected")
        self.server_id = server_id


class ToolResolutionError(LookupError):
    """A model asked for a tool that no connected server provides."""

    def __init__(self, tool_name: str):
        super().__init__(f"No connected MCP server provides tool '{tool_name}'")
        self.tool_name = tool_name


class ModelConfigurationError(RuntimeError):
    """The language model cannot be built (e.g. missing API key)."""
