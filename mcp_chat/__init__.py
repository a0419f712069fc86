"""
MCP Chat — language-model chat augmented with MCP tool servers.

Architecture:
    ┌────────────┐  events  ┌─────────────┐        ┌──────────────┐
    │  Chat API  │ ◀─────── │ AgenticLoop │ ─────▶ │ ToolDispatcher│
    │ (FastAPI)  │          │ (langchain) │        └──────┬───────┘
    └────────────┘          └─────────────┘               │
                                                          ▼
    ┌──────────────┐  stdio / streamable HTTP / SSE  ┌──────────────────┐
    │  MCP server  │ ◀────────────────────────────── │ MCPServerManager │
    │ (external)   │        JSON-RPC (MCP)           │ ProtocolSession  │
    └──────────────┘                                 └──────────────────┘

The MCPServerManager keeps one ProtocolSession per configured server and
the capabilities it declared. The AgenticLoop offers every connected
tool to the model, executes the calls it asks for and streams progress
back until the model answers.

AgenticLoop and create_app are resolved on first access, so starting a
reference server (which imports this package) does not load langchain
or FastAPI.
"""

from mcp_chat.errors import (
    MCPConnectionError,
    MCPTimeoutError,
    ServerConfigError,
    ServerNotConnectedError,
    ToolResolutionError,
)
from mcp_chat.manager import MCPServerManager
from mcp_chat.session import ProtocolSession
from mcp_chat.transport import create_transport
from mcp_chat.types import ConnectionState, ConnectionStatus, ServerConfig, TransportType


def __getattr__(name):
    if name == "AgenticLoop":
        from mcp_chat.agent import AgenticLoop
        return AgenticLoop
    if name == "create_app":
        from mcp_chat.app import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "AgenticLoop",
    "ConnectionState",
    "ConnectionStatus",
    "MCPConnectionError",
    "MCPServerManager",
    "MCPTimeoutError",
    "ProtocolSession",
    "ServerConfig",
    "ServerConfigError",
    "ServerNotConnectedError",
    "ToolResolutionError",
    "TransportType",
    "create_app",
    "create_transport",
]
