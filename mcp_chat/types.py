"""
Data model for the MCP connection manager and the tool loop.

Everything here is a plain dataclass. Objects that cross the HTTP
boundary expose ``to_dict()`` producing the camelCase shape the chat UI
consumes (``serverId``, ``inputSchema``, ``isError`` ...).

Capability descriptors (tools, prompts, resources) are frozen snapshots
taken at connect time. A ConnectionState is never mutated in place; the
manager replaces the whole object on every transition.
"""

from __future__ import annotations

import json
import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from mcp_chat.errors import ServerConfigError


class TransportType(str, Enum):
    """How the client reaches an MCP server."""
    STDIO = "stdio"
    STREAMABLE_HTTP = "streamable-http"
    SSE = "sse"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


# ============================================================
# SERVER CONFIG
# ============================================================

@dataclass
class ServerConfig:
    """
    User-declared descriptor of one external MCP server.

    stdio servers need ``command`` (plus optional ``args`` / ``env``);
    streamable-http and sse servers need ``url``.
    """
    id: str
    name: str
    transport: TransportType
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None

    def validate(self) -> None:
        """
        Check that the fields required by the transport are present.

        Raises:
            ServerConfigError: with a field-specific message.
        """
        if not self.id or not self.name or not self.transport:
            raise ServerConfigError("Missing required fields: id, name, transport")
        if self.transport == TransportType.STDIO and not self.command:
            raise ServerConfigError("STDIO transport requires command")
        if self.transport in (TransportType.STREAMABLE_HTTP, TransportType.SSE) and not self.url:
            raise ServerConfigError("HTTP/SSE transport requires url")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerConfig":
        """Build and validate a config from its JSON form."""
        if not isinstance(data, dict):
            raise ServerConfigError("Server config must be a JSON object")

        raw_transport = data.get("transport")
        if not data.get("id") or not data.get("name") or not raw_transport:
            raise ServerConfigError("Missing required fields: id, name, transport")
        try:
            transport = TransportType(raw_transport)
        except ValueError:
            raise ServerConfigError(f"Unknown transport type: {raw_transport}") from None

        args = data.get("args") or []
        env = data.get("env") or {}
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise ServerConfigError("args must be a list of strings")
        if not isinstance(env, dict):
            raise ServerConfigError("env must be an object of string values")

        config = cls(
            id=str(data["id"]),
            name=str(data["name"]),
            transport=transport,
            command=data.get("command") or None,
            args=list(args),
            env={str(k): str(v) for k, v in env.items()},
            url=data.get("url") or None,
        )
        config.validate()
        return config

    def to_dict(self) -> dict[str, Any]:
        """JSON form; optional fields that are unset are left out."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "transport": self.transport.value,
        }
        if self.command:
            data["command"] = self.command
        if self.args:
            data["args"] = list(self.args)
        if self.env:
            data["env"] = dict(self.env)
        if self.url:
            data["url"] = self.url
        return data

    def describe(self) -> str:
        """Launch command or URL, for log lines and error messages."""
        if self.transport == TransportType.STDIO:
            return " ".join([self.command or "", *self.args]).strip()
        return self.url or ""


def generate_server_id() -> str:
    """Unique id of the form ``mcp-<epoch millis>-<7 random chars>``."""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(7))
    return f"mcp-{int(time.time() * 1000)}-{suffix}"


# ============================================================
# CAPABILITIES
# ============================================================

@dataclass(frozen=True)
class MCPTool:
    name: str
    description: str | None = None
    input_schema: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            data["description"] = self.description
        if self.input_schema is not None:
            data["inputSchema"] = self.input_schema
        return data


@dataclass(frozen=True)
class PromptArgument:
    name: str
    description: str | None = None
    required: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "required": self.required}
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass(frozen=True)
class MCPPrompt:
    name: str
    description: str | None = None
    arguments: tuple[PromptArgument, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "arguments": [a.to_dict() for a in self.arguments],
        }
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass(frozen=True)
class MCPResource:
    uri: str
    name: str
    description: str | None = None
    mime_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"uri": self.uri, "name": self.name}
        if self.description is not None:
            data["description"] = self.description
        if self.mime_type is not None:
            data["mimeType"] = self.mime_type
        return data


@dataclass(frozen=True)
class CapabilityListing:
    """
    Outcome of a ``tools/list``, ``prompts/list`` or ``resources/list`` call.

    A server may simply not implement a capability. That is recorded as
    ``unsupported`` with the reason instead of an exception, and
    ``items_or_empty()`` collapses both cases to a list at the boundary.
    """
    kind: str
    items: tuple = ()
    unsupported: str | None = None

    @property
    def supported(self) -> bool:
        return self.unsupported is None

    def items_or_empty(self) -> list:
        return list(self.items) if self.supported else []

    @classmethod
    def ok(cls, kind: str, items) -> "CapabilityListing":
        return cls(kind=kind, items=tuple(items))

    @classmethod
    def failed(cls, kind: str, reason: str) -> "CapabilityListing":
        return cls(kind=kind, unsupported=reason or "unsupported")


# ============================================================
# CONNECTION STATE
# ============================================================

@dataclass(frozen=True)
class ConnectionState:
    """
    The manager's live record for one server id.

    Only ``connected`` states carry capability lists.
    """
    server_id: str
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    error: str | None = None
    tools: tuple[MCPTool, ...] = ()
    prompts: tuple[MCPPrompt, ...] = ()
    resources: tuple[MCPResource, ...] = ()
    unsupported: frozenset[str] = frozenset()

    def __post_init__(self):
        if self.status != ConnectionStatus.CONNECTED and (
            self.tools or self.prompts or self.resources
        ):
            raise ValueError(
                f"Capabilities are only kept for connected servers (status={self.status.value})"
            )

    @classmethod
    def disconnected(cls, server_id: str) -> "ConnectionState":
        return cls(server_id=server_id)

    @classmethod
    def connecting(cls, server_id: str) -> "ConnectionState":
        return cls(server_id=server_id, status=ConnectionStatus.CONNECTING)

    @classmethod
    def failed(cls, server_id: str, message: str) -> "ConnectionState":
        return cls(server_id=server_id, status=ConnectionStatus.ERROR, error=message)

    @classmethod
    def connected(
        cls,
        server_id: str,
        tools: CapabilityListing,
        prompts: CapabilityListing,
        resources: CapabilityListing,
    ) -> "ConnectionState":
        return cls(
            server_id=server_id,
            status=ConnectionStatus.CONNECTED,
            tools=tuple(tools.items_or_empty()),
            prompts=tuple(prompts.items_or_empty()),
            resources=tuple(resources.items_or_empty()),
            unsupported=frozenset(
                p.kind for p in (tools, prompts, resources) if not p.supported
            ),
        )

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "serverId": self.server_id,
            "status": self.status.value,
            "tools": [t.to_dict() for t in self.tools],
            "prompts": [p.to_dict() for p in self.prompts],
            "resources": [r.to_dict() for r in self.resources],
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class ServerTool:
    """A tool together with the connected server that owns it."""
    server_id: str
    server_name: str
    tool: MCPTool

    def to_dict(self) -> dict[str, Any]:
        return {
            "serverId": self.server_id,
            "serverName": self.server_name,
            "tool": self.tool.to_dict(),
        }


# ============================================================
# CONTENT ITEMS (tagged union)
# ============================================================

@dataclass(frozen=True)
class TextContent:
    text: str
    type: str = field(default="text", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class ImageContent:
    data: str
    mime_type: str
    type: str = field(default="image", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data, "mimeType": self.mime_type}


@dataclass(frozen=True)
class ResourceContent:
    uri: str
    mime_type: str | None = None
    text: str | None = None
    type: str = field(default="resource", init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "uri": self.uri}
        if self.mime_type is not None:
            data["mimeType"] = self.mime_type
        if self.text is not None:
            data["text"] = self.text
        return data


@dataclass(frozen=True)
class OtherContent:
    """Any content kind this client does not model (audio, links, ...)."""
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return self.kind

    def to_dict(self) -> dict[str, Any]:
        return {**self.payload, "type": self.kind}

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), default=str)


Content = Union[TextContent, ImageContent, ResourceContent, OtherContent]


# ============================================================
# RPC RESULTS
# ============================================================

@dataclass(frozen=True)
class ToolOutput:
    """Raw result of ``tools/call``; ``is_error`` is the server's own flag."""
    contents: tuple[Content, ...] = ()
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": [c.to_dict() for c in self.contents],
            "isError": self.is_error,
        }


@dataclass(frozen=True)
class PromptMessage:
    role: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": {"type": "text", "text": self.text}}


@dataclass(frozen=True)
class PromptResult:
    description: str | None = None
    messages: tuple[PromptMessage, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"messages": [m.to_dict() for m in self.messages]}
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass(frozen=True)
class ResourceContents:
    uri: str
    mime_type: str | None = None
    text: str | None = None
    blob: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"uri": self.uri}
        for key, value in (("mimeType", self.mime_type), ("text", self.text), ("blob", self.blob)):
            if value is not None:
                data[key] = value
        return data


# ============================================================
# TOOL LOOP RECORDS
# ============================================================

@dataclass(frozen=True)
class ToolCall:
    """One model-issued tool invocation, resolved to its owning server."""
    id: str
    name: str
    args: dict[str, Any]
    server_id: str | None = None
    server_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "args": self.args,
            "serverId": self.server_id,
            "serverName": self.server_name,
        }


@dataclass(frozen=True)
class ToolCallResult:
    tool_call_id: str
    name: str
    result: str
    contents: tuple[Content, ...] = ()
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolCallId": self.tool_call_id,
            "name": self.name,
            "result": self.result,
            "contents": [c.to_dict() for c in self.contents],
            "isError": self.is_error,
        }
