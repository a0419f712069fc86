"""
Bridge between connected MCP servers and the chat model's tool calling.

This module turns MCP tool descriptors into function declarations the
model can be bound to, maps a model-issued tool name back to the server
that owns it, and executes the call through the manager.

Usage:
    from mcp_chat.bridge import ToolDispatcher, to_function_declarations

    dispatcher = ToolDispatcher.from_manager(manager)
    model = model.bind_tools(to_function_declarations(dispatcher.tools))

    owner = dispatcher.resolve("echo")
    result = await dispatcher.execute(owner.server_id, "echo", {"message": "hi"}, "call-1")
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from mcp_chat.errors import ToolResolutionError
from mcp_chat.manager import MCPServerManager
from mcp_chat.types import (
    Content,
    ImageContent,
    MCPTool,
    ResourceContent,
    ServerTool,
    TextContent,
    ToolCallResult,
)

logger = logging.getLogger(__name__)


def to_function_declaration(tool: MCPTool) -> dict[str, Any]:
    """
    Convert one MCP tool into a function declaration.

    ``parameters`` is left out entirely when the tool declares no input
    schema, rather than defaulting to an empty object.
    """
    declaration: dict[str, Any] = {
        "name": tool.name,
        "description": tool.description or "",
    }

    schema = tool.input_schema
    if schema:
        parameters: dict[str, Any] = {
            "type": schema.get("type", "object"),
            "properties": dict(schema.get("properties") or {}),
        }
        required = schema.get("required")
        if required:
            parameters["required"] = list(required)
        declaration["parameters"] = parameters

    return declaration


def to_function_declarations(tools: Iterable[MCPTool | ServerTool]) -> list[dict[str, Any]]:
    """Convert tools (bare or tagged with their server) into declarations."""
    return [
        to_function_declaration(t.tool if isinstance(t, ServerTool) else t)
        for t in tools
    ]


def flatten_contents(contents: Iterable[Content]) -> str:
    """
    Render tool output as the text fed back to the model.

    Images are never inlined: the model sees a placeholder with the MIME
    type. Resources are referenced by URI.
    """
    parts = []
    for item in contents:
        if isinstance(item, TextContent):
            parts.append(item.text)
        elif isinstance(item, ImageContent):
            parts.append(f"[Image: {item.mime_type}]")
        elif isinstance(item, ResourceContent):
            parts.append(f"[Resource: {item.uri}]")
        else:
            parts.append(str(item))
    return "\n".join(parts)


class ToolDispatcher:
    """
    Routes model tool calls to the MCP server that owns each tool.

    Built once per loop run from the manager's connected tool set, so
    the name → server mapping is stable for the whole run.
    """

    def __init__(self, manager: MCPServerManager, tools: list[ServerTool]):
        self.manager = manager
        self.tools = tools
        self._owners: dict[str, ServerTool] = {}
        for entry in tools:
            name = entry.tool.name
            if name in self._owners:
                logger.warning(
                    f"Tool '{name}' is provided by both {self._owners[name].server_name} "
                    f"and {entry.server_name}; using {self._owners[name].server_name}"
                )
                continue
            self._owners[name] = entry

    @classmethod
    def from_manager(cls, manager: MCPServerManager) -> "ToolDispatcher":
        return cls(manager, manager.get_all_tools())

    def __len__(self) -> int:
        return len(self._owners)

    def declarations(self) -> list[dict[str, Any]]:
        return to_function_declarations(self._owners[name].tool for name in self._owners)

    def resolve(self, tool_name: str) -> ServerTool:
        """
        Find the server that owns a tool.

        Raises:
            ToolResolutionError: if no connected server provides it.
        """
        owner = self._owners.get(tool_name)
        if owner is None:
            raise ToolResolutionError(tool_name)
        return owner

    async def execute(
        self,
        server_id: str,
        tool_name: str,
        args: dict[str, Any],
        tool_call_id: str,
    ) -> ToolCallResult:
        """
        Run a tool through the manager. Never raises.

        Any failure (server gone, transport error, timeout) comes back as
        a result with ``is_error=True`` so the model can react to it.
        """
        try:
            output = await self.manager.call_tool(server_id, tool_name, args)
        except Exception as e:
            logger.error(f"Tool call failed ({server_id}/{tool_name}): {e}")
            return ToolCallResult(
                tool_call_id=tool_call_id,
                name=tool_name,
                result=f"Error calling tool {tool_name}: {e}",
                is_error=True,
            )

        return ToolCallResult(
            tool_call_id=tool_call_id,
            name=tool_name,
            result=flatten_contents(output.contents),
            contents=output.contents,
            is_error=output.is_error,
        )


def describe_tools(tools: Iterable[ServerTool]) -> str:
    """One line per tool, for the system instruction."""
    lines = []
    for entry in tools:
        description = entry.tool.description or "No description"
        lines.append(f"- {entry.tool.name} ({entry.server_name}): {description}")
        properties = (entry.tool.input_schema or {}).get("properties") or {}
        required = set((entry.tool.input_schema or {}).get("required") or [])
        for pname, pinfo in properties.items():
            ptype = pinfo.get("type", "any") if isinstance(pinfo, dict) else "any"
            marker = ", required" if pname in required else ""
            lines.append(f"    - {pname} ({ptype}{marker})")
    return "\n".join(lines)


def tool_call_args(raw: Any) -> dict[str, Any]:
    """Model-issued arguments as a dict (some providers send a JSON string)."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"input": raw}
        return parsed if isinstance(parsed, dict) else {"input": parsed}
    return {}
