"""
Shared fixtures: in-memory MCP sessions and a scripted chat model.

FakeSession stands in for ProtocolSession so the manager, dispatcher and
loop can be exercised without spawning processes. ScriptedChatModel is a
real langchain chat model that replays canned AIMessages.
"""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field

from mcp_chat.app import create_app
from mcp_chat.config import Settings
from mcp_chat.errors import ServerNotConnectedError
from mcp_chat.manager import MCPServerManager
from mcp_chat.storage import ServerConfigStore
from mcp_chat.types import (
    CapabilityListing,
    MCPPrompt,
    MCPResource,
    MCPTool,
    PromptMessage,
    PromptResult,
    ResourceContents,
    ServerConfig,
    TextContent,
    ToolOutput,
)


def make_config(server_id: str = "srv", name: str | None = None, **overrides) -> ServerConfig:
    data: dict[str, Any] = {
        "id": server_id,
        "name": name or server_id.title(),
        "transport": "stdio",
        "command": "fake-server",
        "args": ["--stdio"],
    }
    data.update(overrides)
    return ServerConfig.from_dict(data)


def echo_tool(name: str = "echo", description: str = "Echo a message") -> MCPTool:
    return MCPTool(
        name=name,
        description=description,
        input_schema={
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    )


# ============================================================
# FAKE MCP SESSION
# ============================================================

class FakeTransport:
    def __init__(self, stderr: str = ""):
        self.stderr = stderr
        self.closed = False

    def diagnostics(self) -> str:
        return self.stderr

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Duck-typed ProtocolSession with scripted capabilities and failures."""

    def __init__(
        self,
        config: ServerConfig,
        tools: tuple[MCPTool, ...] = (),
        prompts: tuple[MCPPrompt, ...] | None = (),
        resources: tuple[MCPResource, ...] | None = (),
        open_error: BaseException | None = None,
        open_hook: Callable[[], Awaitable[None]] | None = None,
        close_error: BaseException | None = None,
        call_handler: Callable[[str, dict], Awaitable[ToolOutput]] | None = None,
        stderr: str = "",
    ):
        self.config = config
        self.server_id = config.id
        self.transport = FakeTransport(stderr)
        self.tools = tools
        self.prompts = prompts
        self.resources = resources
        self.open_error = open_error
        self.open_hook = open_hook
        self.close_error = close_error
        self.call_handler = call_handler
        self.opened = False
        self.closed = False
        self.calls: list[tuple[str, dict]] = []

    async def open(self) -> None:
        if self.open_hook is not None:
            await self.open_hook()
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error

    @staticmethod
    def _listing(kind: str, items) -> CapabilityListing:
        if items is None:
            return CapabilityListing.failed(kind, "Method not found")
        return CapabilityListing.ok(kind, items)

    async def list_tools(self) -> CapabilityListing:
        return self._listing("tools", self.tools)

    async def list_prompts(self) -> CapabilityListing:
        return self._listing("prompts", self.prompts)

    async def list_resources(self) -> CapabilityListing:
        return self._listing("resources", self.resources)

    async def call_tool(self, name: str, arguments: dict | None = None) -> ToolOutput:
        if self.closed:
            raise ServerNotConnectedError(self.server_id)
        arguments = arguments or {}
        self.calls.append((name, arguments))
        if self.call_handler is not None:
            return await self.call_handler(name, arguments)
        return ToolOutput(contents=(TextContent(f"{name}:{json.dumps(arguments, sort_keys=True)}"),))

    async def get_prompt(self, name: str, arguments: dict | None = None) -> PromptResult:
        if self.closed:
            raise ServerNotConnectedError(self.server_id)
        who = (arguments or {}).get("name", "friend")
        return PromptResult(
            description=f"{name} prompt",
            messages=(PromptMessage(role="user", text=f"Please greet {who}."),),
        )

    async def read_resource(self, uri: str) -> list[ResourceContents]:
        if self.closed:
            raise ServerNotConnectedError(self.server_id)
        return [ResourceContents(uri=uri, mime_type="text/plain", text=f"contents of {uri}")]


class FakeSessionFactory:
    """Session factory for MCPServerManager; options are keyed by server id."""

    def __init__(self):
        self.options: dict[str, dict[str, Any]] = {}
        self.created: list[FakeSession] = []

    def configure(self, server_id: str, **options) -> None:
        self.options[server_id] = options

    def __call__(self, config: ServerConfig) -> FakeSession:
        session = FakeSession(config, **self.options.get(config.id, {}))
        self.created.append(session)
        return session

    def sessions_for(self, server_id: str) -> list[FakeSession]:
        return [s for s in self.created if s.server_id == server_id]


# ============================================================
# SCRIPTED CHAT MODEL
# ============================================================

class ScriptedChatModel(BaseChatModel):
    """Replays ``responses`` in order, then ``repeat`` forever (if set)."""

    responses: list[Any] = Field(default_factory=list)
    repeat: Any = None
    error: str | None = None
    received: list[Any] = Field(default_factory=list)
    bound_tools: list[Any] = Field(default_factory=list)

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def bind_tools(self, tools, **kwargs):
        self.bound_tools.extend(tools)
        return self

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        self.received.append(list(messages))
        if self.error:
            raise RuntimeError(self.error)
        if self.responses:
            message = self.responses.pop(0)
        elif self.repeat is not None:
            message = self.repeat
        else:
            message = AIMessage(content="")
        return ChatResult(generations=[ChatGeneration(message=message)])


def tool_call_message(*calls: tuple[str, dict, str]) -> AIMessage:
    """AIMessage requesting tools; each call is ``(name, args, call_id)``."""
    return AIMessage(
        content="",
        tool_calls=[{"name": name, "args": args, "id": call_id} for name, args, call_id in calls],
    )


def parse_sse(body: str) -> list[tuple[str, dict]]:
    """Split an SSE body into ``(event, data)`` pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        if not block.strip():
            continue
        event, data = None, None
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((event, data))
    return events


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def manager(session_factory) -> MCPServerManager:
    return MCPServerManager(session_factory)


@pytest.fixture
def chat_model() -> ScriptedChatModel:
    return ScriptedChatModel()


@pytest.fixture
def store(tmp_path) -> ServerConfigStore:
    return ServerConfigStore(tmp_path / "servers.json")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(_env_file=None, api_key="test-key", max_tool_iterations=3, servers_file=tmp_path / "servers.json")


@pytest.fixture
def client(settings, manager, store, chat_model):
    """TestClient over an app wired to the fake sessions and scripted model."""
    app = create_app(
        settings=settings,
        manager=manager,
        store=store,
        model_factory=lambda _settings: chat_model,
    )
    with TestClient(app) as test_client:
        yield test_client

