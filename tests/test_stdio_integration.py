"""
End-to-end tests over a real stdio transport.

Spawns the bundled echo server (``python -m mcp_chat.servers.echo``) with
the default session factory. Run only these with ``pytest -m integration``.
"""

import sys

import pytest

from mcp_chat.bridge import ToolDispatcher
from mcp_chat.errors import MCPConnectionError, ServerNotConnectedError
from mcp_chat.manager import MCPServerManager, default_session_factory
from mcp_chat.types import ConnectionStatus, ServerConfig, TransportType

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]

ECHO = ServerConfig(
    id="echo",
    name="Echo",
    transport=TransportType.STDIO,
    command=sys.executable,
    args=["-m", "mcp_chat.servers.echo"],
)


@pytest.fixture
def live_manager():
    return MCPServerManager(default_session_factory(connect_timeout=20.0, call_timeout=20.0))


async def test_echo_server_round_trip(live_manager):
    try:
        state = await live_manager.connect(ECHO)

        assert state.status is ConnectionStatus.CONNECTED
        assert {t.name for t in state.tools} == {"echo", "fail"}
        assert [p.name for p in state.prompts] == ["greet"]
        assert [r.uri for r in state.resources] == ["echo://readme"]

        output = await live_manager.call_tool("echo", "echo", {"message": "hello"})
        assert output.is_error is False
        assert output.contents[0].text == "hello"

        prompt = await live_manager.get_prompt("echo", "greet", {"name": "Ada"})
        assert "Ada" in prompt.messages[0].text

        contents = await live_manager.read_resource("echo", "echo://readme")
        assert "echo server" in contents[0].text
    finally:
        await live_manager.shutdown()

    assert live_manager.get_connection_state("echo").status is ConnectionStatus.DISCONNECTED


async def test_tool_error_comes_back_flagged(live_manager):
    try:
        await live_manager.connect(ECHO)
        dispatcher = ToolDispatcher.from_manager(live_manager)

        result = await dispatcher.execute("echo", "fail", {"reason": "on purpose"}, "call-1")

        assert result.is_error is True
        assert "on purpose" in result.result
    finally:
        await live_manager.shutdown()


async def test_server_that_exits_immediately_ends_in_error():
    live_manager = MCPServerManager(default_session_factory(connect_timeout=5.0))
    config = ServerConfig(
        id="quitter",
        name="Quitter",
        transport=TransportType.STDIO,
        command=sys.executable,
        args=["-c", "pass"],
    )

    with pytest.raises(MCPConnectionError):
        await live_manager.connect(config)

    state = live_manager.get_connection_state("quitter")
    assert state.status is ConnectionStatus.ERROR
    assert state.error
    with pytest.raises(ServerNotConnectedError):
        await live_manager.list_tools("quitter")
