"""
MCP Server Manager — connects to MCP servers and tracks their state.

The manager is the single process-wide table of protocol sessions keyed
by server id. It owns the connect/disconnect state machine, caches the
capabilities fetched at connect time, and serializes connects per id.

    disconnected ──connect──▶ connecting ──▶ connected
                                        └──▶ error
    connected | error ──disconnect──▶ disconnected

Usage:
    manager = MCPServerManager()

    # Connect (idempotent while connected)
    state = await manager.connect(ServerConfig.from_dict({...}))

    # Call a tool
    output = await manager.call_tool("mcp-1", "echo", {"message": "hi"})

    # Everything the loop may offer the model
    tools = manager.get_all_tools()

    # Stop everything
    await manager.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable

from mcp_chat.errors import MCPConnectionError, ServerNotConnectedError
from mcp_chat.session import ProtocolSession, unwrap_exception
from mcp_chat.transport import Transport, create_transport
from mcp_chat.types import (
    ConnectionState,
    MCPPrompt,
    MCPResource,
    MCPTool,
    PromptResult,
    ResourceContents,
    ServerConfig,
    ServerTool,
    ToolOutput,
    TransportType,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[ServerConfig], ProtocolSession]


def default_session_factory(
    client_name: str = "mcp-client-app",
    client_version: str = "1.0.0",
    connect_timeout: float | None = 30.0,
    call_timeout: float | None = None,
) -> SessionFactory:
    """Session factory that builds real transports from server configs."""

    def factory(config: ServerConfig) -> ProtocolSession:
        return ProtocolSession(
            create_transport(config),
            server_id=config.id,
            client_name=client_name,
            client_version=client_version,
            connect_timeout=connect_timeout,
            call_timeout=call_timeout,
        )

    return factory


class MCPServerManager:
    """
    Manages the lifecycle of MCP server connections.

    Responsibilities:
    - Open one protocol session per server id (stdio / HTTP / SSE)
    - Publish ConnectionState transitions as they happen
    - Route RPCs to the right session
    - Graceful shutdown
    """

    def __init__(self, session_factory: SessionFactory | None = None):
        self._session_factory = session_factory or default_session_factory()
        self._states: dict[str, ConnectionState] = {}
        self._sessions: dict[str, ProtocolSession] = {}
        self._transports: dict[str, Transport] = {}
        self._configs: dict[str, ServerConfig] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        # Bumped by disconnect so an in-flight connect knows it lost the race
        self._generations: defaultdict[str, int] = defaultdict(int)

    # ── state machine ─────────────────────────────────────

    async def connect(self, config: ServerConfig) -> ConnectionState:
        """
        Connect to a server and fetch its capabilities.

        Returns the existing state unchanged if the server is already
        connected. Concurrent calls for the same id are serialized;
        different ids connect independently.

        Returns:
            The ``connected`` state (or ``disconnected`` if a disconnect
            arrived while connecting).

        Raises:
            ServerConfigError: before any I/O, if the config is incomplete.
            MCPConnectionError: if the transport or handshake failed; the
                ``error`` state is recorded first.
        """
        config.validate()
        server_id = config.id

        async with self._locks[server_id]:
            existing = self._states.get(server_id)
            if existing is not None and existing.is_connected and server_id in self._sessions:
                logger.info(f"Already connected: {config.name}")
                return existing

            generation = self._generations[server_id]
            self._states[server_id] = ConnectionState.connecting(server_id)
            logger.info(f"Connecting to {config.name} ({config.transport.value}: {config.describe()})")

            session: ProtocolSession | None = None
            try:
                session = self._session_factory(config)
                await session.open()

                tools, prompts, resources = await asyncio.gather(
                    session.list_tools(),
                    session.list_prompts(),
                    session.list_resources(),
                )
            except Exception as e:
                message = self._describe_failure(config, e, session)
                logger.error(f"Connection failed for {config.name}: {message}")
                if session is not None:
                    await self._close_quietly(server_id, session, session.transport)
                if self._generations[server_id] == generation:
                    self._states[server_id] = ConnectionState.failed(server_id, message)
                raise MCPConnectionError(message) from e

            if self._generations[server_id] != generation:
                logger.info(f"Disconnected while connecting, dropping session: {config.name}")
                await self._close_quietly(server_id, session, session.transport)
                return self._states.get(server_id) or ConnectionState.disconnected(server_id)

            state = ConnectionState.connected(server_id, tools, prompts, resources)
            self._sessions[server_id] = session
            self._transports[server_id] = session.transport
            self._configs[server_id] = config
            self._states[server_id] = state

            logger.info(
                f"Connected: {config.name} ({len(state.tools)} tools, "
                f"{len(state.prompts)} prompts, {len(state.resources)} resources)"
            )
            return state

    async def disconnect(self, server_id: str) -> ConnectionState:
        """
        Close a server's session. Never raises.

        Does not wait for an in-flight connect; that connect will notice
        and discard its session.
        """
        self._generations[server_id] += 1
        session = self._sessions.pop(server_id, None)
        transport = self._transports.pop(server_id, None)
        self._configs.pop(server_id, None)

        state = ConnectionState.disconnected(server_id)
        self._states[server_id] = state

        await self._close_quietly(server_id, session, transport)
        logger.info(f"Disconnected: {server_id}")
        return state

    async def remove_server(self, server_id: str) -> None:
        """Disconnect and forget a deleted server entirely."""
        await self.disconnect(server_id)
        self._states.pop(server_id, None)
        lock = self._locks.get(server_id)
        if lock is None or not lock.locked():
            # An in-flight connect still needs its lock and generation
            self._locks.pop(server_id, None)
            self._generations.pop(server_id, None)

    async def shutdown(self) -> None:
        """Disconnect every server."""
        server_ids = list(self._states)
        await asyncio.gather(*(self.disconnect(sid) for sid in server_ids))
        if server_ids:
            logger.info(f"Stopped {len(server_ids)} MCP server connection(s)")

    async def _close_quietly(
        self,
        server_id: str,
        session: ProtocolSession | None,
        transport: Transport | None,
    ) -> None:
        if session is not None:
            try:
                await session.close()
            except Exception as e:
                logger.error(f"Error closing session for {server_id}: {e}")
        if transport is not None:
            try:
                transport.close()
            except Exception as e:
                logger.error(f"Error closing transport for {server_id}: {e}")

    @staticmethod
    def _describe_failure(
        config: ServerConfig,
        error: BaseException,
        session: ProtocolSession | None,
    ) -> str:
        error = unwrap_exception(error)
        message = str(error) or type(error).__name__

        if "Connection closed" in message:
            if config.transport == TransportType.STDIO:
                message = (
                    "Connection closed during the MCP handshake. Check that the server's "
                    f"launch command is correct (command: {config.describe()})"
                )
            else:
                message = (
                    "Connection closed during the MCP handshake. Check that the server "
                    f"URL is correct and reachable (url: {config.url})"
                )

        stderr = session.transport.diagnostics() if session is not None else ""
        if stderr:
            message = f"{message}. stderr: {stderr}"
        return message

    # ── reads ─────────────────────────────────────────────

    def get_connection_state(self, server_id: str) -> ConnectionState | None:
        return self._states.get(server_id)

    def get_all_connection_states(self) -> list[ConnectionState]:
        return list(self._states.values())

    def get_server_config(self, server_id: str) -> ServerConfig | None:
        return self._configs.get(server_id)

    def get_all_tools(self) -> list[ServerTool]:
        """Every tool of every connected server, tagged with its owner."""
        result = []
        for server_id, state in list(self._states.items()):
            if not state.is_connected:
                continue
            config = self._configs.get(server_id)
            server_name = config.name if config else server_id
            result.extend(ServerTool(server_id, server_name, tool) for tool in state.tools)
        return result

    def is_connected(self, server_id: str) -> bool:
        state = self._states.get(server_id)
        return state is not None and state.is_connected and server_id in self._sessions

    # ── live RPCs ─────────────────────────────────────────

    def _session_for(self, server_id: str) -> ProtocolSession:
        session = self._sessions.get(server_id)
        if session is None:
            raise ServerNotConnectedError(server_id)
        return session

    async def list_tools(self, server_id: str) -> list[MCPTool]:
        listing = await self._session_for(server_id).list_tools()
        return listing.items_or_empty()

    async def list_prompts(self, server_id: str) -> list[MCPPrompt]:
        listing = await self._session_for(server_id).list_prompts()
        return listing.items_or_empty()

    async def list_resources(self, server_id: str) -> list[MCPResource]:
        listing = await self._session_for(server_id).list_resources()
        return listing.items_or_empty()

    async def call_tool(
        self,
        server_id: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> ToolOutput:
        """
        Call a tool on a specific server.

        Args:
            server_id: Which server to call
            tool_name: Which tool on that server
            arguments: Tool parameters

        Returns:
            The tool output, with the server's isError flag.
        """
        session = self._session_for(server_id)
        logger.info(f"Calling tool {server_id}/{tool_name}")
        return await session.call_tool(tool_name, arguments or {})

    async def get_prompt(
        self,
        server_id: str,
        prompt_name: str,
        arguments: dict[str, str] | None = None,
    ) -> PromptResult:
        return await self._session_for(server_id).get_prompt(prompt_name, arguments or {})

    async def read_resource(self, server_id: str, uri: str) -> list[ResourceContents]:
        return await self._session_for(server_id).read_resource(uri)
