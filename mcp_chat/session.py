"""
Protocol session: one MCP client conversation over one transport.

The session owns a background task that enters the transport and the
``mcp.ClientSession`` contexts, performs the ``initialize`` handshake and
then parks until ``close()`` is called. anyio requires those contexts to
be exited by the task that entered them, so connect and disconnect can
come from different HTTP requests without tripping over cancel scopes.

Usage:
    session = ProtocolSession(create_transport(config))
    await session.open()
    tools = await session.list_tools()          # CapabilityListing
    output = await session.call_tool("echo", {"message": "hi"})
    await session.close()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from mcp import ClientSession
from mcp import types as mcp_types

from mcp_chat.errors import MCPTimeoutError, ServerNotConnectedError
from mcp_chat.transport import Transport
from mcp_chat.types import (
    CapabilityListing,
    Content,
    ImageContent,
    MCPPrompt,
    MCPResource,
    MCPTool,
    OtherContent,
    PromptArgument,
    PromptMessage,
    PromptResult,
    ResourceContent,
    ResourceContents,
    TextContent,
    ToolOutput,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CLIENT_NAME = "mcp-client-app"
DEFAULT_CLIENT_VERSION = "1.0.0"


def unwrap_exception(exc: BaseException) -> BaseException:
    """Dig the first real error out of (nested) anyio exception groups."""
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


class ProtocolSession:
    """
    MCP client session bound to one transport.

    Responsibilities:
    - Run the transport and perform the capability handshake
    - Expose the request/response RPCs once (and only once) initialized
    - Absorb "capability not implemented" failures into unsupported listings
    - Idempotent shutdown
    """

    def __init__(
        self,
        transport: Transport,
        server_id: str = "",
        client_name: str = DEFAULT_CLIENT_NAME,
        client_version: str = DEFAULT_CLIENT_VERSION,
        connect_timeout: float | None = 30.0,
        call_timeout: float | None = None,
    ):
        """
        Args:
            transport: Channel to the server (not yet opened).
            server_id: Used for log lines and task names only.
            client_name / client_version: Identity sent in ``initialize``.
            connect_timeout: Seconds allowed for transport open + handshake.
            call_timeout: Seconds allowed per RPC; None waits forever.
        """
        self.transport = transport
        self.server_id = server_id
        self.client_info = mcp_types.Implementation(name=client_name, version=client_version)
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout

        self.server_info: mcp_types.Implementation | None = None
        self._session: ClientSession | None = None
        self._task: asyncio.Task | None = None
        self._ready: asyncio.Future | None = None
        self._stop = asyncio.Event()

    # ── lifecycle ─────────────────────────────────────────

    @property
    def is_open(self) -> bool:
        return self._session is not None and self._task is not None and not self._task.done()

    async def open(self) -> mcp_types.InitializeResult:
        """
        Open the transport and complete the MCP handshake.

        Raises:
            MCPTimeoutError: handshake did not finish within connect_timeout.
            Exception: whatever the transport or handshake failed with.
        """
        if self._task is not None:
            raise RuntimeError("Session already opened")

        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(), name=f"mcp-session:{self.server_id}")

        try:
            result = await asyncio.wait_for(asyncio.shield(self._ready), self.connect_timeout)
        except asyncio.TimeoutError:
            await self._abort()
            raise MCPTimeoutError(
                f"Timed out after {self.connect_timeout}s waiting for the MCP handshake"
            ) from None
        except (Exception, asyncio.CancelledError):
            await self.close()
            raise

        self.server_info = result.serverInfo
        logger.info(
            f"[{self.server_id}] initialized: server={result.serverInfo.name} "
            f"protocol={result.protocolVersion}"
        )
        return result

    async def _run(self) -> None:
        try:
            async with self.transport.open() as (read_stream, write_stream):
                async with ClientSession(
                    read_stream, write_stream, client_info=self.client_info
                ) as session:
                    result = await session.initialize()
                    self._session = session
                    if not self._ready.done():
                        self._ready.set_result(result)
                    await self._stop.wait()
        except Exception as e:
            error = unwrap_exception(e)
            if not self._ready.done():
                self._ready.set_exception(error)
            elif not self._stop.is_set():
                logger.warning(f"[{self.server_id}] session ended unexpectedly: {error}")
        finally:
            self._session = None
            if not self._ready.done():
                self._ready.cancel()

    async def _abort(self) -> None:
        # Still inside initialize(), so the stop event would never be seen
        self._stop.set()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._session = None

    async def close(self, timeout: float = 5.0) -> None:
        """Stop the session task and tear down the transport. Safe to repeat."""
        self._stop.set()
        task = self._task
        if task is None or task.done():
            self._session = None
            return

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.server_id}] session did not stop in {timeout}s, cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"[{self.server_id}] session closed")

    # ── RPCs ──────────────────────────────────────────────

    def _require_session(self) -> ClientSession:
        if not self.is_open:
            raise ServerNotConnectedError(self.server_id)
        return self._session

    async def _request(self, call: Awaitable[T], what: str) -> T:
        if self.call_timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, self.call_timeout)
        except asyncio.TimeoutError:
            raise MCPTimeoutError(
                f"{what} on server {self.server_id} timed out after {self.call_timeout}s"
            ) from None

    async def _list_capability(self, kind: str, fetch) -> CapabilityListing:
        try:
            session = self._require_session()
            items = await self._request(fetch(session), f"{kind}/list")
        except Exception as e:
            logger.debug(f"[{self.server_id}] {kind}/list unavailable: {e}")
            return CapabilityListing.failed(kind, str(e))
        return CapabilityListing.ok(kind, items)

    async def list_tools(self) -> CapabilityListing:
        async def fetch(session: ClientSession) -> list[MCPTool]:
            result = await session.list_tools()
            return [
                MCPTool(name=t.name, description=t.description, input_schema=t.inputSchema)
                for t in result.tools or []
            ]

        return await self._list_capability("tools", fetch)

    async def list_prompts(self) -> CapabilityListing:
        async def fetch(session: ClientSession) -> list[MCPPrompt]:
            result = await session.list_prompts()
            return [
                MCPPrompt(
                    name=p.name,
                    description=p.description,
                    arguments=tuple(
                        PromptArgument(
                            name=a.name,
                            description=a.description,
                            required=bool(a.required),
                        )
                        for a in p.arguments or []
                    ),
                )
                for p in result.prompts or []
            ]

        return await self._list_capability("prompts", fetch)

    async def list_resources(self) -> CapabilityListing:
        async def fetch(session: ClientSession) -> list[MCPResource]:
            result = await session.list_resources()
            return [
                MCPResource(
                    uri=str(r.uri),
                    name=r.name,
                    description=r.description,
                    mime_type=r.mimeType,
                )
                for r in result.resources or []
            ]

        return await self._list_capability("resources", fetch)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolOutput:
        """Invoke a tool. The server's ``isError`` flag is passed through as-is."""
        session = self._require_session()
        result = await self._request(
            session.call_tool(name, arguments or {}),
            f"tools/call {name}",
        )
        return ToolOutput(
            contents=tuple(convert_content(c) for c in result.content or []),
            is_error=bool(result.isError),
        )

    async def get_prompt(self, name: str, arguments: dict[str, str] | None = None) -> PromptResult:
        session = self._require_session()
        result = await self._request(
            session.get_prompt(name, arguments or {}), f"prompts/get {name}"
        )
        messages = []
        for m in result.messages or []:
            content = m.content
            text = getattr(content, "text", None)
            if text is None:
                text = content.model_dump_json(exclude_none=True)
            messages.append(PromptMessage(role=m.role, text=text))
        return PromptResult(description=result.description, messages=tuple(messages))

    async def read_resource(self, uri: str) -> list[ResourceContents]:
        session = self._require_session()
        result = await self._request(session.read_resource(uri), f"resources/read {uri}")
        return [
            ResourceContents(
                uri=str(c.uri),
                mime_type=c.mimeType,
                text=getattr(c, "text", None),
                blob=getattr(c, "blob", None),
            )
            for c in result.contents or []
        ]


def convert_content(item: Any) -> Content:
    """Map an SDK content block onto this package's tagged content types."""
    if isinstance(item, dict):
        payload = dict(item)
        return OtherContent(kind=str(payload.pop("type", None) or "unknown"), payload=payload)

    kind = getattr(item, "type", None)
    if kind == "text":
        return TextContent(text=item.text)
    if kind == "image":
        return ImageContent(data=item.data, mime_type=item.mimeType)
    if kind == "resource":
        resource = item.resource
        return ResourceContent(
            uri=str(resource.uri),
            mime_type=resource.mimeType,
            text=getattr(resource, "text", None),
        )

    if hasattr(item, "model_dump"):
        payload = item.model_dump(mode="json", exclude_none=True)
    else:
        payload = {"value": str(item)}
    payload.pop("type", None)
    return OtherContent(kind=str(kind or "unknown"), payload=payload)
