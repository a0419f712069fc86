"""
Transport layer for MCP server connections.

Implements:
  - StdioTransport: JSON-RPC over stdin/stdout of a spawned process
  - StreamableHttpTransport: MCP streamable HTTP
  - SseTransport: MCP over Server-Sent Events (legacy HTTP transport)

A transport only knows how to produce the pair of message streams the
protocol session reads from and writes to. Framing is done by the
``mcp`` SDK client for each wire; the handshake and RPCs live in
``mcp_chat.session``.

Usage:
    transport = create_transport(config)
    async with transport.open() as (read_stream, write_stream):
        ...
    transport.close()
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import IO, Any, AsyncIterator

from mcp import StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from mcp_chat.errors import ServerConfigError
from mcp_chat.types import ServerConfig, TransportType

logger = logging.getLogger(__name__)

# (read_stream, write_stream) as handed to mcp.ClientSession
Streams = tuple[Any, Any]


class Transport(ABC):
    """Abstract transport for MCP communication."""

    def __init__(self):
        self._closed = False

    @abstractmethod
    def open(self) -> "AsyncIterator[Streams]":
        """
        Async context manager yielding ``(read_stream, write_stream)``.

        Leaving the context tears the channel down (kills the process,
        closes the HTTP connection). It must be entered and exited from
        the same task.
        """
        ...

    @abstractmethod
    def describe(self) -> str:
        """Human-readable target: command line or URL."""
        ...

    def close(self) -> None:
        """Release anything that outlives ``open()``. Idempotent."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def diagnostics(self) -> str:
        """Extra detail for error messages (e.g. process stderr)."""
        return ""


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    This is MCP's native local transport. The server runs as a child
    process; one message per line in each direction. stderr is not part
    of the channel: it is captured to a temporary file and only used to
    explain failures.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ):
        """
        Args:
            command: Executable that launches the MCP server.
                     e.g., "npx" or sys.executable
            args: Arguments for the command.
            env: Overrides merged on top of the current process environment.
        """
        super().__init__()
        self.command = command
        self.args = list(args or [])
        self.env = {**os.environ, **(env or {})}
        self._errlog: IO[str] | None = None

    def describe(self) -> str:
        return " ".join([self.command, *self.args])

    @asynccontextmanager
    async def open(self) -> AsyncIterator[Streams]:
        if self._closed:
            raise RuntimeError("Transport already closed")

        logger.info(f"Starting stdio transport: {self.describe()}")
        if self._errlog is None:
            self._errlog = tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace")

        params = StdioServerParameters(command=self.command, args=self.args, env=self.env)
        async with stdio_client(params, errlog=self._errlog) as (read_stream, write_stream):
            yield read_stream, write_stream
        logger.info(f"Stdio transport stopped: {self.command}")

    def diagnostics(self) -> str:
        if self._errlog is None or self._errlog.closed:
            return ""
        try:
            self._errlog.flush()
            self._errlog.seek(0)
            stderr = self._errlog.read()
        except (OSError, ValueError):
            return ""
        return stderr.strip()[-500:]

    def close(self) -> None:
        if self._errlog is not None and not self._errlog.closed:
            self._errlog.close()
        super().close()


class StreamableHttpTransport(Transport):
    """MCP streamable HTTP: POST requests, responses streamed back."""

    def __init__(self, url: str, headers: dict[str, str] | None = None):
        super().__init__()
        self.url = url
        self.headers = headers

    def describe(self) -> str:
        return self.url

    @asynccontextmanager
    async def open(self) -> AsyncIterator[Streams]:
        if self._closed:
            raise RuntimeError("Transport already closed")

        logger.info(f"Opening streamable HTTP transport: {self.url}")
        async with streamablehttp_client(self.url, headers=self.headers) as (
            read_stream,
            write_stream,
            _get_session_id,
        ):
            yield read_stream, write_stream
        logger.info(f"Streamable HTTP transport closed: {self.url}")


class SseTransport(Transport):
    """MCP over Server-Sent Events: GET event stream + POST endpoint."""

    def __init__(self, url: str, headers: dict[str, str] | None = None):
        super().__init__()
        self.url = url
        self.headers = headers

    def describe(self) -> str:
        return self.url

    @asynccontextmanager
    async def open(self) -> AsyncIterator[Streams]:
        if self._closed:
            raise RuntimeError("Transport already closed")

        logger.info(f"Opening SSE transport: {self.url}")
        async with sse_client(self.url, headers=self.headers) as (read_stream, write_stream):
            yield read_stream, write_stream
        logger.info(f"SSE transport closed: {self.url}")


def create_transport(config: ServerConfig) -> Transport:
    """
    Build the transport a server config asks for. No I/O happens here.

    Raises:
        ServerConfigError: if the fields the transport needs are missing.
    """
    config.validate()

    if config.transport == TransportType.STDIO:
        return StdioTransport(config.command, config.args, config.env)
    if config.transport == TransportType.STREAMABLE_HTTP:
        return StreamableHttpTransport(config.url)
    if config.transport == TransportType.SSE:
        return SseTransport(config.url)

    raise ServerConfigError(f"Unknown transport type: {config.transport}")
