"""
Echo MCP Server — minimal reference implementation.

One tool, one prompt and one resource, served over stdio. Useful for
trying the chat app without installing anything and for exercising the
stdio transport in tests.

Launch:
    python -m mcp_chat.servers.echo

Connect from the API:
    POST /api/mcp/connect
    {"id": "echo", "name": "Echo", "transport": "stdio",
     "command": "python", "args": ["-m", "mcp_chat.servers.echo"]}
"""

from mcp.server.fastmcp import FastMCP

mcp = FastMCP("echo")


@mcp.tool()
def echo(message: str) -> str:
    """Echoes back the input message. Useful for testing."""
    return message


@mcp.tool()
def fail(reason: str = "requested failure") -> str:
    """Always fails; shows how tool errors reach the model."""
    raise ValueError(reason)


@mcp.prompt()
def greet(name: str) -> str:
    """Ask the assistant to greet someone."""
    return f"Please greet {name} warmly."


@mcp.resource("echo://readme", mime_type="text/plain")
def readme() -> str:
    """What this server does."""
    return "The echo server repeats whatever you send it."


if __name__ == "__main__":
    mcp.run()
