"""Reference MCP servers, runnable as ``python -m mcp_chat.servers.<name>``."""
