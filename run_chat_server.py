"""
Run Chat Server — MCP-augmented chat API.

This is the script that wires everything together. It:
1. Loads settings from the environment (and command-line overrides)
2. Optionally saves/imports MCP server configs
3. Starts the FastAPI app with uvicorn
4. Optionally connects every saved MCP server at startup

Usage:
    # List saved MCP servers
    python run_chat_server.py --list

    # Save the bundled echo server and serve with it connected
    python run_chat_server.py --add-echo --autoconnect

    # Import servers exported from another machine
    python run_chat_server.py --import servers.json

    # Serve on another port with a larger tool budget
    python run_chat_server.py --port 9000 --max-iterations 20
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import uvicorn
from pydantic import ValidationError

from mcp_chat.app import create_app
from mcp_chat.config import Settings
from mcp_chat.errors import ServerConfigError
from mcp_chat.storage import ServerConfigStore
from mcp_chat.types import ServerConfig, TransportType

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


ECHO_SERVER = ServerConfig(
    id="echo",
    name="Echo",
    transport=TransportType.STDIO,
    command=sys.executable,
    args=["-m", "mcp_chat.servers.echo"],
)


def list_servers(store: ServerConfigStore) -> None:
    configs = store.load()
    print(f"\nSaved MCP servers ({len(configs)}) in {store.path}:\n")
    for config in configs:
        print(f"  {config.id:<32} {config.name:<20} [{config.transport.value}] {config.describe()}")
    print()


def main():
    parser = argparse.ArgumentParser(
        description="Serve the MCP chat API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_chat_server.py --list
  python run_chat_server.py --add-echo --autoconnect
  python run_chat_server.py --servers-file ./servers.json --port 9000
        """,
    )
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", "-p", type=int, default=8000, help="Port to listen on")
    parser.add_argument("--servers-file", type=Path, default=None, help="JSON file of saved MCP servers")
    parser.add_argument("--list", action="store_true", help="List saved MCP servers and exit")
    parser.add_argument("--import", dest="import_file", type=Path, default=None, help="Replace saved servers with an exported JSON file")
    parser.add_argument("--add-echo", action="store_true", help="Save the bundled echo server")
    parser.add_argument("--autoconnect", action="store_true", help="Connect all saved servers at startup")
    parser.add_argument("--model", "-m", type=str, default=None, help="Model override (e.g., google_genai:gemini-2.0-flash-001)")
    parser.add_argument("--max-iterations", type=int, default=None, help="Tool loop budget per chat request")
    parser.add_argument("--tool-timeout", type=float, default=None, help="Seconds allowed per MCP call")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # ── Settings ──────────────────────────────────────────
    overrides = {
        "servers_file": args.servers_file,
        "model": args.model,
        "max_tool_iterations": args.max_iterations,
        "tool_call_timeout": args.tool_timeout,
    }
    try:
        settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        parser.error(f"Invalid settings: {e}")

    store = ServerConfigStore(settings.servers_file)

    # ── Saved servers ─────────────────────────────────────
    try:
        if args.import_file:
            configs = store.import_configs(args.import_file.read_text(encoding="utf-8"))
            print(f"Imported {len(configs)} server(s) into {store.path}")
        if args.add_echo and store.get(ECHO_SERVER.id) is None:
            store.add(ECHO_SERVER)
            print(f"Saved echo server into {store.path}")
    except (ServerConfigError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.list:
        list_servers(store)
        return

    if not settings.api_key:
        print("\n⚠  GEMINI_API_KEY not set. /api/chat will answer 500.")
        print("   The MCP endpoints still work.\n")

    # ── Serve ─────────────────────────────────────────────
    app = create_app(settings=settings, store=store, autoconnect=args.autoconnect)
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="debug" if args.verbose else "info",
    )


if __name__ == "__main__":
    main()
