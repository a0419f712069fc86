"""
Saved MCP server configs, kept as a JSON array in one file.

The file format is the same JSON the settings export produces, so an
exported file can be imported as-is:

    [
      {"id": "mcp-1700000000000-ab12cd3", "name": "Files", "transport": "stdio",
       "command": "npx", "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]},
      {"id": "mcp-1700000000001-xy98zw7", "name": "Remote", "transport": "streamable-http",
       "url": "http://localhost:8000/mcp"}
    ]
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mcp_chat.errors import ServerConfigError
from mcp_chat.types import ServerConfig

logger = logging.getLogger(__name__)


def parse_configs(raw: Any) -> list[ServerConfig]:
    """
    Validate a decoded JSON array of server configs.

    Raises:
        ServerConfigError: naming the first bad entry.
    """
    if not isinstance(raw, list):
        raise ServerConfigError("Invalid config format: expected array")

    configs: list[ServerConfig] = []
    seen: set[str] = set()
    for index, row in enumerate(raw):
        try:
            config = ServerConfig.from_dict(row)
        except ServerConfigError as e:
            raise ServerConfigError(f"servers[{index}]: {e}") from None
        if config.id in seen:
            raise ServerConfigError(f"Duplicate server id: {config.id}")
        seen.add(config.id)
        configs.append(config)
    return configs


class ServerConfigStore:
    """CRUD over the saved server list; every mutation rewrites the file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> list[ServerConfig]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ServerConfigError(f"Invalid JSON in {self.path}: {e}") from None
        return parse_configs(raw)

    def save(self, configs: list[ServerConfig]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self._dump(configs), encoding="utf-8")
        logger.debug(f"Saved {len(configs)} server config(s) to {self.path}")

    def get(self, server_id: str) -> ServerConfig | None:
        return next((c for c in self.load() if c.id == server_id), None)

    def add(self, config: ServerConfig) -> list[ServerConfig]:
        config.validate()
        configs = self.load()
        if any(c.id == config.id for c in configs):
            raise ServerConfigError(f"Duplicate server id: {config.id}")
        configs.append(config)
        self.save(configs)
        return configs

    def update(self, server_id: str, updates: dict[str, Any]) -> list[ServerConfig]:
        configs = []
        for config in self.load():
            if config.id == server_id:
                config = ServerConfig.from_dict({**config.to_dict(), **updates, "id": server_id})
            configs.append(config)
        self.save(configs)
        return configs

    def delete(self, server_id: str) -> list[ServerConfig]:
        configs = [c for c in self.load() if c.id != server_id]
        self.save(configs)
        return configs

    def export_configs(self) -> str:
        """All saved configs as pretty-printed JSON."""
        return self._dump(self.load())

    def import_configs(self, data: str) -> list[ServerConfig]:
        """
        Replace the saved list with the configs in a JSON string.

        Raises:
            ServerConfigError: if the JSON is malformed or any entry is
                invalid; nothing is written in that case.
        """
        try:
            raw = json.loads(data)
        except json.JSONDecodeError as e:
            raise ServerConfigError(f"Invalid JSON: {e}") from None
        configs = parse_configs(raw)
        self.save(configs)
        logger.info(f"Imported {len(configs)} server config(s)")
        return configs

    @staticmethod
    def _dump(configs: list[ServerConfig]) -> str:
        return json.dumps([c.to_dict() for c in configs], indent=2)
