"""
Runtime settings, read from environment variables (or a ``.env`` file).

    GEMINI_API_KEY / GOOGLE_API_KEY   model API key (required for /api/chat)
    MCP_CHAT_MODEL                    langchain model id, "provider:model"
    MCP_MAX_TOOL_ITERATIONS           tool loop budget per chat request
    MCP_TOOL_CALL_TIMEOUT             seconds per MCP RPC (unset = no limit)
    MCP_CONNECT_TIMEOUT               seconds for transport open + handshake
    MCP_CLIENT_NAME / MCP_CLIENT_VERSION   identity sent in initialize
    MCP_SERVERS_FILE                  JSON file holding saved server configs
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODEL = "google_genai:gemini-2.0-flash-001"
DEFAULT_SERVERS_FILE = Path.home() / ".mcp_chat" / "servers.json"


class Settings(BaseSettings):
    """
    Application settings with validation.

    Fields are also accepted by name as keyword arguments, which is how
    the launcher applies its command-line overrides.
    """

    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
        description="Gemini API key",
    )
    model: str = Field(
        default=DEFAULT_MODEL,
        validation_alias=AliasChoices("MCP_CHAT_MODEL"),
        description="langchain model id passed to init_chat_model",
    )
    max_tool_iterations: int = Field(default=10, ge=1, description="Model calls allowed per chat request")
    tool_call_timeout: Optional[float] = Field(default=None, gt=0, description="Seconds per MCP RPC")
    connect_timeout: Optional[float] = Field(default=30.0, gt=0, description="Seconds for the MCP handshake")
    client_name: str = Field(default="mcp-client-app", description="Client name sent in initialize")
    client_version: str = Field(default="1.0.0", description="Client version sent in initialize")
    servers_file: Path = Field(default=DEFAULT_SERVERS_FILE, description="Saved server configs")

    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("servers_file")
    @classmethod
    def expand_servers_file(cls, v: Path) -> Path:
        return v.expanduser()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
