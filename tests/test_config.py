"""Tests for environment-driven settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from mcp_chat.config import DEFAULT_MODEL, DEFAULT_SERVERS_FILE, Settings

ENV_VARS = [
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "MCP_CHAT_MODEL",
    "MCP_MAX_TOOL_ITERATIONS",
    "MCP_TOOL_CALL_TIMEOUT",
    "MCP_CONNECT_TIMEOUT",
    "MCP_CLIENT_NAME",
    "MCP_CLIENT_VERSION",
    "MCP_SERVERS_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def load() -> Settings:
    return Settings(_env_file=None)


def test_defaults_with_empty_environment():
    settings = load()

    assert settings.api_key is None
    assert settings.model == DEFAULT_MODEL
    assert settings.max_tool_iterations == 10
    assert settings.tool_call_timeout is None
    assert settings.connect_timeout == 30.0
    assert settings.client_name == "mcp-client-app"
    assert settings.servers_file == DEFAULT_SERVERS_FILE


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
    monkeypatch.setenv("MCP_CHAT_MODEL", "google_genai:gemini-2.5-pro")
    monkeypatch.setenv("MCP_MAX_TOOL_ITERATIONS", "4")
    monkeypatch.setenv("MCP_TOOL_CALL_TIMEOUT", "12.5")
    monkeypatch.setenv("MCP_SERVERS_FILE", "/tmp/servers.json")

    settings = load()

    assert settings.api_key == "g-key"
    assert settings.model == "google_genai:gemini-2.5-pro"
    assert settings.max_tool_iterations == 4
    assert settings.tool_call_timeout == 12.5
    assert settings.servers_file == Path("/tmp/servers.json")


def test_gemini_key_wins_over_google_key(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "gem")
    monkeypatch.setenv("GOOGLE_API_KEY", "goo")

    assert load().api_key == "gem"


def test_empty_variables_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("MCP_TOOL_CALL_TIMEOUT", "")
    monkeypatch.setenv("MCP_CONNECT_TIMEOUT", "")

    settings = load()

    assert settings.tool_call_timeout is None
    assert settings.connect_timeout == 30.0


def test_keyword_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("MCP_MAX_TOOL_ITERATIONS", "4")

    settings = Settings(_env_file=None, max_tool_iterations=7, model="google_genai:gemini-2.5-pro")

    assert settings.max_tool_iterations == 7
    assert settings.model == "google_genai:gemini-2.5-pro"


class TestValidation:
    """Bad values are rejected with an error naming the setting."""

    def test_tool_budget_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("MCP_MAX_TOOL_ITERATIONS", "0")

        with pytest.raises(ValidationError, match="max_tool_iterations"):
            load()

    def test_timeout_must_be_a_number(self, monkeypatch):
        monkeypatch.setenv("MCP_TOOL_CALL_TIMEOUT", "abc")

        with pytest.raises(ValidationError, match="tool_call_timeout"):
            load()

    def test_timeout_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("MCP_CONNECT_TIMEOUT", "-1")

        with pytest.raises(ValidationError, match="connect_timeout"):
            load()
